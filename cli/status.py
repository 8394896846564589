"""status command: check credentials, tenant config, local files and the API.

Each check reports ok, warning or error; the first failing area decides the
diagnosis, the suggested next action and the exit code.
"""

import argparse
import asyncio
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from cli.context import add_common_arguments, load_command_config, setup_logging
from cli.output import OutputContext, exit_code_for, write_error, write_success
from connectors.xero.xero_auth import AccessProvider, EnvAccessProvider, load_tenant_config
from connectors.xero.xero_client import XeroApiClient, XeroApiConfig
from connectors.xero.xero_connector import XeroConnector
from core.config import ReconcileConfig
from core.errors import ExitSignal, ReconcileError, error_code_for
from core.observability.logging import get_logger, with_correlation
from core.state.state import load_state

logger = get_logger(__name__)


class CheckStatus(str, Enum):
    OK = "ok"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class StatusCheck:
    name: str
    status: CheckStatus
    message: Optional[str] = None
    code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"name": self.name, "status": self.status.value}
        if self.message:
            result["message"] = self.message
        return result

    def describe(self) -> str:
        line = f"  {self.name}: {self.status.value}"
        return f"{line} ({self.message})" if self.message else line


# diagnosis -> (next action, exit signal)
DIAGNOSES: Dict[str, Tuple[str, ExitSignal]] = {
    "ok": ("NONE", ExitSignal.OK),
    "invalid-config": ("FIX_CONFIG", ExitSignal.USAGE_ERROR),
    "needs-auth": ("RUN_AUTH", ExitSignal.UNAUTHORIZED),
    "api-error": ("RETRY", ExitSignal.RUNTIME_ERROR),
    "fs-error": ("CHECK_FS", ExitSignal.RUNTIME_ERROR),
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="xero-reconcile status",
        description="Check credentials, tenant config, local state files and API access",
    )
    add_common_arguments(parser)
    return parser


# =============================================================================
# Checks
# =============================================================================

def check_token(env: Mapping[str, str]) -> StatusCheck:
    if env.get("XERO_ACCESS_TOKEN"):
        return StatusCheck("token", CheckStatus.OK)
    return StatusCheck("token", CheckStatus.ERROR, "Missing XERO_ACCESS_TOKEN")


def check_tenant(config: ReconcileConfig, env: Mapping[str, str]) -> StatusCheck:
    if env.get("XERO_TENANT_ID"):
        return StatusCheck("config", CheckStatus.OK, "Tenant from XERO_TENANT_ID")
    try:
        tenant = load_tenant_config(config.tenant_config_path)
    except ReconcileError as e:
        return StatusCheck("config", CheckStatus.ERROR, e.message)
    if tenant is None:
        return StatusCheck("config", CheckStatus.WARNING, f"Missing {config.tenant_config_path.name} (run auth)")
    return StatusCheck("config", CheckStatus.OK, tenant.org_name)


def check_state_file(path: Path) -> StatusCheck:
    if not path.exists() and not path.is_symlink():
        return StatusCheck("state_file", CheckStatus.WARNING, "State file missing (ok for first run)")
    try:
        state = load_state(path)
    except ReconcileError as e:
        return StatusCheck("state_file", CheckStatus.ERROR, e.message)
    return StatusCheck("state_file", CheckStatus.OK, f"{len(state.processed)} processed")


def check_lock_file(path: Path) -> StatusCheck:
    if path.is_symlink():
        return StatusCheck("lock_file", CheckStatus.ERROR, "Lock file is a symlink")
    if path.exists():
        return StatusCheck("lock_file", CheckStatus.WARNING, "Lock file present (another run may be active)")
    return StatusCheck("lock_file", CheckStatus.OK)


def check_audit_dir(path: Path) -> StatusCheck:
    if not path.exists():
        return StatusCheck("audit_dir", CheckStatus.WARNING, "Audit dir missing (created on first execute)")
    if not path.is_dir():
        return StatusCheck("audit_dir", CheckStatus.ERROR, "Audit path is not a directory")
    return StatusCheck("audit_dir", CheckStatus.OK)


async def check_api(config: ReconcileConfig, provider: AccessProvider) -> StatusCheck:
    """Read the chart of accounts as a cheap authenticated call."""
    try:
        async with XeroApiClient(provider, XeroApiConfig.from_config(config)) as client:
            codes = await XeroConnector(client).list_active_account_codes()
    except ReconcileError as e:
        return StatusCheck("api", CheckStatus.ERROR, e.message, code=error_code_for(e))
    return StatusCheck("api", CheckStatus.OK, f"{len(codes)} active account codes")


def diagnose(checks: List[StatusCheck]) -> str:
    by_name = {check.name: check for check in checks}
    api = by_name.get("api")

    if by_name["config"].status != CheckStatus.OK:
        return "invalid-config"
    if by_name["token"].status != CheckStatus.OK:
        return "needs-auth"
    if api is not None and api.status == CheckStatus.ERROR:
        return "needs-auth" if api.code == "E_UNAUTHORIZED" else "api-error"
    if any(by_name[name].status == CheckStatus.ERROR for name in ("state_file", "lock_file", "audit_dir")):
        return "fs-error"
    return "ok"


# =============================================================================
# Command
# =============================================================================

def run(
    argv: List[str],
    stdout=None,
    stderr=None,
    environ: Optional[Mapping[str, str]] = None,
    access_provider: Optional[AccessProvider] = None,
) -> int:
    args = build_parser().parse_args(argv)
    ctx = OutputContext(json=args.json, quiet=args.quiet, stdout=stdout, stderr=stderr)

    try:
        config, env = load_command_config(args, environ)
    except (ValueError, OSError) as e:
        write_error(ctx, e)
        return exit_code_for(ExitSignal.USAGE_ERROR)
    setup_logging(args, config, ctx)

    with with_correlation(command="status"):
        checks = [
            check_tenant(config, env),
            check_token(env),
            check_state_file(config.state_path),
            check_lock_file(config.lock_path),
            check_audit_dir(config.audit_dir),
        ]
        if access_provider is not None or all(c.status == CheckStatus.OK for c in checks[:2]):
            provider = access_provider or EnvAccessProvider(config.tenant_config_path, environ=env)
            try:
                checks.append(asyncio.run(check_api(config, provider)))
            except KeyboardInterrupt:
                return exit_code_for(ExitSignal.INTERRUPTED)
        else:
            checks.append(StatusCheck("api", CheckStatus.WARNING, "Skipped API check (missing auth/config)"))

        diagnosis = diagnose(checks)
        logger.info(f"Status diagnosis: {diagnosis}")

    next_action, signal = DIAGNOSES[diagnosis]
    data = {
        "command": "status",
        "checks": [check.to_dict() for check in checks],
        "diagnosis": diagnosis,
        "nextAction": next_action,
    }
    lines = [f"Status: {diagnosis}"] + [check.describe() for check in checks]
    if next_action != "NONE":
        lines.append(f"Next action: {next_action}")
    write_success(ctx, data, lines, diagnosis)
    return exit_code_for(signal)
