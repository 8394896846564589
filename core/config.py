"""Run configuration.

ReconcileConfig is built once per run and passed to every component that needs
it. Values come from explicit overrides, then the process environment, then a
``.env`` file in the working directory, then defaults.

Usage:
    config = ReconcileConfig.from_env(work_dir=Path.cwd())
    client = XeroApiClient(provider, XeroApiConfig.from_config(config))
"""

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from dotenv import dotenv_values


DEFAULT_API_BASE_URL = "https://api.xero.com/api.xro/2.0"

STATE_FILENAME = ".xero-reconcile-state.json"
LOCK_FILENAME = ".xero-reconcile-lock.json"
AUDIT_DIRNAME = ".xero-reconcile-runs"
TENANT_CONFIG_FILENAME = ".xero-config.json"


@dataclass(frozen=True)
class ReconcileConfig:
    """Immutable configuration for one reconcile run."""
    work_dir: Path = field(default_factory=Path.cwd)
    api_base_url: str = DEFAULT_API_BASE_URL
    timeout_seconds: float = 30.0
    retry_limit: int = 2
    backoff_base_seconds: float = 1.0
    checkpoint_interval: int = 50
    audit_flush_threshold: int = 50
    audit_retention_days: int = 90
    lock_timeout_seconds: float = 30.0
    page_size: int = 100
    batch_chunk_size: int = 50
    max_stdin_bytes: int = 5 * 1024 * 1024
    events_url: Optional[str] = None
    log_format: Optional[str] = None  # "json" | "text" | None (auto)

    @property
    def state_path(self) -> Path:
        return self.work_dir / STATE_FILENAME

    @property
    def lock_path(self) -> Path:
        return self.work_dir / LOCK_FILENAME

    @property
    def audit_dir(self) -> Path:
        return self.work_dir / AUDIT_DIRNAME

    @property
    def tenant_config_path(self) -> Path:
        return self.work_dir / TENANT_CONFIG_FILENAME

    def with_overrides(self, **overrides: Any) -> "ReconcileConfig":
        """Return a copy with the given fields replaced (None values ignored)."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    @classmethod
    def from_env(
        cls,
        work_dir: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
        **overrides: Any,
    ) -> "ReconcileConfig":
        """Build configuration from the environment and an optional .env file.

        Args:
            work_dir: Directory holding state, lock, audit and .env files
            environ: Environment mapping (defaults to os.environ)
            **overrides: Explicit values that win over everything else

        Returns:
            Frozen ReconcileConfig
        """
        work_dir = Path(work_dir or Path.cwd()).resolve()
        env = load_environment(work_dir, environ)

        values: Dict[str, Any] = {"work_dir": work_dir}
        if env.get("XERO_API_BASE_URL"):
            values["api_base_url"] = env["XERO_API_BASE_URL"]
        if env.get("XERO_TIMEOUT_SECONDS"):
            values["timeout_seconds"] = float(env["XERO_TIMEOUT_SECONDS"])
        if env.get("XERO_RETRY_LIMIT"):
            values["retry_limit"] = int(env["XERO_RETRY_LIMIT"])
        if env.get("XERO_LOG_FORMAT") in ("json", "text"):
            values["log_format"] = env["XERO_LOG_FORMAT"]

        # XERO_EVENTS=0 turns event emission off regardless of the URL
        if env.get("XERO_EVENTS") == "0":
            overrides.pop("events_url", None)
        elif env.get("XERO_EVENTS_URL"):
            values["events_url"] = env["XERO_EVENTS_URL"]

        config = cls(**values)
        return config.with_overrides(**overrides)


def load_environment(work_dir: Path, environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """Merge ``<work_dir>/.env`` under the process environment."""
    env: Dict[str, str] = {}
    env_path = Path(work_dir) / ".env"
    if env_path.exists():
        env.update({k: v for k, v in dotenv_values(env_path).items() if v is not None})
    env.update(os.environ if environ is None else environ)
    return env
