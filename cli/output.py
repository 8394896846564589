"""Process output: exit codes, success envelopes and error reporting.

stdout carries results only; everything diagnostic goes to stderr.
"""

import json
import sys
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, TextIO

from core.errors import ExitSignal, ReconcileError, error_code_for
from core.security.redaction import sanitize_error_message

CLI_NAME = "xero-reconcile"
SCHEMA_VERSION = 1

EXIT_CODES: Dict[ExitSignal, int] = {
    ExitSignal.OK: 0,
    ExitSignal.RUNTIME_ERROR: 1,
    ExitSignal.USAGE_ERROR: 2,
    ExitSignal.UNAUTHORIZED: 4,
    ExitSignal.CONFLICT: 5,
    ExitSignal.INTERRUPTED: 130,
}


@dataclass(frozen=True)
class ErrorAction:
    action: str
    retryable: bool


ERROR_CODE_ACTIONS: Dict[str, ErrorAction] = {
    "E_NETWORK": ErrorAction("CHECK_NETWORK", False),
    "E_SERVER_ERROR": ErrorAction("RETRY_WITH_BACKOFF", True),
    "E_RATE_LIMITED": ErrorAction("WAIT_AND_RETRY", True),
    "E_API_ERROR": ErrorAction("RETRY_WITH_BACKOFF", True),
    "E_RUNTIME": ErrorAction("ESCALATE", False),
    "E_USAGE": ErrorAction("FIX_ARGS", False),
    "E_NOT_FOUND": ErrorAction("ESCALATE", False),
    "E_UNAUTHORIZED": ErrorAction("RUN_AUTH", False),
    "E_LOCK_CONTENTION": ErrorAction("WAIT_AND_RETRY", True),
    "E_CONFLICT": ErrorAction("WAIT_AND_RETRY", True),
    "E_INTERRUPTED": ErrorAction("NONE", False),
    "E_INTEGRITY": ErrorAction("ESCALATE", False),
    "E_STATE": ErrorAction("ESCALATE", False),
}


def exit_code_for(signal: ExitSignal) -> int:
    return EXIT_CODES[signal]


@dataclass
class OutputContext:
    """How results should be rendered."""
    json: bool = False
    quiet: bool = False
    stdout: Optional[TextIO] = None
    stderr: Optional[TextIO] = None

    @property
    def out(self) -> TextIO:
        return self.stdout or sys.stdout

    @property
    def err(self) -> TextIO:
        return self.stderr or sys.stderr

    @property
    def human(self) -> bool:
        return not (self.json or self.quiet)


def write_success(ctx: OutputContext, data: Dict[str, Any], human_lines: List[str], quiet_line: str) -> None:
    """Write a successful result in the selected output mode."""
    if ctx.json:
        envelope = {"status": "data", "schemaVersion": SCHEMA_VERSION, "data": data}
        ctx.out.write(json.dumps(envelope) + "\n")
    elif ctx.quiet:
        ctx.out.write(f"{quiet_line}\n")
    else:
        for line in human_lines:
            ctx.out.write(f"{line}\n")
    ctx.out.flush()


def write_error(ctx: OutputContext, error: BaseException) -> None:
    """Report a fatal error on stderr (JSON envelope in JSON mode)."""
    message = sanitize_error_message(
        error.message if isinstance(error, ReconcileError) else str(error) or type(error).__name__
    )
    code = error_code_for(error)
    if ctx.json:
        action = ERROR_CODE_ACTIONS.get(code, ERROR_CODE_ACTIONS["E_RUNTIME"])
        envelope = {
            "status": "error",
            "message": message,
            "error": {
                "name": type(error).__name__,
                "code": code,
                "action": action.action,
                "retryable": action.retryable,
            },
        }
        ctx.err.write(json.dumps(envelope) + "\n")
    else:
        ctx.err.write(f"[{CLI_NAME}] {message}\n")
    ctx.err.flush()
