"""Error taxonomy and exit signals for reconciliation runs.

Every error raised on purpose by the reconciler derives from ReconcileError and
carries a machine-readable code, a category and a recoverable flag. The CLI
maps categories onto exit signals with exit_signal_for().
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCategory(str, Enum):
    """Broad error classes, used for exit-code mapping."""
    USAGE = "usage"
    AUTH = "auth"
    API = "api"
    CONFLICT = "conflict"
    INTEGRITY = "integrity"
    RUNTIME = "runtime"


class ExitSignal(str, Enum):
    """Terminal signal of a run, mapped to a process exit code by the CLI."""
    OK = "ok"
    RUNTIME_ERROR = "runtime-error"
    USAGE_ERROR = "usage-error"
    UNAUTHORIZED = "unauthorized"
    CONFLICT = "conflict"
    INTERRUPTED = "interrupted"


class ReconcileError(Exception):
    """Base exception with structured, machine-readable fields."""

    code = "E_RUNTIME"
    category = ErrorCategory.RUNTIME
    recoverable = False

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        recoverable: Optional[bool] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if recoverable is not None:
            self.recoverable = recoverable
        self.context = context or {}


class UsageError(ReconcileError):
    """Bad flags or malformed input. Fatal, nothing is executed."""
    code = "E_USAGE"
    category = ErrorCategory.USAGE


class InputValidationError(UsageError):
    """Reconcile input failed schema or duplicate checks."""
    pass


class InputTooLargeError(UsageError):
    """Standard input exceeded the configured size cap."""
    pass


class PathSafetyError(UsageError):
    """A CSV path escaped the allowed base directory or is not a .csv file."""
    pass


class PreflightValidationError(UsageError):
    """Input does not match the live ledger state."""
    pass


class AuthError(ReconcileError):
    """Missing, expired or rejected credentials."""
    code = "E_UNAUTHORIZED"
    category = ErrorCategory.AUTH


class ConflictError(ReconcileError):
    """Someone else holds or has already changed the resource."""
    code = "E_CONFLICT"
    category = ErrorCategory.CONFLICT
    recoverable = True


class LockContentionError(ConflictError):
    """Another execute run holds a live lock."""
    code = "E_LOCK_CONTENTION"


class IntegrityError(ReconcileError):
    """A remote response, or a record about to be changed, failed an integrity check.

    Never retried: retrying would resubmit against unknown remote state.
    """
    code = "E_INTEGRITY"
    category = ErrorCategory.INTEGRITY


class StateFileError(ReconcileError):
    """The persisted state or lock file is insecure, corrupt or unwritable."""
    code = "E_STATE"


_SIGNAL_BY_CATEGORY = {
    ErrorCategory.USAGE: ExitSignal.USAGE_ERROR,
    ErrorCategory.AUTH: ExitSignal.UNAUTHORIZED,
    ErrorCategory.CONFLICT: ExitSignal.CONFLICT,
    ErrorCategory.API: ExitSignal.RUNTIME_ERROR,
    ErrorCategory.INTEGRITY: ExitSignal.RUNTIME_ERROR,
    ErrorCategory.RUNTIME: ExitSignal.RUNTIME_ERROR,
}


def exit_signal_for(error: BaseException) -> ExitSignal:
    """Map an exception onto the run's exit signal."""
    if isinstance(error, ReconcileError):
        return _SIGNAL_BY_CATEGORY[error.category]
    return ExitSignal.RUNTIME_ERROR


def error_code_for(error: BaseException) -> str:
    """Machine-readable code for any exception."""
    if isinstance(error, ReconcileError):
        return error.code
    return "E_RUNTIME"
