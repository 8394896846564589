"""
Structured Logging with Correlation IDs

Provides logging utilities that automatically include:
- run_id: Links logs to a single reconcile invocation
- mode: "execute" or "dry-run"
- bank_transaction_id: The item currently being processed

All output goes to stderr (stdout carries command results) and every record
passes through a redaction filter so bearer tokens and tenant ids never reach
a log sink.

Usage:
    from core.observability.logging import get_logger, with_correlation

    logger = get_logger(__name__)

    with with_correlation(run_id="3f2a...", mode="execute"):
        logger.info("Reconcile run started")  # Includes run_id and mode
"""

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TextIO

from core.security.redaction import sanitize_error_message


# =============================================================================
# Correlation Context
# =============================================================================

@dataclass
class CorrelationContext:
    """Context for correlating logs across a reconcile run."""
    run_id: Optional[str] = None
    command: Optional[str] = None
    mode: Optional[str] = None
    bank_transaction_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict, excluding None values."""
        return {k: v for k, v in asdict(self).items() if v is not None}

    def merge(self, **kwargs) -> "CorrelationContext":
        """Create a new context with merged values."""
        data = self.to_dict()
        data.update({k: v for k, v in kwargs.items() if v is not None})
        return CorrelationContext(**data)


_correlation_context: ContextVar[CorrelationContext] = ContextVar(
    "correlation_context",
    default=CorrelationContext()
)


def get_correlation_context() -> CorrelationContext:
    """Get the current correlation context."""
    return _correlation_context.get()


@contextmanager
def with_correlation(**kwargs):
    """
    Context manager to set correlation IDs for logging.

    Usage:
        with with_correlation(bank_transaction_id=txn_id):
            logger.debug("Processing")  # Will include bank_transaction_id
    """
    new_ctx = get_correlation_context().merge(**kwargs)
    token = _correlation_context.set(new_ctx)
    try:
        yield new_ctx
    finally:
        _correlation_context.reset(token)


# =============================================================================
# Formatters and Filters
# =============================================================================

class RedactionFilter(logging.Filter):
    """Scrub credential-shaped substrings from the rendered message."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = sanitize_error_message(record.getMessage())
        record.args = ()
        extra = getattr(record, "extra_fields", None)
        if extra:
            record.extra_fields = {
                k: sanitize_error_message(v) if isinstance(v, str) else v
                for k, v in extra.items()
            }
        return True


class StructuredFormatter(logging.Formatter):
    """
    JSON lines formatter that includes correlation context.

    Output format:
    {
        "timestamp": "2026-01-09T12:00:00.000000Z",
        "level": "INFO",
        "logger": "reconciliation.engine",
        "message": "Batch summary",
        "run_id": "3f2a...",
        "succeeded": 4
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_data.update(get_correlation_context().to_dict())

        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        if record.exc_info:
            log_data["exception"] = sanitize_error_message(self.formatException(record.exc_info))

        return json.dumps(log_data, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Human-readable formatter that includes key correlation IDs.

    Output format:
    2026-01-09 12:00:00 [INFO ] reconciliation.engine [3f2a9c1d/txn:1111...]: Batch summary
    """

    def format(self, record: logging.LogRecord) -> str:
        ctx = get_correlation_context()

        correlation_parts = []
        if ctx.run_id:
            correlation_parts.append(ctx.run_id[:8])
        if ctx.bank_transaction_id:
            correlation_parts.append(f"txn:{ctx.bank_transaction_id}")
        correlation = "/".join(correlation_parts) if correlation_parts else "-"

        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        msg = f"{timestamp} [{record.levelname:5}] {record.name} [{correlation}]: {record.getMessage()}"

        extra = getattr(record, "extra_fields", None)
        if extra:
            msg += " " + " ".join(f"{k}={v}" for k, v in extra.items())

        if record.exc_info:
            msg += "\n" + sanitize_error_message(self.formatException(record.exc_info))

        return msg


# =============================================================================
# Logger with Correlation Support
# =============================================================================

class CorrelatedLogger:
    """
    Logger wrapper that automatically includes correlation context.

    Also supports adding extra fields to individual log calls:
        logger.info("Preflight complete", extra_fields={"transaction_count": 12})
    """

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    def _log(self, level: int, msg: str, *args, **kwargs):
        extra_fields = kwargs.pop("extra_fields", {})
        exc_info = kwargs.pop("exc_info", None)
        if exc_info is True:
            exc_info = sys.exc_info()

        record = self._logger.makeRecord(
            self._logger.name,
            level,
            "(unknown file)",
            0,
            msg,
            args,
            exc_info,
        )
        record.extra_fields = extra_fields
        self._logger.handle(record)

    def debug(self, msg: str, *args, **kwargs):
        if self._logger.isEnabledFor(logging.DEBUG):
            self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        if self._logger.isEnabledFor(logging.INFO):
            self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        if self._logger.isEnabledFor(logging.WARNING):
            self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        if self._logger.isEnabledFor(logging.ERROR):
            self._log(logging.ERROR, msg, *args, **kwargs)

    def exception(self, msg: str, *args, **kwargs):
        kwargs["exc_info"] = True
        self.error(msg, *args, **kwargs)

    def setLevel(self, level):
        self._logger.setLevel(level)

    def isEnabledFor(self, level):
        return self._logger.isEnabledFor(level)


# =============================================================================
# Logger Factory
# =============================================================================

_loggers: Dict[str, CorrelatedLogger] = {}
_handler: Optional[logging.Handler] = None

LOG_LEVELS = {
    "silent": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


def resolve_log_level(name: str) -> int:
    """Map a CLI log level name (silent/info/debug) onto a logging level."""
    return LOG_LEVELS.get(name, logging.WARNING)


def should_use_json_logs(
    json_output: bool,
    log_format: Optional[str] = None,
    stream: Optional[TextIO] = None,
) -> bool:
    """JSON logs when forced by env, when output is JSON, or when not on a TTY."""
    if log_format == "text":
        return False
    if log_format == "json" or json_output:
        return True
    stream = stream or sys.stderr
    return not (hasattr(stream, "isatty") and stream.isatty())


def configure_logging(
    level: int = logging.WARNING,
    json_format: bool = False,
    stream: Optional[TextIO] = None,
):
    """
    Configure logging for the application.

    Calling again replaces the previously installed handler, so a CLI
    invocation (or a test) always gets the settings it asked for.

    Args:
        level: Logging level
        json_format: If True, use JSON lines; otherwise human-readable
        stream: Destination stream (defaults to stderr)
    """
    global _handler

    root = logging.getLogger()
    if _handler is not None:
        root.removeHandler(_handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(level)
    handler.addFilter(RedactionFilter())
    handler.setFormatter(StructuredFormatter() if json_format else HumanReadableFormatter())

    root.setLevel(level)
    root.addHandler(handler)
    _handler = handler

    for logger_name in ["cli", "connectors", "core", "reconciliation"]:
        logging.getLogger(logger_name).setLevel(level)

    # Reduce noise from third-party libraries
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def get_logger(name: str) -> CorrelatedLogger:
    """
    Get a correlated logger for the given name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        CorrelatedLogger instance
    """
    if name not in _loggers:
        _loggers[name] = CorrelatedLogger(logging.getLogger(name))
    return _loggers[name]
