"""
Observability Module for the reconciler

Provides:
- Structured logging with correlation IDs and credential redaction
- Fire-and-forget event emission to an observability server
"""

from core.observability.logging import (
    CorrelationContext,
    configure_logging,
    get_logger,
    resolve_log_level,
    should_use_json_logs,
    with_correlation,
)

from core.observability.events import (
    EventEmitter,
    NullEmitter,
    RecordingEmitter,
)

__all__ = [
    # Logging
    "CorrelationContext",
    "configure_logging",
    "get_logger",
    "resolve_log_level",
    "should_use_json_logs",
    "with_correlation",
    # Events
    "EventEmitter",
    "NullEmitter",
    "RecordingEmitter",
]
