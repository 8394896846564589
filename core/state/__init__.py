"""Run state - processed-id persistence and the single-writer lock."""

from core.state.lock import RunLock, acquire_lock, is_process_alive, release_lock
from core.state.state import (
    STATE_SCHEMA_VERSION,
    ReconcileState,
    StateBatcher,
    load_state,
    save_state,
)

__all__ = [
    "RunLock",
    "acquire_lock",
    "is_process_alive",
    "release_lock",
    "STATE_SCHEMA_VERSION",
    "ReconcileState",
    "StateBatcher",
    "load_state",
    "save_state",
]
