"""Persistent record of processed bank transactions.

The state file lets an interrupted or partially failed execute run be resumed:
ids marked processed are skipped on the next run. The file is owner-only and
written atomically; a corrupt or insecure file is an error, never a silent
reset.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Optional

from core.errors import StateFileError
from core.observability.logging import get_logger
from core.security.files import assert_secure_file, atomic_write_json

logger = get_logger(__name__)

STATE_SCHEMA_VERSION = 1


@dataclass
class ReconcileState:
    """Processed-id map, versioned."""
    schema_version: int = STATE_SCHEMA_VERSION
    processed: Dict[str, bool] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {"schemaVersion": self.schema_version, "processed": dict(self.processed)}

    @classmethod
    def from_dict(cls, data: Dict) -> "ReconcileState":
        if not isinstance(data, dict):
            raise StateFileError("State file must contain a JSON object")
        version = data.get("schemaVersion")
        if not isinstance(version, int) or isinstance(version, bool):
            raise StateFileError("State file has missing or invalid schemaVersion")
        processed = data.get("processed")
        if not isinstance(processed, dict):
            raise StateFileError("State file has missing or invalid processed map")
        return cls(
            schema_version=version,
            processed={str(k): bool(v) for k, v in processed.items()},
        )


def load_state(path: Path) -> ReconcileState:
    """Load state, or an empty state if the file does not exist.

    Raises:
        StateFileError: If the file is insecure or unparsable
    """
    path = Path(path)
    if not path.exists() and not path.is_symlink():
        return ReconcileState()

    assert_secure_file(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise StateFileError(f"State file is not valid JSON: {path.name}") from e
    return ReconcileState.from_dict(data)


def save_state(state: ReconcileState, path: Path) -> None:
    """Persist state atomically with owner-only permissions."""
    atomic_write_json(Path(path), state.to_dict())


class StateBatcher:
    """Sole owner of the processed map during a run.

    Marks are kept in memory and persisted every ``checkpoint_interval`` marks
    and on flush().

    Usage:
        batcher = StateBatcher(load_state(path), save=lambda s: save_state(s, path))
        if not batcher.is_processed(txn_id):
            ...
            batcher.mark_processed(txn_id)
        batcher.flush()
    """

    def __init__(
        self,
        initial: Optional[ReconcileState] = None,
        save: Optional[Callable[[ReconcileState], None]] = None,
        checkpoint_interval: int = 50,
    ):
        initial = initial or ReconcileState()
        self._state = ReconcileState(
            schema_version=initial.schema_version,
            processed=dict(initial.processed),
        )
        self._save = save
        self.checkpoint_interval = max(1, checkpoint_interval)
        self._pending = 0

    @property
    def dirty(self) -> bool:
        return self._pending > 0

    def is_processed(self, bank_transaction_id: str) -> bool:
        return self._state.processed.get(bank_transaction_id, False)

    def mark_processed(self, bank_transaction_id: str) -> None:
        self._state.processed[bank_transaction_id] = True
        self._pending += 1
        if self._pending >= self.checkpoint_interval:
            self.flush()

    def flush(self) -> None:
        if not self.dirty:
            return
        if self._save is not None:
            self._save(self.snapshot())
            logger.debug(f"State checkpoint saved ({len(self._state.processed)} processed)")
        self._pending = 0

    def snapshot(self) -> ReconcileState:
        """Copy of the current state."""
        return ReconcileState(
            schema_version=self._state.schema_version,
            processed=dict(self._state.processed),
        )
