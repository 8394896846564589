"""Append-only audit journal for reconcile runs.

Every mutation (and every skipped or failed item in an execute run) is
recorded as one JSON line in a per-run file under
``<work_dir>/.xero-reconcile-runs/``. Files are owner-only and pruned after
the retention window.
"""

import json
import stat
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from core.observability.logging import get_logger
from core.security.files import create_private_file, ensure_private_dir
from core.security.redaction import sanitize_error_message

logger = get_logger(__name__)

DEFAULT_FLUSH_THRESHOLD = 50
DEFAULT_RETENTION_DAYS = 90


class AuditEventType(str, Enum):
    """Audit entry types."""
    ACCOUNT_CODE = "account-code"
    INVOICE_PAYMENT = "invoice-payment"
    SKIPPED = "skipped"
    FAILURE = "failure"


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def create_audit_entry(
    event_type: AuditEventType,
    bank_transaction_id: str,
    status: Optional[str] = None,
    account_code: Optional[str] = None,
    invoice_id: Optional[str] = None,
    payment_id: Optional[str] = None,
    original_line_items: Optional[List[Dict[str, Any]]] = None,
    error: Optional[str] = None,
) -> Dict[str, Any]:
    """Build an audit entry in its wire shape, dropping absent fields.

    Args:
        event_type: Kind of entry
        bank_transaction_id: Transaction the entry is about
        status: Result status of the item
        account_code: Account code applied
        invoice_id: Invoice paid
        payment_id: Payment created
        original_line_items: Line items as they were before the update
        error: Error message (sanitized here)

    Returns:
        Entry dict without the timestamp (added on write)
    """
    entry: Dict[str, Any] = {
        "type": event_type.value,
        "BankTransactionID": bank_transaction_id,
        "status": status,
        "AccountCode": account_code,
        "InvoiceID": invoice_id,
        "PaymentID": payment_id,
        "originalLineItems": original_line_items,
        "error": sanitize_error_message(error) if error else None,
    }
    return {k: v for k, v in entry.items() if v is not None}


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class AuditBackend(ABC):
    """Abstract base class for audit persistence backends."""

    @abstractmethod
    def write(self, entry: Dict[str, Any]) -> None:
        """Record an entry."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Flush pending entries. Safe to call more than once."""
        pass


class AuditJournal(AuditBackend):
    """NDJSON audit file for a single run.

    Entries are buffered and appended every ``flush_threshold`` writes and on
    close().

    Usage:
        journal = AuditJournal(config.audit_dir)
        journal.open()
        journal.write(create_audit_entry(AuditEventType.SKIPPED, txn_id))
        journal.close()
    """

    def __init__(self, audit_dir: Path, flush_threshold: int = DEFAULT_FLUSH_THRESHOLD):
        self.audit_dir = Path(audit_dir)
        self.flush_threshold = flush_threshold
        self.path: Optional[Path] = None
        self._buffer: List[str] = []
        self._closed = False

    def open(self) -> Path:
        """Create the audit directory and this run's file."""
        ensure_private_dir(self.audit_dir)
        stamp = utc_timestamp().replace(":", "-").replace(".", "-")
        path = self.audit_dir / f"{stamp}.ndjson"
        create_private_file(path)
        self.path = path
        logger.debug(f"Audit journal opened at {path.name}")
        return path

    def write(self, entry: Dict[str, Any]) -> None:
        if self.path is None:
            raise RuntimeError("Audit journal not opened. Call open() first.")
        record = dict(entry)
        record.setdefault("timestamp", utc_timestamp())
        self._buffer.append(json.dumps(record, default=_json_default))
        if len(self._buffer) >= self.flush_threshold:
            self.flush()

    def flush(self) -> None:
        if not self._buffer or self.path is None:
            return
        with open(self.path, "a", encoding="utf-8") as f:
            f.write("\n".join(self._buffer) + "\n")
        self._buffer.clear()

    def close(self) -> None:
        if self._closed:
            return
        self.flush()
        self._closed = True


class InMemoryAuditBackend(AuditBackend):
    """In-memory audit backend for testing."""

    def __init__(self):
        self.entries: List[Dict[str, Any]] = []
        self.closed = False

    def write(self, entry: Dict[str, Any]) -> None:
        record = dict(entry)
        record.setdefault("timestamp", utc_timestamp())
        self.entries.append(record)

    def close(self) -> None:
        self.closed = True

    def of_type(self, event_type: AuditEventType) -> List[Dict[str, Any]]:
        return [e for e in self.entries if e["type"] == event_type.value]


def read_audit_file(path: Path) -> List[Dict[str, Any]]:
    """Parse an NDJSON audit file."""
    with open(path, "r", encoding="utf-8") as f:
        return [json.loads(line) for line in f if line.strip()]


def prune_audit_files(
    audit_dir: Path,
    retention_days: int = DEFAULT_RETENTION_DAYS,
    now: Optional[float] = None,
) -> List[Path]:
    """Delete regular files in audit_dir older than retention_days (by mtime).

    Returns:
        Paths that were removed
    """
    audit_dir = Path(audit_dir)
    if not audit_dir.is_dir():
        return []

    cutoff = (now if now is not None else time.time()) - retention_days * 86400
    removed: List[Path] = []
    for path in audit_dir.iterdir():
        info = path.lstat()
        if not stat.S_ISREG(info.st_mode):
            continue
        if info.st_mtime < cutoff:
            path.unlink()
            removed.append(path)

    if removed:
        logger.info(f"Pruned {len(removed)} audit file(s) older than {retention_days} days")
    return removed
