"""Per-item reconcile outcomes."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class ResultStatus(str, Enum):
    RECONCILED = "reconciled"
    SKIPPED = "skipped"
    FAILED = "failed"
    DRY_RUN = "dry-run"


RESULT_PREFIXES = {
    ResultStatus.RECONCILED: "OK",
    ResultStatus.SKIPPED: "SKIP",
    ResultStatus.FAILED: "ERR",
    ResultStatus.DRY_RUN: "DRY",
}


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of one requested item."""
    bank_transaction_id: str
    status: ResultStatus
    account_code: Optional[str] = None
    invoice_id: Optional[str] = None
    payment_id: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "BankTransactionID": self.bank_transaction_id,
            "status": self.status.value,
            "AccountCode": self.account_code,
            "InvoiceID": self.invoice_id,
            "PaymentID": self.payment_id,
            "error": self.error,
        }
        return {k: v for k, v in data.items() if v is not None}

    def describe(self) -> str:
        """One human-readable line, e.g. ``OK <id> (AccountCode 400) reconciled``."""
        if self.account_code:
            detail = f"AccountCode {self.account_code}"
        elif self.invoice_id:
            detail = f"Invoice {self.invoice_id}"
        else:
            detail = "No detail"
        message = f" - {self.error}" if self.error else ""
        return f"{RESULT_PREFIXES[self.status]} {self.bank_transaction_id} ({detail}) {self.status.value}{message}"
