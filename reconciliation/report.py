"""Run summary and audit digest.

Aggregates per-item results into status counts and, for reconciled items,
count/total digests by account code and by transaction type.
"""

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List

from reconciliation.preflight import SnapshotEntry
from reconciliation.results import ReconcileResult, ResultStatus

UNKNOWN_TYPE = "UNKNOWN"


def format_amount(value: Decimal) -> str:
    return str(value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


@dataclass
class Summary:
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    dry_run: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "dryRun": self.dry_run,
        }


@dataclass
class DigestBucket:
    count: int = 0
    total: Decimal = Decimal("0")

    def add(self, amount: Decimal) -> None:
        self.count += 1
        self.total += amount

    def to_dict(self) -> Dict[str, Any]:
        return {"count": self.count, "total": float(self.total)}


@dataclass
class ReconcileReport:
    """Everything the CLI prints after a run."""
    execute: bool
    summary: Summary
    results: List[ReconcileResult] = field(default_factory=list)
    by_account: Dict[str, DigestBucket] = field(default_factory=dict)
    by_type: Dict[str, DigestBucket] = field(default_factory=dict)
    interrupted: bool = False

    def digest_dict(self) -> Dict[str, Any]:
        return {
            "byAccount": {code: b.to_dict() for code, b in self.by_account.items()},
            "byType": {t: b.to_dict() for t, b in self.by_type.items()},
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "command": "reconcile",
            "summary": self.summary.to_dict(),
            "results": [r.to_dict() for r in self.results],
            "digest": self.digest_dict(),
            "interrupted": self.interrupted,
        }

    def digest_lines(self) -> List[str]:
        if not self.results:
            return []
        lines = ["Audit digest:"]
        for code, bucket in self.by_account.items():
            lines.append(f"  Account {code}: {bucket.count} ({format_amount(bucket.total)})")
        for txn_type, bucket in self.by_type.items():
            lines.append(f"  Type {txn_type}: {bucket.count} ({format_amount(bucket.total)})")
        return lines

    def human_lines(self) -> List[str]:
        mode = "execute" if self.execute else "dry-run"
        lines = [
            f"Reconcile {mode} complete",
            f"Succeeded: {self.summary.succeeded}",
            f"Failed: {self.summary.failed}",
        ]
        return lines + self.digest_lines()


def summarize(results: List[ReconcileResult]) -> Summary:
    summary = Summary(total=len(results))
    for result in results:
        if result.status == ResultStatus.RECONCILED:
            summary.succeeded += 1
        elif result.status == ResultStatus.FAILED:
            summary.failed += 1
        elif result.status == ResultStatus.SKIPPED:
            summary.skipped += 1
        elif result.status == ResultStatus.DRY_RUN:
            summary.dry_run += 1
    return summary


def build_report(
    results: List[ReconcileResult],
    snapshot: Dict[str, SnapshotEntry],
    execute: bool = False,
    interrupted: bool = False,
) -> ReconcileReport:
    """Summarize results and build digests over reconciled items.

    Args:
        results: Per-item results in input order
        snapshot: Unreconciled snapshot taken at preflight
        execute: Whether the run mutated anything
        interrupted: Whether the run stopped early

    Returns:
        ReconcileReport
    """
    by_account: Dict[str, DigestBucket] = {}
    by_type: Dict[str, DigestBucket] = {}

    for result in results:
        if result.status != ResultStatus.RECONCILED:
            continue
        entry = snapshot.get(result.bank_transaction_id)
        amount = entry.total if entry and entry.total is not None else Decimal("0")
        txn_type = entry.type if entry and entry.type else UNKNOWN_TYPE
        if result.account_code:
            by_account.setdefault(result.account_code, DigestBucket()).add(amount)
        by_type.setdefault(txn_type, DigestBucket()).add(amount)

    return ReconcileReport(
        execute=execute,
        summary=summarize(results),
        results=list(results),
        by_account=by_account,
        by_type=by_type,
        interrupted=interrupted,
    )
