"""
Audit journal and digest tests
"""

import os
import stat
import time
from decimal import Decimal

from core.audit.journal import (
    AuditEventType,
    AuditJournal,
    InMemoryAuditBackend,
    create_audit_entry,
    prune_audit_files,
    read_audit_file,
)
from reconciliation.preflight import SnapshotEntry
from reconciliation.report import build_report
from reconciliation.results import ReconcileResult, ResultStatus


class TestAuditJournal:
    """NDJSON per-run files."""

    def test_open_creates_private_dir_and_file(self, tmp_path):
        audit_dir = tmp_path / ".xero-reconcile-runs"
        journal = AuditJournal(audit_dir)
        path = journal.open()

        assert stat.S_IMODE(os.stat(audit_dir).st_mode) == 0o700
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
        assert path.suffix == ".ndjson"
        assert ":" not in path.name
        assert path.name.count(".") == 1

    def test_entries_buffered_until_threshold(self, tmp_path):
        journal = AuditJournal(tmp_path, flush_threshold=3)
        path = journal.open()
        journal.write(create_audit_entry(AuditEventType.SKIPPED, "a"))
        journal.write(create_audit_entry(AuditEventType.SKIPPED, "b"))
        assert read_audit_file(path) == []

        journal.write(create_audit_entry(AuditEventType.SKIPPED, "c"))
        assert [e["BankTransactionID"] for e in read_audit_file(path)] == ["a", "b", "c"]

    def test_close_flushes_and_is_idempotent(self, tmp_path):
        journal = AuditJournal(tmp_path)
        path = journal.open()
        journal.write(create_audit_entry(AuditEventType.FAILURE, "a", error="boom"))
        journal.close()
        journal.close()

        entries = read_audit_file(path)
        assert len(entries) == 1
        assert entries[0]["type"] == "failure"
        assert entries[0]["error"] == "boom"
        assert "timestamp" in entries[0]

    def test_decimal_values_serialized(self, tmp_path):
        journal = AuditJournal(tmp_path)
        path = journal.open()
        journal.write(create_audit_entry(
            AuditEventType.ACCOUNT_CODE,
            "a",
            status="reconciled",
            account_code="400",
            original_line_items=[{"LineAmount": Decimal("10.50"), "AccountCode": "200"}],
        ))
        journal.close()
        assert read_audit_file(path)[0]["originalLineItems"] == [{"LineAmount": 10.5, "AccountCode": "200"}]


class TestAuditEntries:
    """Entry construction."""

    def test_absent_fields_dropped(self):
        entry = create_audit_entry(AuditEventType.INVOICE_PAYMENT, "a", invoice_id="i", payment_id="p")
        assert entry == {"type": "invoice-payment", "BankTransactionID": "a", "InvoiceID": "i", "PaymentID": "p"}

    def test_error_is_sanitized(self):
        entry = create_audit_entry(AuditEventType.FAILURE, "a", error="failed with Bearer abc.def")
        assert "abc.def" not in entry["error"]

    def test_in_memory_backend(self):
        backend = InMemoryAuditBackend()
        backend.write(create_audit_entry(AuditEventType.SKIPPED, "a"))
        backend.write(create_audit_entry(AuditEventType.FAILURE, "b"))
        backend.close()
        assert [e["BankTransactionID"] for e in backend.of_type(AuditEventType.FAILURE)] == ["b"]
        assert backend.closed


class TestPruneAuditFiles:
    """Retention."""

    def test_prunes_only_old_regular_files(self, tmp_path):
        old_file = tmp_path / "old.ndjson"
        new_file = tmp_path / "new.ndjson"
        old_dir = tmp_path / "subdir"
        old_file.write_text("")
        new_file.write_text("")
        old_dir.mkdir()
        long_ago = time.time() - 91 * 86400
        os.utime(old_file, (long_ago, long_ago))
        os.utime(old_dir, (long_ago, long_ago))

        removed = prune_audit_files(tmp_path, retention_days=90)

        assert removed == [old_file]
        assert not old_file.exists()
        assert new_file.exists()
        assert old_dir.exists()

    def test_missing_dir_is_noop(self, tmp_path):
        assert prune_audit_files(tmp_path / "missing") == []


class TestReport:
    """Summary counts and digests."""

    def test_summary_and_digest(self):
        snapshot = {
            "a": SnapshotEntry(type="SPEND", total=Decimal("10.00")),
            "b": SnapshotEntry(type="RECEIVE", total=Decimal("5.255")),
            "c": SnapshotEntry(type="SPEND", total=Decimal("1")),
        }
        results = [
            ReconcileResult("a", ResultStatus.RECONCILED, account_code="400"),
            ReconcileResult("b", ResultStatus.RECONCILED, invoice_id="inv", payment_id="p"),
            ReconcileResult("c", ResultStatus.FAILED, account_code="400", error="boom"),
            ReconcileResult("d", ResultStatus.SKIPPED, account_code="400"),
            ReconcileResult("e", ResultStatus.RECONCILED, account_code="404"),
        ]
        report = build_report(results, snapshot, execute=True)

        assert report.summary.to_dict() == {"total": 5, "succeeded": 3, "failed": 1, "skipped": 1, "dryRun": 0}
        assert report.by_account["400"].count == 1
        assert report.by_account["400"].total == Decimal("10.00")
        assert report.by_account["404"].total == Decimal("0")
        assert report.by_type["SPEND"].count == 1
        assert report.by_type["UNKNOWN"].count == 1
        assert report.digest_lines() == [
            "Audit digest:",
            "  Account 400: 1 (10.00)",
            "  Account 404: 1 (0.00)",
            "  Type SPEND: 1 (10.00)",
            "  Type RECEIVE: 1 (5.26)",
            "  Type UNKNOWN: 1 (0.00)",
        ]
        assert report.human_lines()[:3] == ["Reconcile execute complete", "Succeeded: 3", "Failed: 1"]

    def test_dry_run_report(self):
        results = [ReconcileResult("a", ResultStatus.DRY_RUN, account_code="400")]
        report = build_report(results, {})
        assert report.summary.dry_run == 1
        assert report.by_account == {}
        assert report.to_dict()["results"] == [{"BankTransactionID": "a", "status": "dry-run", "AccountCode": "400"}]
        assert report.human_lines()[0] == "Reconcile dry-run complete"

    def test_empty_results_have_no_digest(self):
        assert build_report([], {}).digest_lines() == []

    def test_result_line(self):
        result = ReconcileResult("a", ResultStatus.FAILED, invoice_id="inv", error="nope")
        assert result.describe() == "ERR a (Invoice inv) failed - nope"
        assert ReconcileResult("a", ResultStatus.RECONCILED, account_code="400").describe() == \
            "OK a (AccountCode 400) reconciled"
