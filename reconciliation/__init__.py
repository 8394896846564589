"""Bank transaction reconciliation against Xero.

- inputs: parse and validate requested items
- preflight: cross-check items against live ledger state
- engine: apply items and orchestrate a run
- validators: integrity checks on write responses
- report: summary and audit digest
"""

from reconciliation.engine import (
    ExecutionOutcome,
    ReconcileCommand,
    ReconcileExecutor,
    RunOutcome,
    run_reconcile,
)
from reconciliation.inputs import ReconcileRequestItem, validate_inputs
from reconciliation.preflight import PreflightResult, PreflightValidator, SnapshotEntry
from reconciliation.report import DigestBucket, ReconcileReport, Summary, build_report
from reconciliation.results import ReconcileResult, ResultStatus

__all__ = [
    "ExecutionOutcome",
    "ReconcileCommand",
    "ReconcileExecutor",
    "RunOutcome",
    "run_reconcile",
    "ReconcileRequestItem",
    "validate_inputs",
    "PreflightResult",
    "PreflightValidator",
    "SnapshotEntry",
    "DigestBucket",
    "ReconcileReport",
    "Summary",
    "build_report",
    "ReconcileResult",
    "ResultStatus",
]
