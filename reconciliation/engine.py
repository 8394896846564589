"""Reconciliation engine for Xero bank transactions.

Exposes:
- ReconcileExecutor: applies validated items one at a time
- run_reconcile(command, config, access_provider, items) -> RunOutcome

Each item ends in exactly one ReconcileResult. Per-item problems (integrity
failures, conflicts, bad invoices) are results; only conditions that make every
later item pointless (authentication, state persistence) abort the batch.
"""

import asyncio
import signal
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from connectors.xero.xero_auth import AccessProvider
from connectors.xero.xero_client import (
    RetryInfo,
    XeroApiClient,
    XeroApiConfig,
    XeroAuthError,
    XeroConflictError,
)
from connectors.xero.xero_connector import XeroConnector
from connectors.xero.xero_models import LineItem
from core.audit.journal import (
    AuditBackend,
    AuditEventType,
    AuditJournal,
    create_audit_entry,
    prune_audit_files,
)
from core.config import ReconcileConfig
from core.errors import ExitSignal, IntegrityError, ReconcileError, exit_signal_for
from core.observability.events import EventEmitter, NullEmitter
from core.observability.logging import get_logger, with_correlation
from core.security.redaction import sanitize_error_message
from core.state.lock import RunLock, acquire_lock, release_lock
from core.state.state import StateBatcher, load_state, save_state
from reconciliation.inputs import ReconcileRequestItem
from reconciliation.preflight import PreflightResult, PreflightValidator
from reconciliation.report import ReconcileReport, build_report
from reconciliation.results import ReconcileResult, ResultStatus
from reconciliation.validators import (
    assert_valid_bank_transaction_response,
    assert_valid_payment_response,
)

logger = get_logger(__name__)

AUTO_RECONCILE_DESCRIPTION = "Auto-reconciled via xero-reconcile"
DEFAULT_TAX_TYPE = "INPUT"


# =============================================================================
# Data Structures
# =============================================================================

@dataclass
class ReconcileCommand:
    """What the caller asked for."""
    execute: bool = False
    from_csv: Optional[str] = None

    @property
    def mode(self) -> str:
        return "execute" if self.execute else "dry-run"


@dataclass
class ExecutionOutcome:
    results: List[ReconcileResult] = field(default_factory=list)
    interrupted: bool = False


@dataclass
class RunOutcome:
    """Terminal outcome of run_reconcile."""
    signal: ExitSignal
    report: Optional[ReconcileReport] = None
    error: Optional[BaseException] = None


# =============================================================================
# Executor
# =============================================================================

class ReconcileExecutor:
    """Applies reconcile items against Xero, in input order.

    Usage:
        executor = ReconcileExecutor(connector, preflight, batcher, audit, execute=True)
        outcome = await executor.run(items)
    """

    def __init__(
        self,
        connector: XeroConnector,
        preflight: PreflightResult,
        batcher: StateBatcher,
        audit: Optional[AuditBackend] = None,
        execute: bool = False,
        on_result: Optional[Callable[[ReconcileResult, int, int], None]] = None,
        is_interrupted: Optional[Callable[[], bool]] = None,
        heartbeat: Optional[Callable[[], None]] = None,
    ):
        """Initialize executor.

        Args:
            connector: Xero endpoint operations
            preflight: Prefetched records from the preflight pass
            batcher: Owner of the processed-id state
            audit: Audit sink (None in dry-run)
            execute: Whether to mutate
            on_result: Called with (result, index, total) after every item
            is_interrupted: Checked before the first item and after every item;
                True stops the loop
            heartbeat: Called after every item to keep the run lock fresh
        """
        self.connector = connector
        self.preflight = preflight
        self.batcher = batcher
        self.audit = audit
        self.execute = execute
        self.on_result = on_result
        self.is_interrupted = is_interrupted or (lambda: False)
        self.heartbeat = heartbeat

    async def run(self, items: List[ReconcileRequestItem]) -> ExecutionOutcome:
        outcome = ExecutionOutcome()
        try:
            if self.is_interrupted():
                logger.warning(f"Interrupted before processing {len(items)} items")
                outcome.interrupted = True
                return outcome
            for index, item in enumerate(items, start=1):
                with with_correlation(bank_transaction_id=item.bank_transaction_id):
                    result = await self.process(item)
                outcome.results.append(result)

                if self.on_result:
                    self.on_result(result, index, len(items))
                if self.heartbeat:
                    self.heartbeat()
                if self.is_interrupted():
                    logger.warning(f"Interrupted after {index}/{len(items)} items")
                    outcome.interrupted = True
                    break
        finally:
            self.batcher.flush()
            if self.audit is not None:
                self.audit.close()
        return outcome

    async def process(self, item: ReconcileRequestItem) -> ReconcileResult:
        """Produce the result for one item, applying it when executing."""
        txn_id = item.bank_transaction_id

        if self.batcher.is_processed(txn_id):
            logger.debug("Skipping - already processed in state")
            return self._result(item, ResultStatus.SKIPPED)

        if not self.execute:
            logger.debug(f"Dry-run with {item.detail}")
            return self._result(item, ResultStatus.DRY_RUN)

        try:
            if item.account_code:
                result, entry = await self.apply_account_code(item)
            else:
                result, entry = await self.apply_invoice_payment(item)
        except XeroAuthError:
            raise
        except XeroConflictError as e:
            message = sanitize_error_message(e.message)
            logger.debug(f"Conflict skip: {message}")
            self._write_audit(create_audit_entry(AuditEventType.SKIPPED, txn_id, error=message))
            return self._result(item, ResultStatus.SKIPPED, error=message)
        except Exception as e:
            message = sanitize_error_message(e.message if isinstance(e, ReconcileError) else str(e))
            logger.debug(f"Failed: {message}", exc_info=not isinstance(e, ReconcileError))
            self._write_audit(create_audit_entry(AuditEventType.FAILURE, txn_id, error=message))
            return self._result(item, ResultStatus.FAILED, error=message)

        self.batcher.mark_processed(txn_id)
        self._write_audit(entry)
        return result

    # =========================================================================
    # Strategies
    # =========================================================================

    async def apply_account_code(self, item: ReconcileRequestItem) -> Tuple[ReconcileResult, Dict[str, Any]]:
        txn_id = item.bank_transaction_id
        pre = self.preflight.bank_transactions.get(txn_id)
        if pre is None:
            raise IntegrityError(f"BankTransaction not found in prefetch: {txn_id}")

        existing = pre.line_items
        if len(existing) > 1 and len(pre.distinct_account_codes()) > 1:
            raise IntegrityError("BankTransaction has split line items")

        total = pre.total if pre.total is not None else Decimal("0")
        if not existing:
            line_items = [
                LineItem(
                    description=AUTO_RECONCILE_DESCRIPTION,
                    quantity=Decimal("1"),
                    unit_amount=total,
                    line_amount=total,
                    tax_type=DEFAULT_TAX_TYPE,
                    account_code=item.account_code,
                )
            ]
        else:
            line_items = [li.model_copy(update={"account_code": item.account_code}) for li in existing]

        logger.debug(f"Updating with {len(line_items)} line item(s)")
        payload = await self.connector.update_bank_transaction(txn_id, line_items)
        assert_valid_bank_transaction_response(payload, txn_id, pre.total)
        logger.debug(f"Reconciled via AccountCode {item.account_code}")

        result = ReconcileResult(
            bank_transaction_id=txn_id,
            status=ResultStatus.RECONCILED,
            account_code=item.account_code,
        )
        entry = create_audit_entry(
            AuditEventType.ACCOUNT_CODE,
            txn_id,
            status=ResultStatus.RECONCILED.value,
            account_code=item.account_code,
            original_line_items=[li.to_api() for li in existing],
        )
        return result, entry

    async def apply_invoice_payment(self, item: ReconcileRequestItem) -> Tuple[ReconcileResult, Dict[str, Any]]:
        txn_id = item.bank_transaction_id
        invoice_id = item.invoice_id
        if item.amount is None or not item.currency_code:
            raise IntegrityError("Invoice payments require Amount and CurrencyCode")

        invoice = self.preflight.invoices.get(invoice_id)
        if invoice is None:
            raise IntegrityError(f"Invoice not found: {invoice_id}")
        if invoice.status != "AUTHORISED":
            raise IntegrityError(f"Invoice not AUTHORISED: {invoice_id}")
        if invoice.currency_code != item.currency_code:
            raise IntegrityError(f"Invoice currency mismatch: {invoice_id}")
        if invoice.amount_due is None or invoice.amount_due < item.amount:
            raise IntegrityError(f"Invoice amount due less than input: {invoice_id}")

        bank_txn = self.preflight.bank_transactions.get(txn_id)
        if bank_txn is None:
            raise IntegrityError(f"BankTransaction not found in prefetch: {txn_id}")
        if bank_txn.bank_account is None or not bank_txn.bank_account.account_id:
            raise IntegrityError("Missing BankAccount.AccountID for payment")

        payment_body: Dict[str, Any] = {
            "Invoice": {"InvoiceID": invoice_id},
            "Account": {"AccountID": bank_txn.bank_account.account_id},
            "Amount": item.amount,
        }
        if bank_txn.date_string:
            payment_body["Date"] = bank_txn.date_string

        response = await self.connector.create_payments([payment_body])
        payment = assert_valid_payment_response(response)
        logger.debug(f"Reconciled via Invoice {invoice_id}, payment {payment.payment_id}")

        result = ReconcileResult(
            bank_transaction_id=txn_id,
            status=ResultStatus.RECONCILED,
            invoice_id=invoice_id,
            payment_id=payment.payment_id,
        )
        entry = create_audit_entry(
            AuditEventType.INVOICE_PAYMENT,
            txn_id,
            status=ResultStatus.RECONCILED.value,
            invoice_id=invoice_id,
            payment_id=payment.payment_id,
        )
        return result, entry

    # =========================================================================
    # Helpers
    # =========================================================================

    def _result(self, item: ReconcileRequestItem, status: ResultStatus, error: Optional[str] = None) -> ReconcileResult:
        return ReconcileResult(
            bank_transaction_id=item.bank_transaction_id,
            status=status,
            account_code=item.account_code,
            invoice_id=item.invoice_id,
            error=error,
        )

    def _write_audit(self, entry: Dict[str, Any]) -> None:
        if self.audit is not None:
            self.audit.write(entry)


# =============================================================================
# Orchestration
# =============================================================================

def _install_sigint(interrupt: asyncio.Event) -> bool:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, interrupt.set)
    except (NotImplementedError, RuntimeError):
        # No signal support (non-main thread or platform without it)
        return False
    return True


async def run_reconcile(
    command: ReconcileCommand,
    config: ReconcileConfig,
    access_provider: AccessProvider,
    items: List[ReconcileRequestItem],
    on_result: Optional[Callable[[ReconcileResult, int, int], None]] = None,
    on_retry: Optional[Callable[[RetryInfo], None]] = None,
    emitter: Optional[EventEmitter] = None,
    interrupt: Optional[asyncio.Event] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> RunOutcome:
    """Run a full reconcile: lock, preflight, execute, report.

    Args:
        command: Execute/dry-run and input source
        config: Run configuration
        access_provider: Source of token and tenant id
        items: Validated input items
        on_result: Per-item callback (index is 1-based)
        on_retry: Called before every API retry sleep
        emitter: Event sink
        interrupt: Set to stop after the current item (SIGINT sets it)
        sleep: Awaitable used for retry backoff

    Returns:
        RunOutcome with the exit signal and, unless the run aborted, the report
    """
    emitter = emitter or NullEmitter()
    interrupt = interrupt or asyncio.Event()
    installed = _install_sigint(interrupt)
    lock: Optional[RunLock] = None
    run_id = uuid.uuid4().hex[:12]

    with with_correlation(run_id=run_id, command="reconcile", mode=command.mode):
        logger.info(
            f"Reconcile run started in {command.mode} mode",
            extra_fields={"source": command.from_csv or "stdin", "items": len(items)},
        )
        try:
            if command.execute:
                lock = acquire_lock(config.lock_path, config.lock_timeout_seconds)
                prune_audit_files(config.audit_dir, config.audit_retention_days)

            await access_provider.get_access_context()

            async with XeroApiClient(
                access_provider,
                XeroApiConfig.from_config(config),
                on_retry=on_retry,
                emitter=emitter,
                sleep=sleep,
            ) as client:
                connector = XeroConnector(client, config.page_size, config.batch_chunk_size)
                preflight = await PreflightValidator(connector, config.batch_chunk_size).run(items)

                batcher = StateBatcher(
                    load_state(config.state_path),
                    save=lambda state: save_state(state, config.state_path),
                    checkpoint_interval=config.checkpoint_interval,
                )
                audit: Optional[AuditJournal] = None
                if command.execute:
                    audit = AuditJournal(config.audit_dir, config.audit_flush_threshold)
                    audit.open()

                executor = ReconcileExecutor(
                    connector,
                    preflight,
                    batcher,
                    audit=audit,
                    execute=command.execute,
                    on_result=on_result,
                    is_interrupted=interrupt.is_set,
                    heartbeat=lock.heartbeat if lock else None,
                )
                outcome = await executor.run(items)

            report = build_report(
                outcome.results,
                preflight.snapshot,
                execute=command.execute,
                interrupted=outcome.interrupted,
            )
            summary = report.summary
            logger.info(
                f"Batch summary: {summary.succeeded} succeeded, {summary.failed} failed, "
                f"{summary.skipped} skipped, {summary.dry_run} dry-run (total {summary.total})"
            )
            emitter.emit(
                "xero-reconcile-completed",
                {
                    "executed": command.execute,
                    "summary": summary.to_dict(),
                    "interrupted": outcome.interrupted,
                },
            )
            run_signal = ExitSignal.INTERRUPTED if outcome.interrupted else ExitSignal.OK
            return RunOutcome(signal=run_signal, report=report)

        except ReconcileError as e:
            logger.info(f"Reconcile run aborted: {e.message}", extra_fields={"code": e.code})
            return RunOutcome(signal=exit_signal_for(e), error=e)

        finally:
            if installed:
                asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)
            if lock is not None:
                release_lock(config.lock_path)
