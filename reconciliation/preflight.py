"""Preflight cross-validation of reconcile input against live ledger state.

Everything that can be checked before the first mutation is checked here: the
requested transactions must still be unreconciled and the account codes must be
active. The records the executor needs are prefetched in batches so the
mutation loop makes exactly one request per item.
"""

import asyncio
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, FrozenSet, List, Optional

from connectors.xero.xero_connector import XeroConnector, chunked
from connectors.xero.xero_models import BankTransaction, Invoice
from core.errors import PreflightValidationError
from core.observability.logging import get_logger
from reconciliation.inputs import ReconcileRequestItem

logger = get_logger(__name__)


@dataclass(frozen=True)
class SnapshotEntry:
    """What the report needs to know about an unreconciled transaction."""
    type: Optional[str] = None
    total: Optional[Decimal] = None


@dataclass
class PreflightResult:
    """Ledger data gathered before execution."""
    snapshot: Dict[str, SnapshotEntry] = field(default_factory=dict)
    account_codes: FrozenSet[str] = frozenset()
    invoices: Dict[str, Invoice] = field(default_factory=dict)
    bank_transactions: Dict[str, BankTransaction] = field(default_factory=dict)


def _unique(values: List[str]) -> List[str]:
    return list(dict.fromkeys(values))


class PreflightValidator:
    """Fetches ledger state and rejects input that cannot be applied.

    Usage:
        preflight = await PreflightValidator(connector).run(items)
    """

    def __init__(self, connector: XeroConnector, chunk_size: int = 50):
        self.connector = connector
        self.chunk_size = chunk_size

    async def fetch_snapshot(self) -> Dict[str, SnapshotEntry]:
        transactions = await self.connector.fetch_unreconciled()
        return {
            txn.bank_transaction_id: SnapshotEntry(type=txn.type, total=txn.total)
            for txn in transactions
            if txn.bank_transaction_id
        }

    async def fetch_bank_transactions(self, ids: List[str]) -> Dict[str, BankTransaction]:
        batches = await asyncio.gather(
            *(self.connector.get_bank_transactions(chunk) for chunk in chunked(_unique(ids), self.chunk_size))
        )
        return {
            txn.bank_transaction_id: txn
            for batch in batches
            for txn in batch
            if txn.bank_transaction_id
        }

    async def fetch_invoices(self, ids: List[str]) -> Dict[str, Invoice]:
        batches = await asyncio.gather(
            *(self.connector.get_invoices(chunk) for chunk in chunked(_unique(ids), self.chunk_size))
        )
        return {invoice.invoice_id: invoice for batch in batches for invoice in batch}

    async def run(self, items: List[ReconcileRequestItem]) -> PreflightResult:
        """Validate items against the ledger and prefetch their records.

        Raises:
            PreflightValidationError: If any id is not unreconciled or any
                account code is not active
        """
        snapshot = await self.fetch_snapshot()
        logger.info(f"Preflight: fetched {len(snapshot)} unreconciled transactions")

        account_codes = await self.connector.list_active_account_codes()
        logger.info(f"Preflight: loaded {len(account_codes)} active account codes")

        missing = [item.bank_transaction_id for item in items if item.bank_transaction_id not in snapshot]
        if missing:
            # Diagnostic only: tells "already reconciled" apart from "not found"
            found = await self.fetch_bank_transactions(missing)
            lines = [f"Already reconciled: {txn_id}" for txn_id in missing if txn_id in found]
            lines += [f"Not found: {txn_id}" for txn_id in missing if txn_id not in found]
            raise PreflightValidationError("\n".join(lines), context={"ids": missing})

        invalid_codes = _unique([
            item.account_code
            for item in items
            if item.account_code and item.account_code not in account_codes
        ])
        if invalid_codes:
            raise PreflightValidationError(f"Invalid AccountCode(s): {', '.join(invalid_codes)}")

        invoice_ids = [item.invoice_id for item in items if item.invoice_id]
        invoices = await self.fetch_invoices(invoice_ids) if invoice_ids else {}
        bank_transactions = await self.fetch_bank_transactions(
            [item.bank_transaction_id for item in items]
        )

        return PreflightResult(
            snapshot=snapshot,
            account_codes=account_codes,
            invoices=invoices,
            bank_transactions=bank_transactions,
        )
