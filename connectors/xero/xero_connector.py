"""Xero Accounting connector.

Typed endpoint operations built on XeroApiClient. Every response is parsed
into an explicit model; a payload that does not fit its model is an
IntegrityError, never a silently-empty result.

Usage:
    async with XeroApiClient(provider, api_config) as client:
        connector = XeroConnector(client, page_size=100, chunk_size=50)
        page = await connector.list_unreconciled_page(1)
"""

from typing import Any, Dict, Iterable, List, Type, TypeVar

from pydantic import ValidationError

from connectors.xero.xero_client import XeroApiClient
from connectors.xero.xero_models import (
    AccountsResponse,
    BankTransaction,
    BankTransactionsResponse,
    Invoice,
    InvoicesResponse,
    LineItem,
    PaymentsResponse,
    XeroBaseModel,
)
from core.errors import IntegrityError
from core.observability.logging import get_logger

logger = get_logger(__name__)

ResponseT = TypeVar("ResponseT", bound=XeroBaseModel)

UNRECONCILED_FILTER = "IsReconciled==false"


def chunked(values: List[str], size: int) -> List[List[str]]:
    """Split values into consecutive chunks of at most size."""
    return [values[i:i + size] for i in range(0, len(values), size)]


class XeroConnector:
    """Xero endpoint operations used by reconciliation."""

    def __init__(self, client: XeroApiClient, page_size: int = 100, chunk_size: int = 50):
        self.client = client
        self.page_size = page_size
        self.chunk_size = chunk_size

    def _parse(self, model: Type[ResponseT], payload: Dict[str, Any], what: str) -> ResponseT:
        try:
            return model.model_validate(payload)
        except ValidationError as e:
            raise IntegrityError(f"Invalid {what} response payload: {e.error_count()} error(s)") from e

    # =========================================================================
    # Reads
    # =========================================================================

    async def list_unreconciled_page(self, page: int) -> List[BankTransaction]:
        """One page of unreconciled bank transactions (1-based)."""
        data = await self.client.get(
            "/BankTransactions",
            params={"where": UNRECONCILED_FILTER, "page": str(page)},
        )
        return self._parse(BankTransactionsResponse, data, "BankTransactions").bank_transactions

    async def fetch_unreconciled(self) -> List[BankTransaction]:
        """All unreconciled bank transactions, paging until a short page."""
        transactions: List[BankTransaction] = []
        page = 1
        while True:
            batch = await self.list_unreconciled_page(page)
            transactions.extend(batch)
            if len(batch) < self.page_size:
                break
            page += 1
        logger.debug(
            f"Fetched {len(transactions)} unreconciled transactions",
            extra_fields={"pages": page},
        )
        return transactions

    async def list_active_account_codes(self) -> frozenset:
        """Codes of chart-of-accounts entries with Status ACTIVE."""
        data = await self.client.get("/Accounts")
        accounts = self._parse(AccountsResponse, data, "Accounts").accounts
        return frozenset(a.code for a in accounts if a.status == "ACTIVE" and a.code)

    async def get_bank_transactions(self, ids: Iterable[str]) -> List[BankTransaction]:
        """Bank transactions by id (one request, caller chunks)."""
        ids = list(ids)
        if not ids:
            return []
        data = await self.client.get("/BankTransactions", params={"IDs": ",".join(ids)})
        return self._parse(BankTransactionsResponse, data, "BankTransactions").bank_transactions

    async def get_invoices(self, ids: Iterable[str]) -> List[Invoice]:
        """Invoices by id (one request, caller chunks)."""
        ids = list(ids)
        if not ids:
            return []
        data = await self.client.get("/Invoices", params={"IDs": ",".join(ids)})
        return self._parse(InvoicesResponse, data, "Invoices").invoices

    # =========================================================================
    # Writes
    # =========================================================================

    async def update_bank_transaction(
        self,
        bank_transaction_id: str,
        line_items: List[LineItem],
    ) -> Dict[str, Any]:
        """Mark a bank transaction reconciled with the given line items.

        Returns the raw response payload; integrity checks are the caller's.
        """
        body = {
            "BankTransactions": [
                {
                    "BankTransactionID": bank_transaction_id,
                    "IsReconciled": True,
                    "LineItems": [item.to_api() for item in line_items],
                }
            ]
        }
        return await self.client.post(f"/BankTransactions/{bank_transaction_id}", body)

    async def create_payments(self, payments: List[Dict[str, Any]]) -> PaymentsResponse:
        """Create payments against invoices."""
        data = await self.client.put("/Payments", {"Payments": payments})
        return self._parse(PaymentsResponse, data, "Payments")
