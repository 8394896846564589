"""Shared test helpers: an in-process fake of the Xero Accounting API."""

import asyncio
import json
import threading
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from connectors.xero.xero_auth import StaticAccessProvider
from core.config import ReconcileConfig

TEST_TOKEN = "test-access-token"
TEST_TENANT = "tenant-1234"


def new_id() -> str:
    return str(uuid.uuid4())


def make_transaction(
    txn_id: Optional[str] = None,
    total: float = 100.0,
    txn_type: str = "SPEND",
    line_items: Optional[List[Dict[str, Any]]] = None,
    reconciled: bool = False,
    account_id: Optional[str] = "bank-account-1",
) -> Dict[str, Any]:
    txn = {
        "BankTransactionID": txn_id or new_id(),
        "Type": txn_type,
        "Date": "/Date(1767225600000+0000)/",
        "DateString": "2026-01-01T00:00:00",
        "Total": total,
        "IsReconciled": reconciled,
        "LineItems": line_items if line_items is not None else [],
    }
    if account_id:
        txn["BankAccount"] = {"AccountID": account_id, "Code": "090"}
    return txn


class MockXeroServer:
    """Serves /BankTransactions, /Accounts, /Invoices and /Payments from memory.

    One-shot scripted responses can be queued per (method, path) with
    script(); they are served before the normal handler.

    Usage:
        async with MockXeroServer() as xero:
            xero.add_transaction(make_transaction())
            config = xero.config(tmp_path)
    """

    def __init__(self, page_size: int = 100):
        self.page_size = page_size
        self.transactions: Dict[str, Dict[str, Any]] = {}
        self.accounts: List[Dict[str, Any]] = [
            {"AccountID": "acc-400", "Code": "400", "Status": "ACTIVE"},
            {"AccountID": "acc-404", "Code": "404", "Status": "ACTIVE"},
            {"AccountID": "acc-999", "Code": "999", "Status": "ARCHIVED"},
        ]
        self.invoices: Dict[str, Dict[str, Any]] = {}
        self.payments: List[Dict[str, Any]] = []
        self.requests: List[Tuple[str, str, Dict[str, str], Optional[Any]]] = []
        self.headers: List[Any] = []
        self._scripted: Dict[Tuple[str, str], List[Tuple[int, Any, Dict[str, str]]]] = {}
        self.response_overrides: Dict[str, Dict[str, Any]] = {}
        self.delay_seconds = 0.0
        self._server: Optional[TestServer] = None

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def add_transaction(self, txn: Dict[str, Any]) -> str:
        self.transactions[txn["BankTransactionID"]] = txn
        return txn["BankTransactionID"]

    def add_invoice(
        self,
        invoice_id: Optional[str] = None,
        status: str = "AUTHORISED",
        amount_due: float = 100.0,
        currency: str = "NZD",
    ) -> str:
        invoice_id = invoice_id or new_id()
        self.invoices[invoice_id] = {
            "InvoiceID": invoice_id,
            "Status": status,
            "AmountDue": amount_due,
            "CurrencyCode": currency,
        }
        return invoice_id

    def script(self, method: str, path: str, status: int, body: Any = "", headers: Optional[Dict[str, str]] = None):
        """Queue a one-shot response for method+path."""
        self._scripted.setdefault((method, path), []).append((status, body, headers or {}))

    def mutations(self) -> List[Tuple[str, str, Dict[str, str], Optional[Any]]]:
        return [r for r in self.requests if r[0] in ("POST", "PUT")]

    def config(self, work_dir: Path, **overrides: Any) -> ReconcileConfig:
        values = dict(api_base_url=self.base_url, backoff_base_seconds=0.01, timeout_seconds=5.0)
        values.update(overrides)
        return ReconcileConfig(work_dir=work_dir, **values)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def base_url(self) -> str:
        return str(self._server.make_url("")).rstrip("/")

    async def start(self) -> "MockXeroServer":
        app = web.Application()
        app.router.add_get("/BankTransactions", self._list_bank_transactions)
        app.router.add_post("/BankTransactions/{txn_id}", self._update_bank_transaction)
        app.router.add_get("/Accounts", self._list_accounts)
        app.router.add_get("/Invoices", self._list_invoices)
        app.router.add_put("/Payments", self._create_payments)
        app.middlewares.append(self._record_and_script)
        self._server = TestServer(app)
        await self._server.start_server()
        return self

    async def stop(self) -> None:
        if self._server is not None:
            await self._server.close()
            self._server = None

    async def __aenter__(self) -> "MockXeroServer":
        return await self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    @web.middleware
    async def _record_and_script(self, request: web.Request, handler):
        body = None
        if request.can_read_body:
            body = await request.json()
        self.requests.append((request.method, request.path, dict(request.query), body))
        self.headers.append(request.headers.copy())
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)

        queued = self._scripted.get((request.method, request.path))
        if queued:
            status, payload, headers = queued.pop(0)
            text = payload if isinstance(payload, str) else json.dumps(payload)
            return web.Response(status=status, text=text, headers=headers, content_type="application/json")
        return await handler(request)

    async def _list_bank_transactions(self, request: web.Request) -> web.Response:
        ids = request.query.get("IDs")
        if ids:
            wanted = ids.split(",")
            found = [self.transactions[i] for i in wanted if i in self.transactions]
            return web.json_response({"BankTransactions": found})

        unreconciled = [t for t in self.transactions.values() if not t["IsReconciled"]]
        page = int(request.query.get("page", "1"))
        start = (page - 1) * self.page_size
        return web.json_response({"BankTransactions": unreconciled[start:start + self.page_size]})

    async def _update_bank_transaction(self, request: web.Request) -> web.Response:
        txn_id = request.match_info["txn_id"]
        if txn_id in self.response_overrides:
            return web.json_response(self.response_overrides[txn_id])
        txn = self.transactions.get(txn_id)
        if txn is None:
            return web.json_response({"Message": "Not found"}, status=404)
        update = (await request.json())["BankTransactions"][0]
        txn["IsReconciled"] = update["IsReconciled"]
        txn["LineItems"] = update["LineItems"]
        return web.json_response({"BankTransactions": [txn]})

    async def _list_accounts(self, request: web.Request) -> web.Response:
        return web.json_response({"Accounts": self.accounts})

    async def _list_invoices(self, request: web.Request) -> web.Response:
        wanted = request.query.get("IDs", "").split(",")
        return web.json_response({"Invoices": [self.invoices[i] for i in wanted if i in self.invoices]})

    async def _create_payments(self, request: web.Request) -> web.Response:
        created = []
        for payment in (await request.json())["Payments"]:
            record = dict(payment, PaymentID=new_id())
            self.payments.append(record)
            created.append({"PaymentID": record["PaymentID"], "Amount": payment["Amount"]})
        return web.json_response({"Payments": created})


@contextmanager
def serve_in_thread(server: MockXeroServer):
    """Run the fake server on its own loop so blocking callers can reach it."""
    loop = asyncio.new_event_loop()
    thread = threading.Thread(target=loop.run_forever, daemon=True)
    thread.start()
    asyncio.run_coroutine_threadsafe(server.start(), loop).result(10)
    try:
        yield server
    finally:
        asyncio.run_coroutine_threadsafe(server.stop(), loop).result(10)
        loop.call_soon_threadsafe(loop.stop)
        thread.join(5)
        loop.close()


class RecordingSleep:
    """Stand-in for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def provider():
    return StaticAccessProvider(TEST_TOKEN, TEST_TENANT)


@pytest.fixture
def work_dir(tmp_path):
    return tmp_path
