"""
Xero API client tests

Covers request headers, retry/backoff behavior, error classification and the
typed connector operations, against an in-process fake server.
"""

import socket
from decimal import Decimal

import pytest

from conftest import TEST_TENANT, TEST_TOKEN, MockXeroServer, RecordingSleep, make_transaction, new_id
from connectors.xero.xero_client import (
    RetryConfig,
    RetryInfo,
    XeroApiClient,
    XeroApiConfig,
    XeroApiError,
    XeroAuthError,
    XeroConflictError,
    XeroNetworkError,
    XeroNotFoundError,
)
from connectors.xero.xero_connector import XeroConnector, chunked
from connectors.xero.xero_models import LineItem
from core.errors import ExitSignal, IntegrityError, exit_signal_for
from core.observability.events import RecordingEmitter


def api_config(server: MockXeroServer, retries: int = 2, timeout: float = 5.0) -> XeroApiConfig:
    return XeroApiConfig(
        base_url=server.base_url,
        timeout_seconds=timeout,
        retry_config=RetryConfig(max_retries=retries, base_delay=0.5),
    )


class TestRetryConfig:
    """Backoff computation."""

    def test_linear_backoff(self):
        config = RetryConfig(base_delay=1.0)
        assert config.get_delay(1) == 1.0
        assert config.get_delay(2) == 2.0

    def test_retry_after_wins(self):
        assert RetryConfig(base_delay=1.0).get_delay(1, "7") == 7.0

    def test_invalid_or_zero_retry_after_falls_back(self):
        config = RetryConfig(base_delay=1.0)
        assert config.get_delay(2, "soon") == 2.0
        assert config.get_delay(2, "0") == 2.0


class TestRequests:
    """Headers and decoding."""

    @pytest.mark.asyncio
    async def test_sends_auth_and_tenant_headers(self, provider):
        async with MockXeroServer() as xero:
            async with XeroApiClient(provider, api_config(xero)) as client:
                data = await client.get("/Accounts")

        assert [a["Code"] for a in data["Accounts"]] == ["400", "404", "999"]
        headers = xero.headers[0]
        assert headers["Authorization"] == f"Bearer {TEST_TOKEN}"
        assert headers["Xero-tenant-id"] == TEST_TENANT
        assert headers["Accept"] == "application/json"

    @pytest.mark.asyncio
    async def test_empty_body_returns_empty_dict(self, provider):
        async with MockXeroServer() as xero:
            xero.script("GET", "/Accounts", 200, "")
            async with XeroApiClient(provider, api_config(xero)) as client:
                assert await client.get("/Accounts") == {}

    @pytest.mark.asyncio
    async def test_malformed_json_is_api_error(self, provider):
        async with MockXeroServer() as xero:
            xero.script("GET", "/Accounts", 200, "{not json")
            async with XeroApiClient(provider, api_config(xero)) as client:
                with pytest.raises(XeroApiError):
                    await client.get("/Accounts")

    @pytest.mark.asyncio
    async def test_decimal_body_is_serialized(self, provider):
        async with MockXeroServer() as xero:
            async with XeroApiClient(provider, api_config(xero)) as client:
                await client.put("/Payments", {"Payments": [{"Amount": Decimal("12.50")}]})
        assert xero.payments[0]["Amount"] == 12.5

    @pytest.mark.asyncio
    async def test_request_without_connect_fails(self, provider):
        client = XeroApiClient(provider)
        with pytest.raises(XeroApiError):
            await client.get("/Accounts")


class TestRetries:
    """Retryable outcomes and backoff callbacks."""

    @pytest.mark.asyncio
    async def test_server_error_then_success(self, provider):
        sleep = RecordingSleep()
        retries = []
        async with MockXeroServer() as xero:
            xero.script("GET", "/Accounts", 500, "boom")
            async with XeroApiClient(provider, api_config(xero), on_retry=retries.append, sleep=sleep) as client:
                data = await client.get("/Accounts")

        assert "Accounts" in data
        assert len(xero.requests) == 2
        assert sleep.delays == [0.5]
        assert retries == [RetryInfo(reason="server-error", backoff_ms=500, status=500)]

    @pytest.mark.asyncio
    async def test_rate_limit_uses_retry_after(self, provider):
        sleep = RecordingSleep()
        retries = []
        emitter = RecordingEmitter()
        async with MockXeroServer() as xero:
            xero.script("GET", "/Accounts", 429, "slow down", headers={"Retry-After": "3"})
            async with XeroApiClient(
                provider, api_config(xero), on_retry=retries.append, emitter=emitter, sleep=sleep
            ) as client:
                await client.get("/Accounts")

        assert sleep.delays == [3.0]
        assert retries[0].reason == "rate-limit"
        assert retries[0].backoff_ms == 3000
        assert retries[0].status == 429
        assert "xero-fetch-retry" in emitter.names()
        assert emitter.names()[-1] == "xero-fetch-completed"

    @pytest.mark.asyncio
    async def test_retries_exhausted_raises_classified_error(self, provider):
        sleep = RecordingSleep()
        async with MockXeroServer() as xero:
            for _ in range(3):
                xero.script("GET", "/Accounts", 503, "unavailable")
            async with XeroApiClient(provider, api_config(xero, retries=2), sleep=sleep) as client:
                with pytest.raises(XeroApiError) as exc_info:
                    await client.get("/Accounts")

        assert exc_info.value.code == "E_SERVER_ERROR"
        assert exc_info.value.status_code == 503
        assert "unavailable" in exc_info.value.message
        assert len(xero.requests) == 3
        assert sleep.delays == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_rate_limit_exhausted(self, provider):
        async with MockXeroServer() as xero:
            xero.script("GET", "/Accounts", 429, "")
            async with XeroApiClient(provider, api_config(xero, retries=0), sleep=RecordingSleep()) as client:
                with pytest.raises(XeroApiError) as exc_info:
                    await client.get("/Accounts")
        assert exc_info.value.code == "E_RATE_LIMITED"

    @pytest.mark.asyncio
    async def test_timeout_retried_then_network_error(self, provider):
        sleep = RecordingSleep()
        retries = []
        async with MockXeroServer() as xero:
            xero.delay_seconds = 0.5
            async with XeroApiClient(
                provider, api_config(xero, retries=1, timeout=0.1), on_retry=retries.append, sleep=sleep
            ) as client:
                with pytest.raises(XeroNetworkError) as exc_info:
                    await client.get("/Accounts")

        assert exc_info.value.message == "Request timed out"
        assert exc_info.value.code == "E_NETWORK"
        assert [r.reason for r in retries] == ["timeout"]

    @pytest.mark.asyncio
    async def test_connection_error_not_retried(self, provider):
        sock = socket.socket()
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
        sock.close()

        retries = []
        config = XeroApiConfig(base_url=f"http://127.0.0.1:{port}")
        async with XeroApiClient(provider, config, on_retry=retries.append, sleep=RecordingSleep()) as client:
            with pytest.raises(XeroNetworkError):
                await client.get("/Accounts")
        assert retries == []


class TestClassification:
    """Non-retryable status codes."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 403])
    async def test_auth_failure(self, provider, status):
        async with MockXeroServer() as xero:
            xero.script("GET", "/Accounts", status, "denied")
            async with XeroApiClient(provider, api_config(xero), sleep=RecordingSleep()) as client:
                with pytest.raises(XeroAuthError) as exc_info:
                    await client.get("/Accounts")
        assert len(xero.requests) == 1
        assert exc_info.value.code == "E_UNAUTHORIZED"
        assert exit_signal_for(exc_info.value) == ExitSignal.UNAUTHORIZED

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [409, 412])
    async def test_conflict(self, provider, status):
        async with MockXeroServer() as xero:
            xero.script("GET", "/Accounts", status, "stale")
            async with XeroApiClient(provider, api_config(xero)) as client:
                with pytest.raises(XeroConflictError) as exc_info:
                    await client.get("/Accounts")
        assert exc_info.value.code == "E_CONFLICT"
        assert exit_signal_for(exc_info.value) == ExitSignal.CONFLICT

    @pytest.mark.asyncio
    async def test_not_found_is_not_retried(self, provider):
        emitter = RecordingEmitter()
        async with MockXeroServer() as xero:
            xero.script("GET", "/Accounts", 404, "missing")
            async with XeroApiClient(provider, api_config(xero), emitter=emitter) as client:
                with pytest.raises(XeroNotFoundError) as exc_info:
                    await client.get("/Accounts")
        assert len(xero.requests) == 1
        assert exc_info.value.code == "E_NOT_FOUND"
        assert emitter.names() == ["xero-fetch-started", "xero-fetch-error"]

    @pytest.mark.asyncio
    async def test_other_client_error(self, provider):
        async with MockXeroServer() as xero:
            xero.script("GET", "/Accounts", 400, "bad request")
            async with XeroApiClient(provider, api_config(xero)) as client:
                with pytest.raises(XeroApiError) as exc_info:
                    await client.get("/Accounts")
        assert exc_info.value.code == "E_API_ERROR"
        assert exc_info.value.status_code == 400


class TestConnector:
    """Typed endpoint operations."""

    def test_chunked(self):
        assert chunked(["a", "b", "c"], 2) == [["a", "b"], ["c"]]
        assert chunked([], 2) == []

    @pytest.mark.asyncio
    async def test_fetch_unreconciled_pages_until_short_page(self, provider):
        async with MockXeroServer(page_size=2) as xero:
            for _ in range(5):
                xero.add_transaction(make_transaction())
            xero.add_transaction(make_transaction(reconciled=True))
            async with XeroApiClient(provider, api_config(xero)) as client:
                txns = await XeroConnector(client, page_size=2).fetch_unreconciled()

        assert len(txns) == 5
        pages = [r[2]["page"] for r in xero.requests]
        assert pages == ["1", "2", "3"]
        assert xero.requests[0][2]["where"] == "IsReconciled==false"

    @pytest.mark.asyncio
    async def test_active_account_codes(self, provider):
        async with MockXeroServer() as xero:
            async with XeroApiClient(provider, api_config(xero)) as client:
                codes = await XeroConnector(client).list_active_account_codes()
        assert codes == frozenset({"400", "404"})

    @pytest.mark.asyncio
    async def test_update_bank_transaction_body(self, provider):
        async with MockXeroServer() as xero:
            txn_id = xero.add_transaction(make_transaction(total=50))
            async with XeroApiClient(provider, api_config(xero)) as client:
                await XeroConnector(client).update_bank_transaction(
                    txn_id, [LineItem(account_code="400", line_amount=Decimal("50"))]
                )

        method, path, _, body = xero.mutations()[0]
        assert (method, path) == ("POST", f"/BankTransactions/{txn_id}")
        assert body == {
            "BankTransactions": [
                {
                    "BankTransactionID": txn_id,
                    "IsReconciled": True,
                    "LineItems": [{"AccountCode": "400", "LineAmount": 50.0}],
                }
            ]
        }

    @pytest.mark.asyncio
    async def test_invalid_payload_is_integrity_error(self, provider):
        async with MockXeroServer() as xero:
            xero.script("GET", "/Invoices", 200, {"Invoices": [{"Status": "AUTHORISED"}]})
            async with XeroApiClient(provider, api_config(xero)) as client:
                with pytest.raises(IntegrityError):
                    await XeroConnector(client).get_invoices([new_id()])

    @pytest.mark.asyncio
    async def test_empty_id_lookup_makes_no_request(self, provider):
        async with MockXeroServer() as xero:
            async with XeroApiClient(provider, api_config(xero)) as client:
                assert await XeroConnector(client).get_bank_transactions([]) == []
        assert xero.requests == []
