"""Xero HTTP Client.

Low-level HTTP client for Xero Accounting API calls.
Handles authentication headers, timeouts, retries with backoff, and error
classification.

Retry policy:
- 429 and 5xx (500/502/503/504) are retried, as are timeouts
- Backoff is the server's Retry-After (seconds) when present, else
  attempt * backoff_base_seconds
- 401/403 fail immediately as XeroAuthError
- 409/412 classify as XeroConflictError ("someone else changed this record")
- Connection-level failures classify as XeroNetworkError and are not retried
"""

import asyncio
import json
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import aiohttp

from connectors.xero.xero_auth import AccessProvider
from core.config import DEFAULT_API_BASE_URL, ReconcileConfig
from core.errors import AuthError, ConflictError, ErrorCategory, ReconcileError
from core.observability.events import EventEmitter, NullEmitter
from core.observability.logging import get_logger

logger = get_logger(__name__)


class XeroApiError(ReconcileError):
    """Base exception for Xero API errors."""
    code = "E_API_ERROR"
    category = ErrorCategory.API

    def __init__(
        self,
        message: str,
        status_code: int = 0,
        response_body: str = "",
        code: Optional[str] = None,
        recoverable: Optional[bool] = None,
    ):
        super().__init__(message, code=code, recoverable=recoverable)
        self.status_code = status_code
        self.response_body = response_body


class XeroAuthError(AuthError):
    """Authentication failed (401/403). The caller should re-authenticate."""

    def __init__(self, message: str, status_code: int = 0, response_body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class XeroConflictError(ConflictError):
    """Optimistic-concurrency rejection (409/412)."""

    def __init__(self, message: str, status_code: int = 0, response_body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class XeroNotFoundError(XeroApiError):
    """Resource not found (404)."""
    code = "E_NOT_FOUND"


class XeroNetworkError(XeroApiError):
    """The API could not be reached (DNS, connection reset, timeout)."""
    code = "E_NETWORK"
    recoverable = True


@dataclass(frozen=True)
class RetryInfo:
    """Payload passed to the on_retry callback before each backoff sleep."""
    reason: str  # "rate-limit" | "server-error" | "timeout"
    backoff_ms: int
    status: Optional[int] = None


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 2
    base_delay: float = 1.0  # seconds
    retry_on_status: Tuple[int, ...] = (429, 500, 502, 503, 504)

    def get_delay(self, attempt: int, retry_after: Optional[str] = None) -> float:
        """Delay before the next attempt (attempt is 1-based).

        A positive Retry-After header (seconds) wins over the linear backoff.
        """
        if retry_after:
            try:
                seconds = float(retry_after)
            except ValueError:
                seconds = 0
            if seconds > 0:
                return seconds
        return self.base_delay * attempt


@dataclass
class XeroApiConfig:
    """Configuration for the Xero API client."""
    base_url: str = DEFAULT_API_BASE_URL
    timeout_seconds: float = 30.0
    retry_config: RetryConfig = field(default_factory=RetryConfig)

    @classmethod
    def from_config(cls, config: ReconcileConfig) -> "XeroApiConfig":
        return cls(
            base_url=config.api_base_url,
            timeout_seconds=config.timeout_seconds,
            retry_config=RetryConfig(
                max_retries=config.retry_limit,
                base_delay=config.backoff_base_seconds,
            ),
        )

    def build_url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _error_message(status: int, body: str) -> str:
    if body:
        return f"Xero API error ({status}): {body}"
    return f"Xero API error ({status})"


class XeroApiClient:
    """HTTP client for the Xero Accounting API.

    Provides:
    - Authenticated API calls (token and tenant resolved per attempt)
    - Timeouts, retries and backoff
    - Classified errors

    Usage:
        async with XeroApiClient(provider, api_config, on_retry=handler) as client:
            data = await client.get("/Accounts")
    """

    def __init__(
        self,
        access_provider: AccessProvider,
        api_config: Optional[XeroApiConfig] = None,
        on_retry: Optional[Callable[[RetryInfo], None]] = None,
        emitter: Optional[EventEmitter] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initialize API client.

        Args:
            access_provider: Supplies the bearer token and tenant id
            api_config: API configuration
            on_retry: Called with RetryInfo before every backoff sleep
            emitter: Best-effort event sink
            sleep: Awaitable used for backoff waits
        """
        self.access_provider = access_provider
        self.api_config = api_config or XeroApiConfig()
        self.on_retry = on_retry
        self.emitter = emitter or NullEmitter()
        self._sleep = sleep
        self._session: Optional[aiohttp.ClientSession] = None

    async def connect(self) -> None:
        """Open the HTTP session."""
        if self._session is None:
            self._session = aiohttp.ClientSession()

    async def disconnect(self) -> None:
        """Close HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "XeroApiClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    async def _get_headers(self) -> Dict[str, str]:
        context = await self.access_provider.get_access_context()
        return {
            "Authorization": context.authorization_header,
            "Xero-tenant-id": context.tenant_id,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _notify_retry(self, info: RetryInfo) -> None:
        if self.on_retry:
            self.on_retry(info)
        payload = {"reason": info.reason, "backoffMs": info.backoff_ms}
        if info.status is not None:
            payload["status"] = info.status
        self.emitter.emit("xero-fetch-retry", payload)

    def _classify(self, status: int, body: str) -> ReconcileError:
        message = _error_message(status, body)
        if status in (401, 403):
            return XeroAuthError(message, status, body)
        if status in (409, 412):
            return XeroConflictError(message, status, body)
        if status == 404:
            return XeroNotFoundError(message, status, body)
        if status == 429:
            return XeroApiError(message, status, body, code="E_RATE_LIMITED", recoverable=True)
        if status >= 500:
            return XeroApiError(message, status, body, code="E_SERVER_ERROR", recoverable=True)
        return XeroApiError(message, status, body)

    def _raise(self, error: ReconcileError) -> None:
        self.emitter.emit("xero-fetch-error", {"message": error.message, "code": error.code})
        raise error

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, str]] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Make an authenticated API request with automatic retries.

        Args:
            method: HTTP method
            path: API path relative to the base URL (e.g. "/BankTransactions")
            params: Query parameters
            data: JSON request body

        Returns:
            Decoded response JSON ({} for empty bodies)

        Raises:
            XeroAuthError: 401/403
            XeroConflictError: 409/412
            XeroNotFoundError: 404
            XeroNetworkError: Unreachable, or timed out after all retries
            XeroApiError: Other API errors, or retries exhausted
        """
        if self._session is None:
            raise XeroApiError("Not connected. Call connect() first.")

        url = self.api_config.build_url(path)
        retry_config = self.api_config.retry_config
        body = json.dumps(data, default=_json_default) if data is not None else None
        timeout = aiohttp.ClientTimeout(total=self.api_config.timeout_seconds)
        attempt = 0

        while True:
            attempt += 1
            headers = await self._get_headers()
            logger.debug(f"Request {method} {url}", extra_fields={"attempt": attempt})
            self.emitter.emit("xero-fetch-started", {"method": method, "url": url})

            try:
                async with self._session.request(
                    method,
                    url,
                    headers=headers,
                    params=params,
                    data=body,
                    timeout=timeout,
                ) as response:
                    response_text = await response.text()

                    if response.status < 400:
                        self.emitter.emit(
                            "xero-fetch-completed",
                            {"method": method, "url": url, "status": response.status},
                        )
                        if response.status == 204 or not response_text.strip():
                            return {}
                        try:
                            return json.loads(response_text)
                        except json.JSONDecodeError:
                            self._raise(XeroApiError(
                                f"Invalid JSON in response from {path}",
                                response.status,
                                response_text,
                            ))

                    if response.status in retry_config.retry_on_status and attempt <= retry_config.max_retries:
                        delay = retry_config.get_delay(attempt, response.headers.get("Retry-After"))
                        reason = "rate-limit" if response.status == 429 else "server-error"
                        if response.status == 429:
                            logger.warning(f"Rate limited, retrying in {delay:.1f}s")
                        else:
                            logger.info(
                                f"Request failed with {response.status}, retrying in {delay:.1f}s "
                                f"(attempt {attempt}/{retry_config.max_retries})"
                            )
                        self._notify_retry(RetryInfo(reason, int(delay * 1000), response.status))
                        await self._sleep(delay)
                        continue

                    self._raise(self._classify(response.status, response_text))

            except asyncio.TimeoutError:
                if attempt <= retry_config.max_retries:
                    delay = retry_config.get_delay(attempt)
                    logger.info(f"Request timed out, retrying in {delay:.1f}s")
                    self._notify_retry(RetryInfo("timeout", int(delay * 1000)))
                    await self._sleep(delay)
                    continue
                self._raise(XeroNetworkError("Request timed out"))

            except aiohttp.ClientError as e:
                logger.debug(f"Network error on {method} {url}: {type(e).__name__}: {e}")
                self._raise(XeroNetworkError(f"Network error: {type(e).__name__}"))

    async def get(self, path: str, params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return await self.request("POST", path, data=data)

    async def put(self, path: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return await self.request("PUT", path, data=data)
