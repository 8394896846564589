"""Xero Accounting API integration.

- xero_client: authenticated HTTP with retries and error classification
- xero_models: pydantic records for the endpoints used
- xero_connector: typed endpoint operations
- xero_auth: access token and tenant providers
"""

from connectors.xero.xero_auth import (
    AccessContext,
    AccessProvider,
    EnvAccessProvider,
    StaticAccessProvider,
    TenantConfig,
    load_tenant_config,
)
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

__all__ = [
    # Auth
    "AccessContext",
    "AccessProvider",
    "EnvAccessProvider",
    "StaticAccessProvider",
    "TenantConfig",
    "load_tenant_config",
    # Client
    "RetryConfig",
    "RetryInfo",
    "XeroApiClient",
    "XeroApiConfig",
    "XeroApiError",
    "XeroAuthError",
    "XeroConflictError",
    "XeroNetworkError",
    "XeroNotFoundError",
    # Connector
    "XeroConnector",
    "chunked",
]
