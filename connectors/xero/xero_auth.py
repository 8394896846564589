"""Xero access providers.

The reconciler does not run the OAuth flow itself. It asks an AccessProvider
for a bearer token and tenant id before every request, so a provider that
refreshes tokens transparently can be swapped in without touching the client.
"""

import json
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from core.errors import AuthError, UsageError
from core.security.files import assert_secure_file


@dataclass(frozen=True)
class AccessContext:
    """Bearer token plus the tenant the requests are scoped to."""
    token: str
    tenant_id: str

    @property
    def authorization_header(self) -> str:
        return f"Bearer {self.token}"


class TenantConfig(BaseModel):
    """Contents of .xero-config.json."""
    model_config = ConfigDict(populate_by_name=True)

    tenant_id: str = Field(..., alias="tenantId", min_length=1)
    org_name: Optional[str] = Field(None, alias="orgName", min_length=1)


def load_tenant_config(path: Path) -> Optional[TenantConfig]:
    """Load the tenant config file, or None if it does not exist.

    Raises:
        StateFileError: If the file is a symlink or readable by group/other
        UsageError: If the file is not valid JSON or misses tenantId
    """
    if not path.exists():
        return None
    assert_secure_file(path)
    try:
        return TenantConfig.model_validate(json.loads(path.read_text(encoding="utf-8")))
    except (json.JSONDecodeError, ValidationError) as e:
        raise UsageError(f"Invalid config file {path.name}: {e}") from e


class AccessProvider(ABC):
    """Supplies a valid access context on demand."""

    @abstractmethod
    async def get_access_context(self) -> AccessContext:
        """Return a usable token and tenant id.

        Raises:
            AuthError: If no valid credentials are available
        """
        pass


class StaticAccessProvider(AccessProvider):
    """Fixed token and tenant (for testing and scripted use)."""

    def __init__(self, token: str, tenant_id: str):
        self._context = AccessContext(token=token, tenant_id=tenant_id)

    async def get_access_context(self) -> AccessContext:
        return self._context


class EnvAccessProvider(AccessProvider):
    """Token from XERO_ACCESS_TOKEN, tenant from XERO_TENANT_ID or .xero-config.json.

    The environment is read on every call so an external refresher can rotate
    the token between requests.
    """

    def __init__(self, tenant_config_path: Path, environ: Optional[Mapping[str, str]] = None):
        self.tenant_config_path = tenant_config_path
        self._environ = environ

    async def get_access_context(self) -> AccessContext:
        env = os.environ if self._environ is None else self._environ
        token = env.get("XERO_ACCESS_TOKEN")
        if not token:
            raise AuthError("Missing access token. Set XERO_ACCESS_TOKEN or run the auth flow")

        tenant_id = env.get("XERO_TENANT_ID")
        if not tenant_id:
            config = load_tenant_config(self.tenant_config_path)
            if config is None:
                raise AuthError(f"Missing tenant config. Create {self.tenant_config_path.name} or set XERO_TENANT_ID")
            tenant_id = config.tenant_id

        return AccessContext(token=token, tenant_id=tenant_id)
