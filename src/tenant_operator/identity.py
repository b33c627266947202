"""Client for the external identity service that holds tenant records.

Protocol:
    GET    /api/tenants        -> 200 {"status": "success", "tenants": ["id", ...]}
    POST   /api/tenants        -> 201, body {"tenantId": id, "adminUserId": "system"}
    DELETE /api/tenants/{id}   -> 200

Membership is never cached; every sync re-queries the service.
"""

import asyncio
import json
import logging
from typing import Any, List, Optional
from urllib.parse import quote

import aiohttp

from . import constants as C
from .errors import IdentityServiceError

logger = logging.getLogger(__name__)


class IdentityServiceClient:
    """Async HTTP client sharing one ``aiohttp.ClientSession`` per process."""

    def __init__(
        self,
        base_url: str = C.IDENTITY_SERVICE_URL,
        timeout: float = C.IDENTITY_SERVICE_TIMEOUT,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def _request(self, method: str, path: str, expected: int, **kwargs: Any) -> str:
        url = f"{self.base_url}{path}"
        try:
            async with self.session.request(method, url, timeout=self.timeout, **kwargs) as response:
                body = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise IdentityServiceError(f"{method} {url} failed: {e!r}") from e
        if response.status != expected:
            raise IdentityServiceError(
                f"{method} {url} returned {response.status}",
                status=response.status,
                body=body,
            )
        return body

    async def list_tenants(self) -> List[str]:
        body = await self._request("GET", "/api/tenants", 200)
        try:
            data = json.loads(body)
        except ValueError:
            raise IdentityServiceError("Malformed tenant list from identity service", status=200, body=body) from None
        if not isinstance(data, dict) or data.get("status") != "success":
            raise IdentityServiceError("Malformed tenant list from identity service", status=200, body=str(data))
        tenants = data.get("tenants") or []
        if not isinstance(tenants, list):
            raise IdentityServiceError("Malformed tenant list from identity service", status=200, body=str(data))
        return [str(tenant) for tenant in tenants]

    async def tenant_exists(self, tenant_id: str) -> bool:
        return tenant_id in await self.list_tenants()

    async def register(self, tenant_id: str) -> None:
        await self._request(
            "POST",
            "/api/tenants",
            201,
            json={"tenantId": tenant_id, "adminUserId": C.IDENTITY_ADMIN_USER},
        )
        logger.info(f"Registered tenant {tenant_id} with identity service")

    async def deregister(self, tenant_id: str) -> None:
        await self._request("DELETE", f"/api/tenants/{quote(tenant_id, safe='')}", 200)
        logger.info(f"Deregistered tenant {tenant_id} from identity service")


async def sync_tenant(client: IdentityServiceClient, tenant_id: str) -> bool:
    """Make sure the identity service knows the tenant.

    Returns True if a record had to be created.
    """
    if await client.tenant_exists(tenant_id):
        return False
    await client.register(tenant_id)
    return True
