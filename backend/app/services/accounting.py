from __future__ import annotations

from typing import Any, Optional
import logging

import httpx

from ..config import XeroSettings
from .oauth_errors import RemoteApiError, TransientNetworkError


logger = logging.getLogger(__name__)


class AccountingApi:
    """Minimal client for the Xero Accounting API used by the dashboard."""

    def __init__(
        self,
        settings: XeroSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings
        self._transport = transport

    async def _get(
        self, resource: str, access_token: str, tenant_id: str
    ) -> dict[str, Any]:
        url = f"{self.settings.accounting_base}/{resource}"
        headers = {
            "Authorization": f"Bearer {access_token}",
            "xero-tenant-id": tenant_id,
            "Accept": "application/json",
        }
        try:
            async with httpx.AsyncClient(
                timeout=self.settings.timeout_seconds, transport=self._transport
            ) as client:
                resp = await client.get(url, headers=headers)
        except httpx.TransportError as exc:
            raise TransientNetworkError(f"GET {url} failed: {exc}") from exc
        if resp.status_code != 200:
            logger.warning(
                "xero_accounting_request_failed",
                extra={
                    "resource": resource,
                    "tenant_id": tenant_id,
                    "status": resp.status_code,
                },
            )
            raise RemoteApiError(resp.status_code, resp.text, url=url)
        return resp.json()

    async def get_organisations(
        self, access_token: str, tenant_id: str
    ) -> list[dict[str, Any]]:
        payload = await self._get("Organisation", access_token, tenant_id)
        return list(payload.get("Organisations") or [])

    async def get_accounts(
        self, access_token: str, tenant_id: str
    ) -> list[dict[str, Any]]:
        payload = await self._get("Accounts", access_token, tenant_id)
        return list(payload.get("Accounts") or [])

    async def get_contacts(
        self, access_token: str, tenant_id: str
    ) -> list[dict[str, Any]]:
        payload = await self._get("Contacts", access_token, tenant_id)
        return list(payload.get("Contacts") or [])
