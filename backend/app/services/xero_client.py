from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, List, Optional
from urllib.parse import urlencode
import logging

import httpx

from ..config import XeroSettings
from ..models import Tenant, TokenBundle
from .oauth_errors import (
    ExchangeError,
    RefreshError,
    RemoteApiError,
    TransientNetworkError,
)


logger = logging.getLogger(__name__)

# Revocation responses that mean the token is already unusable.
_ALREADY_REVOKED_ERRORS = {"invalid_grant", "invalid_token", "unsupported_token_type"}


def _error_code(resp: httpx.Response) -> str | None:
    try:
        payload = resp.json()
    except ValueError:
        return None
    if isinstance(payload, dict):
        return payload.get("error")
    return None


class XeroOAuthClient:
    """Async adapter over the Xero identity server and connections API.

    Every call opens its own httpx.AsyncClient; a transport may be injected
    for tests. Remote failures are reported immediately and never retried.
    """

    def __init__(
        self,
        settings: XeroSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.settings.timeout_seconds, transport=self._transport
        )

    def _basic_auth(self) -> tuple[str, str]:
        return (self.settings.client_id or "", self.settings.client_secret or "")

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            async with self._client() as client:
                return await client.request(method, url, **kwargs)
        except httpx.TransportError as exc:
            logger.warning(
                "xero_transport_error",
                extra={"method": method, "url": url, "error": str(exc)},
            )
            raise TransientNetworkError(f"{method} {url} failed: {exc}") from exc

    def build_login_uri(self, state: str) -> str:
        """Return the authorization URL carrying the anti-forgery state."""
        params = {
            "response_type": "code",
            "client_id": self.settings.client_id or "",
            "redirect_uri": self.settings.redirect_uri,
            "scope": self.settings.scopes,
            "state": state,
        }
        return f"{self.settings.authorize_url}?{urlencode(params)}"

    async def request_access_token(self, code: str) -> TokenBundle:
        """Exchange an authorization code for a token bundle with its tenants."""
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.settings.redirect_uri,
        }
        resp = await self._send(
            "POST", self.settings.token_url, data=data, auth=self._basic_auth()
        )
        if resp.status_code != 200:
            logger.warning(
                "xero_token_exchange_failed",
                extra={"status": resp.status_code, "error": _error_code(resp)},
            )
            raise ExchangeError(
                "Xero token exchange failed",
                status_code=resp.status_code,
                error_code=_error_code(resp),
            )
        payload = resp.json()
        if not payload.get("access_token"):
            raise ExchangeError("Xero token exchange missing access_token")
        bundle = TokenBundle.from_token_response(payload, now=datetime.now(UTC))
        bundle.tenants = await self.get_connections(bundle)
        logger.info(
            "xero_token_exchanged", extra={"tenant_count": len(bundle.tenants)}
        )
        return bundle

    async def refresh_access_token(self, bundle: TokenBundle) -> TokenBundle:
        """Return a new bundle minted from the refresh token."""
        if not bundle.refresh_token:
            raise RefreshError("No refresh token available")
        data = {
            "grant_type": "refresh_token",
            "refresh_token": bundle.refresh_token,
        }
        resp = await self._send(
            "POST", self.settings.token_url, data=data, auth=self._basic_auth()
        )
        if resp.status_code != 200:
            logger.warning(
                "xero_refresh_failed_http",
                extra={"status": resp.status_code, "error": _error_code(resp)},
            )
            raise RefreshError(
                "Xero refresh failed",
                status_code=resp.status_code,
                error_code=_error_code(resp),
            )
        payload = resp.json()
        if not payload.get("access_token"):
            raise RefreshError("Xero refresh response missing access_token")
        refreshed = TokenBundle.from_token_response(
            payload, tenants=bundle.tenants, now=datetime.now(UTC)
        )
        # Xero omits the ID token on refresh; keep the one from sign-in.
        if refreshed.id_token is None:
            refreshed.id_token = bundle.id_token
        if not refreshed.refresh_token:
            refreshed.refresh_token = bundle.refresh_token
        logger.info("xero_token_refreshed")
        return refreshed

    async def revoke_access_token(self, bundle: TokenBundle) -> None:
        """Revoke the grant server-side. Revoking twice is not an error."""
        token = bundle.refresh_token or bundle.access_token
        data = {"token": token}
        resp = await self._send(
            "POST", self.settings.revocation_url, data=data, auth=self._basic_auth()
        )
        if resp.status_code == 200:
            logger.info("xero_token_revoked")
            return
        code = _error_code(resp)
        if resp.status_code == 400 and code in _ALREADY_REVOKED_ERRORS:
            logger.info("xero_token_already_revoked", extra={"error": code})
            return
        raise RemoteApiError(resp.status_code, resp.text, url=self.settings.revocation_url)

    async def get_connections(self, bundle: TokenBundle) -> List[Tenant]:
        resp = await self._send(
            "GET",
            self.settings.connections_url,
            headers=_bearer_headers(bundle.access_token),
        )
        if resp.status_code != 200:
            raise RemoteApiError(
                resp.status_code, resp.text, url=self.settings.connections_url
            )
        return [
            Tenant.from_connection(item)
            for item in resp.json() or []
            if item.get("tenantId")
        ]

    async def delete_connection(self, bundle: TokenBundle, tenant: Tenant) -> None:
        """Disconnect one tenant; the bundle stays valid for the others."""
        connection_id = tenant.connection_id
        if not connection_id:
            # Older bundles may lack the connection id; look it up by tenant.
            current = await self.get_connections(bundle)
            match = next((t for t in current if t.tenant_id == tenant.tenant_id), None)
            if match is None or not match.connection_id:
                logger.info(
                    "xero_connection_already_removed",
                    extra={"tenant_id": tenant.tenant_id},
                )
                return
            connection_id = match.connection_id
        url = f"{self.settings.connections_url}/{connection_id}"
        resp = await self._send(
            "DELETE", url, headers=_bearer_headers(bundle.access_token)
        )
        if resp.status_code not in {200, 204}:
            raise RemoteApiError(resp.status_code, resp.text, url=url)
        logger.info("xero_connection_deleted", extra={"tenant_id": tenant.tenant_id})


def _bearer_headers(token: str) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {token}",
        "Accept": "application/json",
    }
