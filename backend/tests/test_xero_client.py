import asyncio
from datetime import UTC, datetime, timedelta
from urllib.parse import parse_qs, urlparse

import pytest

from app.models import Tenant, TokenBundle
from app.services.oauth_errors import (
    ExchangeError,
    RefreshError,
    RemoteApiError,
    TransientNetworkError,
)


def _bundle(**overrides) -> TokenBundle:
    data = {
        "access_token": "access-1",
        "refresh_token": "refresh-1",
        "id_token": "id-1",
        "expires_at": datetime.now(UTC) + timedelta(minutes=30),
        "tenants": [
            Tenant("tenant-a", "Org A", "ORGANISATION", "conn-tenant-a"),
            Tenant("tenant-b", "Org B", "ORGANISATION", "conn-tenant-b"),
        ],
    }
    data.update(overrides)
    return TokenBundle(**data)


def test_login_uri_carries_state_and_client_parameters(xero_client) -> None:
    uri = xero_client.build_login_uri("state-123")
    parsed = urlparse(uri)
    query = {k: v[0] for k, v in parse_qs(parsed.query).items()}

    assert parsed.netloc == "login.xero.com"
    assert parsed.path == "/identity/connect/authorize"
    assert query["state"] == "state-123"
    assert query["response_type"] == "code"
    assert query["client_id"] == "test-client-id"
    assert query["redirect_uri"] == "http://testserver/callback"
    assert "offline_access" in query["scope"]


def test_code_exchange_returns_bundle_with_tenants(xero_client, fake_xero) -> None:
    bundle = asyncio.run(xero_client.request_access_token("abc"))

    assert bundle.access_token == fake_xero.access_token
    assert bundle.refresh_token == "refresh-1"
    assert bundle.id_token == fake_xero.id_token
    assert [t.tenant_id for t in bundle.tenants] == ["tenant-a", "tenant-b"]
    assert bundle.tenants[0].connection_id == "conn-tenant-a"
    assert not bundle.is_expired()
    assert ("GET", "/connections") in fake_xero.calls


def test_reused_code_is_rejected(xero_client) -> None:
    asyncio.run(xero_client.request_access_token("abc"))
    with pytest.raises(ExchangeError) as exc_info:
        asyncio.run(xero_client.request_access_token("abc"))
    assert exc_info.value.status_code == 400
    assert exc_info.value.error_code == "invalid_grant"


def test_refresh_keeps_tenants_and_id_token(xero_client, fake_xero) -> None:
    original = _bundle(expires_at=datetime.now(UTC) - timedelta(minutes=1))
    refreshed = asyncio.run(xero_client.refresh_access_token(original))

    assert refreshed.access_token != original.access_token
    assert refreshed.refresh_token == "refresh-2"
    assert refreshed.id_token == "id-1"
    assert [t.tenant_id for t in refreshed.tenants] == ["tenant-a", "tenant-b"]
    assert not refreshed.is_expired()
    assert fake_xero.refresh_counter == 1


def test_refresh_rejection_raises_refresh_error(xero_client, fake_xero) -> None:
    fake_xero.refresh_status = 400
    with pytest.raises(RefreshError):
        asyncio.run(xero_client.refresh_access_token(_bundle()))


def test_refresh_without_refresh_token_fails_fast(xero_client, fake_xero) -> None:
    with pytest.raises(RefreshError):
        asyncio.run(xero_client.refresh_access_token(_bundle(refresh_token="")))
    assert fake_xero.calls == []


def test_revoke_treats_already_revoked_as_success(xero_client, fake_xero) -> None:
    asyncio.run(xero_client.revoke_access_token(_bundle()))

    fake_xero.revoke_status = 400
    fake_xero.revoke_error = "invalid_grant"
    asyncio.run(xero_client.revoke_access_token(_bundle()))

    assert fake_xero.calls.count(("POST", "/connect/revocation")) == 2


def test_revoke_surfaces_unexpected_failures(xero_client, fake_xero) -> None:
    fake_xero.revoke_status = 500
    with pytest.raises(RemoteApiError) as exc_info:
        asyncio.run(xero_client.revoke_access_token(_bundle()))
    assert exc_info.value.status_code == 500


def test_delete_connection_removes_only_that_tenant(xero_client, fake_xero) -> None:
    bundle = _bundle()
    asyncio.run(xero_client.delete_connection(bundle, bundle.tenants[0]))

    remaining = asyncio.run(xero_client.get_connections(bundle))
    assert [t.tenant_id for t in remaining] == ["tenant-b"]
    assert ("DELETE", "/connections/conn-tenant-a") in fake_xero.calls


def test_delete_connection_looks_up_missing_connection_id(xero_client, fake_xero) -> None:
    bundle = _bundle()
    asyncio.run(xero_client.delete_connection(bundle, Tenant("tenant-b")))
    assert ("DELETE", "/connections/conn-tenant-b") in fake_xero.calls


def test_forbidden_connections_call_is_flagged_as_revoked(xero_client, fake_xero) -> None:
    fake_xero.api_status = 403
    with pytest.raises(RemoteApiError) as exc_info:
        asyncio.run(xero_client.get_connections(_bundle()))
    assert exc_info.value.is_access_revoked


def test_transport_failure_is_transient(xero_client, fake_xero) -> None:
    fake_xero.raise_transport_error = True
    with pytest.raises(TransientNetworkError):
        asyncio.run(xero_client.get_connections(_bundle()))
