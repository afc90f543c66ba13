from __future__ import annotations

import os
import tempfile
import time
from urllib.parse import parse_qs

_TEST_DB_DIR = tempfile.mkdtemp(prefix="xero-signin-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_TEST_DB_DIR}/test.db")
os.environ.setdefault("XERO_CLIENT_ID", "test-client-id")
os.environ.setdefault("XERO_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("XERO_REDIRECT_URI", "http://testserver/callback")
os.environ["SESSION_STORE_BACKEND"] = "memory"
os.environ.pop("REDIS_URL", None)

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from app.config import get_settings
from app.db import SessionLocal, init_db
from app.db_models import UserDB
from app.metrics import metrics
from app.repositories import InMemoryUserRepository
from app.services.auth_flow import AuthorizationFlow, FlowOptions
from app.services.token_store import InMemoryTokenStore, SessionContext, token_store
from app.services.xero_client import XeroOAuthClient


TEST_PRIVATE_KEY = rsa.generate_private_key(public_exponent=65537, key_size=2048)
TEST_PUBLIC_KEY = TEST_PRIVATE_KEY.public_key()
ISSUER = "https://identity.xero.com"


def mint_id_token(**overrides) -> str:
    now = int(time.time())
    claims = {
        "iss": ISSUER,
        "aud": get_settings().xero.client_id,
        "sub": "sub-u1",
        "iat": now,
        "exp": now + 300,
        "email": "u@x.com",
        "xero_userid": "u1",
        "global_session_id": "gs-1",
        "name": "A B",
        "given_name": "A",
        "family_name": "B",
    }
    claims.update(overrides)
    claims = {k: v for k, v in claims.items() if v is not None}
    return jwt.encode(claims, TEST_PRIVATE_KEY, algorithm="RS256")


def mint_access_token(**overrides) -> str:
    now = int(time.time())
    claims = {
        "iss": ISSUER,
        "aud": f"{ISSUER}/resources",
        "sub": "sub-u1",
        "iat": now,
        "exp": now + 1800,
        "xero_userid": "u1",
    }
    claims.update(overrides)
    claims = {k: v for k, v in claims.items() if v is not None}
    return jwt.encode(claims, TEST_PRIVATE_KEY, algorithm="RS256")


def connection(tenant_id: str, name: str) -> dict:
    return {
        "id": f"conn-{tenant_id}",
        "tenantId": tenant_id,
        "tenantName": name,
        "tenantType": "ORGANISATION",
    }


class FakeXeroServer:
    """In-process stand-in for the Xero identity server and APIs."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self.connections = [connection("tenant-a", "Org A"), connection("tenant-b", "Org B")]
        self.valid_codes = {"abc"}
        self.id_token: str | None = mint_id_token()
        self.access_token = mint_access_token()
        self.refresh_counter = 0
        self.refresh_status = 200
        self.revoke_status = 200
        self.revoke_error: str | None = None
        self.revoked_tokens: list[str] = []
        self.api_status = 200
        self.raise_transport_error = False

    def _json(self, status: int, body) -> httpx.Response:
        return httpx.Response(status, json=body)

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append((request.method, path))
        if self.raise_transport_error:
            raise httpx.ConnectError("connection refused", request=request)

        if path == "/connect/token":
            form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
            if form.get("grant_type") == "authorization_code":
                if form.get("code") not in self.valid_codes:
                    return self._json(400, {"error": "invalid_grant"})
                self.valid_codes.discard(form["code"])
                body = {
                    "access_token": self.access_token,
                    "refresh_token": "refresh-1",
                    "expires_in": 1800,
                    "token_type": "Bearer",
                    "scope": "openid profile email offline_access",
                }
                if self.id_token:
                    body["id_token"] = self.id_token
                return self._json(200, body)
            if form.get("grant_type") == "refresh_token":
                if self.refresh_status != 200:
                    return self._json(self.refresh_status, {"error": "invalid_grant"})
                self.refresh_counter += 1
                return self._json(
                    200,
                    {
                        "access_token": mint_access_token(jti=f"r{self.refresh_counter}"),
                        "refresh_token": f"refresh-{self.refresh_counter + 1}",
                        "expires_in": 1800,
                        "token_type": "Bearer",
                    },
                )
            return self._json(400, {"error": "unsupported_grant_type"})

        if path == "/connect/revocation":
            form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
            self.revoked_tokens.append(form.get("token", ""))
            if self.revoke_status != 200:
                return self._json(self.revoke_status, {"error": self.revoke_error})
            return httpx.Response(200)

        if path == "/connections" and request.method == "GET":
            if self.api_status != 200:
                return self._json(self.api_status, {"Title": "Forbidden"})
            return self._json(200, self.connections)

        if path.startswith("/connections/") and request.method == "DELETE":
            connection_id = path.rsplit("/", 1)[-1]
            self.connections = [c for c in self.connections if c["id"] != connection_id]
            return httpx.Response(204)

        if path.startswith("/api.xro/2.0/"):
            if self.api_status != 200:
                return self._json(self.api_status, {"Title": "Forbidden"})
            resource = path.rsplit("/", 1)[-1]
            tenant_id = request.headers.get("xero-tenant-id")
            if resource == "Organisation":
                return self._json(200, {"Organisations": [{"Name": f"Org for {tenant_id}"}]})
            if resource == "Accounts":
                return self._json(200, {"Accounts": [{"Code": "200", "Name": "Sales"}]})
            if resource == "Contacts":
                return self._json(200, {"Contacts": [{"Name": "Jane Customer"}]})

        return self._json(404, {"error": "not_found"})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture(autouse=True)
def _isolate_global_state():
    init_db()
    token_store._records.clear()  # type: ignore[attr-defined]
    metrics.reset()
    session = SessionLocal()
    try:
        session.query(UserDB).delete()
        session.commit()
    finally:
        session.close()
    yield
    token_store._records.clear()  # type: ignore[attr-defined]


@pytest.fixture
def fake_xero() -> FakeXeroServer:
    return FakeXeroServer()


@pytest.fixture
def xero_client(fake_xero: FakeXeroServer) -> XeroOAuthClient:
    return XeroOAuthClient(get_settings().xero, transport=fake_xero.transport())


@pytest.fixture
def users() -> InMemoryUserRepository:
    return InMemoryUserRepository()


@pytest.fixture
def flow(xero_client: XeroOAuthClient, users: InMemoryUserRepository) -> AuthorizationFlow:
    return AuthorizationFlow(xero_client, users, options=FlowOptions())


@pytest.fixture
def ctx() -> SessionContext:
    return SessionContext(InMemoryTokenStore(), "session-1")
