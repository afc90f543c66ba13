from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, Dict, Protocol
import json
import logging

import redis

from ..config import get_settings
from ..models import FlowState, LocalUserRecord, TokenBundle


logger = logging.getLogger(__name__)


@dataclass
class SessionRecord:
    session_id: str
    oauth_state: str | None = None
    token: TokenBundle | None = None
    tenant_id: str | None = None
    user: Dict[str, Any] | None = None
    flow_state: FlowState = FlowState.ANONYMOUS
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class TokenStore(Protocol):
    """Backend interface for per-session OAuth state.

    Implementations may be in-memory or Redis-backed.
    """

    def load(self, session_id: str) -> SessionRecord: ...

    def save(self, record: SessionRecord) -> None: ...

    def delete(self, session_id: str) -> None: ...


class InMemoryTokenStore:
    """Process-local store keyed by session id."""

    def __init__(self) -> None:
        self._records: Dict[str, SessionRecord] = {}

    def load(self, session_id: str) -> SessionRecord:
        record = self._records.get(session_id)
        if record is None:
            return SessionRecord(session_id=session_id)
        return record

    def save(self, record: SessionRecord) -> None:
        record.updated_at = datetime.now(UTC)
        self._records[record.session_id] = record

    def delete(self, session_id: str) -> None:
        self._records.pop(session_id, None)


class RedisTokenStore:
    """Store backed by Redis.

    Opt-in via SESSION_STORE_BACKEND=redis or REDIS_URL. Records are JSON
    documents that expire after the configured session TTL.
    """

    def __init__(
        self,
        client: Any,
        key_prefix: str = "xero_session",
        ttl_seconds: int = 60 * 60 * 24,
    ) -> None:
        self._client = client
        self._key_prefix = key_prefix
        self._ttl_seconds = ttl_seconds

    def _key(self, session_id: str) -> str:
        return f"{self._key_prefix}:{session_id}"

    def load(self, session_id: str) -> SessionRecord:
        raw = self._client.get(self._key(session_id))
        if not raw:
            return SessionRecord(session_id=session_id)
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning(
                "redis_token_store_corrupt_record", extra={"session_id": session_id}
            )
            return SessionRecord(session_id=session_id)
        token_data = data.get("token")
        return SessionRecord(
            session_id=session_id,
            oauth_state=data.get("oauth_state"),
            token=TokenBundle.from_dict(token_data) if token_data else None,
            tenant_id=data.get("tenant_id"),
            user=data.get("user"),
            flow_state=FlowState(data.get("flow_state") or FlowState.ANONYMOUS.value),
        )

    def save(self, record: SessionRecord) -> None:
        record.updated_at = datetime.now(UTC)
        payload = {
            "oauth_state": record.oauth_state,
            "token": record.token.to_dict() if record.token else None,
            "tenant_id": record.tenant_id,
            "user": record.user,
            "flow_state": record.flow_state.value,
            "updated_at": record.updated_at.isoformat(),
        }
        self._client.setex(
            self._key(record.session_id), self._ttl_seconds, json.dumps(payload)
        )

    def delete(self, session_id: str) -> None:
        self._client.delete(self._key(session_id))


class SessionContext:
    """Session-scoped view over a TokenStore.

    One context is built per request for the caller's session id; every read
    and write goes through it so no token state is shared across sessions.
    """

    def __init__(self, store: TokenStore, session_id: str) -> None:
        self._store = store
        self.session_id = session_id

    def _load(self) -> SessionRecord:
        return self._store.load(self.session_id)

    def _save(self, record: SessionRecord) -> None:
        self._store.save(record)

    # Anti-forgery state
    def store_state(self, value: str) -> None:
        record = self._load()
        record.oauth_state = value
        self._save(record)

    def get_current_state(self) -> str | None:
        return self._load().oauth_state

    def consume_state(self) -> str | None:
        """Return the stored state and clear it so it cannot be replayed."""
        record = self._load()
        value = record.oauth_state
        if value is not None:
            record.oauth_state = None
            self._save(record)
        return value

    # Token bundle
    def store_token(self, bundle: TokenBundle) -> None:
        record = self._load()
        record.token = bundle
        self._save(record)

    def get_stored_token(self) -> TokenBundle | None:
        return self._load().token

    def destroy_token(self) -> None:
        record = self._load()
        record.token = None
        record.tenant_id = None
        self._save(record)

    # Current tenant
    def store_tenant_id(self, tenant_id: str) -> None:
        record = self._load()
        record.tenant_id = tenant_id
        self._save(record)

    def get_current_tenant_id(self) -> str | None:
        return self._load().tenant_id

    # Flow state
    @property
    def flow_state(self) -> FlowState:
        return self._load().flow_state

    def transition(self, state: FlowState) -> None:
        record = self._load()
        if record.flow_state != state:
            logger.debug(
                "session_flow_transition",
                extra={
                    "session_id": self.session_id,
                    "from": record.flow_state.value,
                    "to": state.value,
                },
            )
        record.flow_state = state
        self._save(record)

    # Local sign-in
    def sign_in(self, user: LocalUserRecord, hours: int = 1) -> None:
        record = self._load()
        record.user = {
            "xero_user_id": user.xero_user_id,
            "email": user.email,
            "name": user.name,
            "expires_at": (datetime.now(UTC) + timedelta(hours=hours)).isoformat(),
        }
        self._save(record)

    def sign_out(self) -> None:
        record = self._load()
        record.user = None
        self._save(record)

    @property
    def current_user(self) -> Dict[str, Any] | None:
        user = self._load().user
        if not user:
            return None
        expires_raw = user.get("expires_at")
        if expires_raw and datetime.fromisoformat(expires_raw) <= datetime.now(UTC):
            return None
        return user

    @property
    def is_authenticated(self) -> bool:
        return self.current_user is not None


def _create_token_store() -> TokenStore:
    """Factory for the process-wide token store backend.

    A REDIS_URL selects Redis even when the backend is left at the default so
    multiple replicas can share sessions; failures fall back to memory.
    """
    settings = get_settings().session
    backend = (settings.backend or "memory").lower()
    if backend == "memory" and settings.redis_url:
        backend = "redis"
    if backend == "redis":
        try:
            client = redis.from_url(settings.redis_url or "redis://localhost:6379/0")
            return RedisTokenStore(client, ttl_seconds=settings.ttl_seconds)
        except Exception:
            logger.warning(
                "token_store_backend_redis_init_failed_falling_back", exc_info=True
            )
    return InMemoryTokenStore()


token_store: TokenStore = _create_token_store()
