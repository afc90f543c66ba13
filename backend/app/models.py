from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, List, Optional


def _utcnow() -> datetime:
    return datetime.now(UTC)


class FlowState(str, Enum):
    ANONYMOUS = "ANONYMOUS"
    LOGIN_INITIATED = "LOGIN_INITIATED"
    AUTHENTICATED = "AUTHENTICATED"
    REFRESHING = "REFRESHING"
    DISCONNECTED = "DISCONNECTED"
    REVOKED = "REVOKED"


@dataclass
class Tenant:
    tenant_id: str
    tenant_name: Optional[str] = None
    tenant_type: Optional[str] = None
    connection_id: Optional[str] = None

    @classmethod
    def from_connection(cls, payload: dict[str, Any]) -> "Tenant":
        """Build a tenant from one entry of the Xero /connections response."""
        return cls(
            tenant_id=str(payload["tenantId"]),
            tenant_name=payload.get("tenantName"),
            tenant_type=payload.get("tenantType"),
            connection_id=payload.get("id"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "tenant_name": self.tenant_name,
            "tenant_type": self.tenant_type,
            "connection_id": self.connection_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Tenant":
        return cls(
            tenant_id=data["tenant_id"],
            tenant_name=data.get("tenant_name"),
            tenant_type=data.get("tenant_type"),
            connection_id=data.get("connection_id"),
        )


@dataclass
class TokenBundle:
    access_token: str
    refresh_token: str
    expires_at: datetime
    id_token: Optional[str] = None
    tenants: List[Tenant] = field(default_factory=list)
    scope: Optional[str] = None
    token_type: str = "Bearer"

    @classmethod
    def from_token_response(
        cls,
        payload: dict[str, Any],
        tenants: List[Tenant] | None = None,
        now: datetime | None = None,
        default_expires_in: int = 1800,
    ) -> "TokenBundle":
        issued_at = now or _utcnow()
        expires_in = int(payload.get("expires_in") or default_expires_in)
        return cls(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token") or "",
            id_token=payload.get("id_token"),
            expires_at=issued_at + timedelta(seconds=expires_in),
            tenants=list(tenants or []),
            scope=payload.get("scope"),
            token_type=payload.get("token_type") or "Bearer",
        )

    def is_expired(self, now: datetime | None = None) -> bool:
        current = now or _utcnow()
        expires = self.expires_at
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=UTC)
        return expires <= current

    def find_tenant(self, tenant_id: str | None) -> Optional[Tenant]:
        if not tenant_id:
            return None
        for tenant in self.tenants:
            if tenant.tenant_id == tenant_id:
                return tenant
        return None

    def without_tenant(self, tenant_id: str) -> List[Tenant]:
        self.tenants = [t for t in self.tenants if t.tenant_id != tenant_id]
        return self.tenants

    def to_dict(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "id_token": self.id_token,
            "expires_at": self.expires_at.isoformat(),
            "tenants": [t.to_dict() for t in self.tenants],
            "scope": self.scope,
            "token_type": self.token_type,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TokenBundle":
        expires_at = datetime.fromisoformat(data["expires_at"])
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or "",
            id_token=data.get("id_token"),
            expires_at=expires_at,
            tenants=[Tenant.from_dict(t) for t in data.get("tenants") or []],
            scope=data.get("scope"),
            token_type=data.get("token_type") or "Bearer",
        )


@dataclass
class LocalUserRecord:
    xero_user_id: str
    email: str
    session_id: Optional[str] = None
    name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
