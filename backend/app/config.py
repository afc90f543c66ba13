from __future__ import annotations

import os
from functools import lru_cache
import logging

from pydantic import BaseModel


DEFAULT_XERO_SCOPES = (
    "openid profile email accounting.transactions accounting.settings "
    "accounting.contacts offline_access"
)


class XeroSettings(BaseModel):
    client_id: str | None = None
    client_secret: str | None = None
    redirect_uri: str = "http://localhost:8000/callback"
    scopes: str = DEFAULT_XERO_SCOPES
    identity_base: str = "https://identity.xero.com"
    login_base: str = "https://login.xero.com"
    api_base: str = "https://api.xero.com"
    verify_signatures: bool = False
    timeout_seconds: float = 10.0

    @property
    def authorize_url(self) -> str:
        return f"{self.login_base}/identity/connect/authorize"

    @property
    def token_url(self) -> str:
        return f"{self.identity_base}/connect/token"

    @property
    def revocation_url(self) -> str:
        return f"{self.identity_base}/connect/revocation"

    @property
    def jwks_url(self) -> str:
        return f"{self.identity_base}/.well-known/openid-configuration/jwks"

    @property
    def issuer(self) -> str:
        return self.identity_base

    @property
    def connections_url(self) -> str:
        return f"{self.api_base}/connections"

    @property
    def accounting_base(self) -> str:
        return f"{self.api_base}/api.xro/2.0"


class SessionSettings(BaseModel):
    backend: str = "memory"  # "memory" or "redis"
    redis_url: str | None = None
    ttl_seconds: int = 60 * 60 * 24
    cookie_name: str = "xero_session"
    cookie_secure: bool = False
    # Lifetime of the local sign-in established after a successful callback.
    sign_in_hours: int = 1


class FlowSettings(BaseModel):
    sign_out_on_full_disconnect: bool = True
    # "always" removes the local account on every disconnect, "full" only when
    # the last tenant has been disconnected.
    delete_account_on_disconnect: str = "always"


class AppSettings(BaseModel):
    xero: XeroSettings = XeroSettings()
    session: SessionSettings = SessionSettings()
    flow: FlowSettings = FlowSettings()
    landing_url: str = "/"
    dashboard_url: str = "/dashboard"

    @classmethod
    def from_env(cls) -> "AppSettings":
        """Load settings from environment variables with safe defaults."""
        xero = XeroSettings(
            client_id=os.getenv("XERO_CLIENT_ID"),
            client_secret=os.getenv("XERO_CLIENT_SECRET"),
            redirect_uri=os.getenv(
                "XERO_REDIRECT_URI", "http://localhost:8000/callback"
            ),
            scopes=os.getenv("XERO_SCOPES", DEFAULT_XERO_SCOPES),
            identity_base=os.getenv("XERO_IDENTITY_BASE", "https://identity.xero.com"),
            login_base=os.getenv("XERO_LOGIN_BASE", "https://login.xero.com"),
            api_base=os.getenv("XERO_API_BASE", "https://api.xero.com"),
            verify_signatures=os.getenv("XERO_VERIFY_SIGNATURES", "false").lower()
            == "true",
            timeout_seconds=float(os.getenv("XERO_TIMEOUT_SECONDS") or "10"),
        )
        session = SessionSettings(
            backend=os.getenv("SESSION_STORE_BACKEND", "memory"),
            redis_url=os.getenv("REDIS_URL"),
            ttl_seconds=int(os.getenv("SESSION_TTL_SECONDS", str(60 * 60 * 24))),
            cookie_name=os.getenv("SESSION_COOKIE_NAME", "xero_session"),
            cookie_secure=os.getenv("SESSION_COOKIE_SECURE", "false").lower()
            == "true",
            sign_in_hours=int(os.getenv("SESSION_SIGN_IN_HOURS", "1")),
        )
        flow = FlowSettings(
            sign_out_on_full_disconnect=os.getenv(
                "SIGN_OUT_ON_FULL_DISCONNECT", "true"
            ).lower()
            != "false",
            delete_account_on_disconnect=os.getenv(
                "DELETE_ACCOUNT_ON_DISCONNECT", "always"
            ).lower(),
        )
        return cls(
            xero=xero,
            session=session,
            flow=flow,
            landing_url=os.getenv("LANDING_URL", "/"),
            dashboard_url=os.getenv("DASHBOARD_URL", "/dashboard"),
        )

    def validate_combinations(self) -> None:
        """Warn when settings are incomplete to avoid surprises at login time."""
        logger = logging.getLogger(__name__)
        warnings: list[str] = []

        if not self.xero.client_id:
            warnings.append("XERO_CLIENT_ID is not set; login will fail.")
        if self.xero.client_id and not self.xero.client_secret:
            warnings.append(
                "XERO_CLIENT_SECRET is missing while XERO_CLIENT_ID is set."
            )
        if "offline_access" not in self.xero.scopes.split():
            warnings.append(
                "XERO_SCOPES lacks offline_access; tokens cannot be refreshed."
            )
        if self.session.backend == "redis" and not self.session.redis_url:
            warnings.append("REDIS_URL is required when SESSION_STORE_BACKEND=redis.")
        if self.flow.delete_account_on_disconnect not in {"always", "full"}:
            warnings.append(
                "DELETE_ACCOUNT_ON_DISCONNECT must be 'always' or 'full'; using 'always'."
            )
            self.flow.delete_account_on_disconnect = "always"
        if warnings:
            for msg in warnings:
                logger.warning("configuration_warning", extra={"detail": msg})


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    """Return application settings loaded from the environment.

    The result is cached for the lifetime of the process so configuration
    is stable and we avoid repeatedly parsing environment variables.
    """
    settings = AppSettings.from_env()
    settings.validate_combinations()
    return settings
