"""Canonical Xero sign-in flow: login, callback, refresh, disconnect and revoke.

Every operation works on an explicit SessionContext so nothing here touches
process-wide token state. Routes translate the returned outcomes (or raised
OAuthFlowError subclasses) into HTTP responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from functools import partial
from typing import Optional
import hmac
import logging
import secrets

import anyio

from ..config import AppSettings
from ..metrics import metrics
from ..models import FlowState, LocalUserRecord, Tenant, TokenBundle
from ..repositories import UserRepository
from .oauth_errors import (
    AuthorizationDeniedError,
    ExchangeError,
    ForgeryError,
    RefreshError,
    TokenValidationError,
)
from .token_store import SessionContext
from .token_validation import (
    KeyResolver,
    index_claims,
    user_from_id_token,
    validate_access_token,
    validate_id_token,
)
from .xero_client import XeroOAuthClient


logger = logging.getLogger(__name__)


class FlowOutcome(str, Enum):
    ALREADY_SIGNED_OUT = "already_signed_out"
    TENANT_REMOVED = "tenant_removed"
    DISCONNECTED = "disconnected"
    REVOKED = "revoked"


@dataclass
class FlowOptions:
    sign_out_on_full_disconnect: bool = True
    delete_account_on_disconnect: str = "always"  # "always" or "full"
    sign_in_hours: int = 1
    check_issuer: bool = True

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "FlowOptions":
        return cls(
            sign_out_on_full_disconnect=settings.flow.sign_out_on_full_disconnect,
            delete_account_on_disconnect=settings.flow.delete_account_on_disconnect,
            sign_in_hours=settings.session.sign_in_hours,
        )


def new_state() -> str:
    return secrets.token_urlsafe(32)


class AuthorizationFlow:
    def __init__(
        self,
        client: XeroOAuthClient,
        users: UserRepository,
        options: FlowOptions | None = None,
        key_resolver: Optional[KeyResolver] = None,
    ) -> None:
        self.client = client
        self.users = users
        self.options = options or FlowOptions()
        self.key_resolver = key_resolver

    def start_login(self, ctx: SessionContext) -> str:
        """Issue a fresh anti-forgery state and return the login URI."""
        state = new_state()
        ctx.store_state(state)
        ctx.transition(FlowState.LOGIN_INITIATED)
        metrics.logins_started += 1
        logger.info("xero_login_start", extra={"session_id": ctx.session_id})
        return self.client.build_login_uri(state)

    async def handle_callback(
        self,
        ctx: SessionContext,
        code: str | None,
        state: str | None,
        error: str | None = None,
        error_description: str | None = None,
    ) -> LocalUserRecord:
        """Verify state, exchange the code, validate tokens, then sign in.

        Nothing beyond consuming the stored state is written unless every
        check passes.
        """
        expected = ctx.consume_state()
        if (
            expected is None
            or state is None
            or not hmac.compare_digest(expected.encode(), state.encode())
        ):
            metrics.forgery_rejections += 1
            logger.warning(
                "xero_callback_forgery_detected",
                extra={"session_id": ctx.session_id, "had_state": expected is not None},
            )
            raise ForgeryError("Cross site forgery attack detected!")

        if error:
            metrics.authorization_denied += 1
            logger.warning(
                "xero_callback_authorization_denied",
                extra={"session_id": ctx.session_id, "error": error},
            )
            raise AuthorizationDeniedError(error, error_description)
        if not code:
            raise ExchangeError("No authorization code returned from Xero")

        try:
            bundle = await self.client.request_access_token(code)
        except ExchangeError:
            metrics.token_exchange_failures += 1
            raise

        await self._validate_bundle(bundle)
        user = user_from_id_token(bundle.id_token or "")

        ctx.store_token(bundle)
        stored = self.users.upsert(user)
        ctx.sign_in(stored, hours=self.options.sign_in_hours)
        ctx.transition(FlowState.AUTHENTICATED)
        metrics.logins_completed += 1
        logger.info(
            "xero_callback_signed_in",
            extra={
                "session_id": ctx.session_id,
                "xero_user_id": stored.xero_user_id,
                "tenant_count": len(bundle.tenants),
            },
        )
        return stored

    async def _validate_bundle(self, bundle: TokenBundle) -> None:
        settings = self.client.settings
        if not bundle.id_token:
            metrics.token_validation_failures += 1
            raise TokenValidationError("id", "missing id_token; is the openid scope set?")
        issuer = settings.issuer if self.options.check_issuer else None
        # JWKS lookups are blocking HTTP calls; keep them off the event loop.
        id_ok = await anyio.to_thread.run_sync(
            partial(
                validate_id_token,
                bundle.id_token,
                settings.client_id,
                issuer=issuer,
                key_resolver=self.key_resolver,
            )
        )
        if not id_ok:
            metrics.token_validation_failures += 1
            raise TokenValidationError("id", "ID token is not valid")
        if bundle.access_token:
            access_ok = await anyio.to_thread.run_sync(
                partial(
                    validate_access_token,
                    bundle.access_token,
                    key_resolver=self.key_resolver,
                )
            )
            if not access_ok:
                metrics.token_validation_failures += 1
                raise TokenValidationError("access", "Access token is not valid")

    async def ensure_fresh_token(
        self,
        ctx: SessionContext,
        bundle: TokenBundle,
        now: datetime | None = None,
    ) -> TokenBundle:
        """Refresh an expired bundle and return the one callers must use."""
        if not bundle.is_expired(now):
            return bundle
        ctx.transition(FlowState.REFRESHING)
        try:
            refreshed = await self.client.refresh_access_token(bundle)
        except RefreshError:
            metrics.token_refresh_failures += 1
            logger.warning(
                "xero_refresh_rejected_clearing_session",
                extra={"session_id": ctx.session_id},
            )
            ctx.destroy_token()
            ctx.sign_out()
            ctx.transition(FlowState.ANONYMOUS)
            raise
        except Exception:
            ctx.transition(FlowState.AUTHENTICATED)
            raise
        ctx.store_token(refreshed)
        ctx.transition(FlowState.AUTHENTICATED)
        metrics.token_refreshes += 1
        return refreshed

    def _current_tenant(self, ctx: SessionContext, bundle: TokenBundle) -> Tenant | None:
        current = bundle.find_tenant(ctx.get_current_tenant_id())
        if current is not None:
            return current
        return bundle.tenants[0] if bundle.tenants else None

    def _account_id(self, ctx: SessionContext, bundle: TokenBundle) -> str | None:
        if bundle.id_token:
            try:
                claims = index_claims(bundle.id_token)
            except TokenValidationError:
                claims = {}
            if claims.get("xero_userid"):
                return str(claims["xero_userid"])
        user = ctx.current_user
        return user.get("xero_user_id") if user else None

    async def disconnect(self, ctx: SessionContext) -> FlowOutcome:
        """Disconnect the current tenant, ending the session when none remain."""
        bundle = ctx.get_stored_token()
        if bundle is None:
            logger.info("xero_disconnect_without_token", extra={"session_id": ctx.session_id})
            return FlowOutcome.ALREADY_SIGNED_OUT

        bundle = await self.ensure_fresh_token(ctx, bundle)
        account_id = self._account_id(ctx, bundle)

        tenant = self._current_tenant(ctx, bundle)
        if tenant is not None:
            await self.client.delete_connection(bundle, tenant)
            bundle.without_tenant(tenant.tenant_id)
            metrics.tenants_disconnected += 1

        if bundle.tenants:
            ctx.store_token(bundle)
            ctx.store_tenant_id(bundle.tenants[0].tenant_id)
            outcome = FlowOutcome.TENANT_REMOVED
        else:
            ctx.destroy_token()
            if self.options.sign_out_on_full_disconnect:
                ctx.sign_out()
            ctx.transition(FlowState.DISCONNECTED)
            metrics.full_disconnects += 1
            outcome = FlowOutcome.DISCONNECTED

        delete_account = (
            self.options.delete_account_on_disconnect == "always"
            or outcome == FlowOutcome.DISCONNECTED
        )
        if delete_account and account_id:
            self.users.delete(account_id)

        logger.info(
            "xero_disconnect_complete",
            extra={
                "session_id": ctx.session_id,
                "tenant_id": tenant.tenant_id if tenant else None,
                "remaining_tenants": len(bundle.tenants),
                "outcome": outcome.value,
                "account_deleted": bool(delete_account and account_id),
            },
        )
        return outcome

    async def revoke(self, ctx: SessionContext) -> FlowOutcome:
        """Revoke the grant server-side and end the local session."""
        bundle = ctx.get_stored_token()
        if bundle is None:
            logger.info("xero_revoke_without_token", extra={"session_id": ctx.session_id})
            return FlowOutcome.ALREADY_SIGNED_OUT

        bundle = await self.ensure_fresh_token(ctx, bundle)
        await self.client.revoke_access_token(bundle)
        ctx.destroy_token()
        ctx.sign_out()
        ctx.transition(FlowState.REVOKED)
        metrics.revocations += 1
        logger.info("xero_revoke_complete", extra={"session_id": ctx.session_id})
        return FlowOutcome.REVOKED
