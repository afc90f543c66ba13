from __future__ import annotations

import secrets

from fastapi import Depends, Request

from .config import AppSettings, get_settings
from .repositories import UserRepository, users_repo
from .services.accounting import AccountingApi
from .services.auth_flow import AuthorizationFlow, FlowOptions
from .services.token_store import SessionContext, token_store
from .services.token_validation import get_jwks_key_resolver
from .services.xero_client import XeroOAuthClient


def new_session_id() -> str:
    return secrets.token_urlsafe(24)


def get_session_context(request: Request) -> SessionContext:
    """Bind the token store to the caller's session.

    The session middleware guarantees request.state.session_id; direct
    callers without it get a throwaway session.
    """
    session_id = getattr(request.state, "session_id", None) or new_session_id()
    return SessionContext(token_store, session_id)


def get_app_settings() -> AppSettings:
    return get_settings()


def get_xero_client(
    settings: AppSettings = Depends(get_app_settings),
) -> XeroOAuthClient:
    return XeroOAuthClient(settings.xero)


def get_accounting_api(
    settings: AppSettings = Depends(get_app_settings),
) -> AccountingApi:
    return AccountingApi(settings.xero)


def get_user_repository() -> UserRepository:
    return users_repo


def get_authorization_flow(
    settings: AppSettings = Depends(get_app_settings),
    client: XeroOAuthClient = Depends(get_xero_client),
    users: UserRepository = Depends(get_user_repository),
) -> AuthorizationFlow:
    key_resolver = (
        get_jwks_key_resolver(settings.xero.jwks_url)
        if settings.xero.verify_signatures
        else None
    )
    return AuthorizationFlow(
        client,
        users,
        options=FlowOptions.from_settings(settings),
        key_resolver=key_resolver,
    )
