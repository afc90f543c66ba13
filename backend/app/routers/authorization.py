from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse

from ..config import AppSettings
from ..deps import get_app_settings, get_authorization_flow, get_session_context
from ..services.auth_flow import AuthorizationFlow
from ..services.token_store import SessionContext


router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/login")
def login(
    ctx: SessionContext = Depends(get_session_context),
    flow: AuthorizationFlow = Depends(get_authorization_flow),
) -> RedirectResponse:
    """Redirect the browser to Xero with a fresh anti-forgery state."""
    return RedirectResponse(url=flow.start_login(ctx), status_code=302)


@router.get("/callback")
async def callback(
    code: str | None = Query(default=None, description="Authorization code from Xero"),
    state: str | None = Query(default=None, description="State issued at /login"),
    error: str | None = Query(
        default=None, description="Provider error code when the user declined"
    ),
    error_description: str | None = Query(default=None),
    ctx: SessionContext = Depends(get_session_context),
    flow: AuthorizationFlow = Depends(get_authorization_flow),
    settings: AppSettings = Depends(get_app_settings),
) -> RedirectResponse:
    """Handle the Xero callback and sign the user in."""
    await flow.handle_callback(
        ctx, code, state, error=error, error_description=error_description
    )
    return RedirectResponse(url=settings.dashboard_url, status_code=302)


@router.get("/disconnect")
async def disconnect(
    ctx: SessionContext = Depends(get_session_context),
    flow: AuthorizationFlow = Depends(get_authorization_flow),
    settings: AppSettings = Depends(get_app_settings),
) -> RedirectResponse:
    """Disconnect the current tenant, or end the session if it was the last."""
    outcome = await flow.disconnect(ctx)
    logger.info("disconnect_route_done", extra={"outcome": outcome.value})
    return RedirectResponse(url=settings.landing_url, status_code=302)


@router.get("/revoke")
async def revoke(
    ctx: SessionContext = Depends(get_session_context),
    flow: AuthorizationFlow = Depends(get_authorization_flow),
    settings: AppSettings = Depends(get_app_settings),
) -> RedirectResponse:
    """Revoke the Xero grant and sign out."""
    outcome = await flow.revoke(ctx)
    logger.info("revoke_route_done", extra={"outcome": outcome.value})
    return RedirectResponse(url=settings.landing_url, status_code=302)
