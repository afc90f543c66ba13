from __future__ import annotations

from typing import Any, Optional
import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from ..deps import (
    get_accounting_api,
    get_authorization_flow,
    get_session_context,
)
from ..metrics import metrics
from ..models import Tenant
from ..services.accounting import AccountingApi
from ..services.auth_flow import AuthorizationFlow
from ..services.tenant_resolver import resolve_tenant
from ..services.token_store import SessionContext


router = APIRouter()
logger = logging.getLogger(__name__)


class UserSummary(BaseModel):
    xero_user_id: str
    email: str
    name: Optional[str] = None


class LandingResponse(BaseModel):
    authenticated: bool
    user: Optional[UserSummary] = None
    login_url: str = "/login"


class TenantSummary(BaseModel):
    tenant_id: str
    tenant_name: Optional[str] = None
    tenant_type: Optional[str] = None


class NoTenantsResponse(BaseModel):
    message: str
    login_url: str = "/login"


class DashboardResponse(BaseModel):
    tenant: TenantSummary
    tenants: list[TenantSummary]
    organisation: Optional[dict[str, Any]] = None
    accounts: list[dict[str, Any]] = []
    contacts: list[dict[str, Any]] = []


@router.get("/", response_model=LandingResponse)
def landing(ctx: SessionContext = Depends(get_session_context)) -> LandingResponse:
    user = ctx.current_user
    if not user:
        return LandingResponse(authenticated=False)
    return LandingResponse(
        authenticated=True,
        user=UserSummary(
            xero_user_id=user["xero_user_id"],
            email=user["email"],
            name=user.get("name"),
        ),
    )


@router.get("/no-tenants", response_model=NoTenantsResponse)
def no_tenants() -> NoTenantsResponse:
    return NoTenantsResponse(
        message="No Xero organisations are connected. Log in again to connect one."
    )


@router.get("/dashboard", response_model=None)
async def dashboard(
    tenant_id: str | None = Query(
        default=None, alias="tenantId", description="Tenant to switch to"
    ),
    ctx: SessionContext = Depends(get_session_context),
    flow: AuthorizationFlow = Depends(get_authorization_flow),
    accounting: AccountingApi = Depends(get_accounting_api),
) -> DashboardResponse | RedirectResponse:
    """Show organisation, accounts and contacts for the resolved tenant."""
    if not ctx.is_authenticated:
        return RedirectResponse(url="/", status_code=302)
    bundle = ctx.get_stored_token()
    if bundle is None:
        return RedirectResponse(url="/login", status_code=302)

    bundle = await flow.ensure_fresh_token(ctx, bundle)
    bundle.tenants = await flow.client.get_connections(bundle)
    ctx.store_token(bundle)

    tenant = resolve_tenant(ctx, bundle, tenant_id)
    access_token = bundle.access_token
    organisations = await accounting.get_organisations(access_token, tenant.tenant_id)
    contacts = await accounting.get_contacts(access_token, tenant.tenant_id)
    accounts = await accounting.get_accounts(access_token, tenant.tenant_id)

    metrics.dashboard_views += 1
    logger.info(
        "dashboard_rendered",
        extra={
            "session_id": ctx.session_id,
            "tenant_id": tenant.tenant_id,
            "accounts": len(accounts),
            "contacts": len(contacts),
        },
    )
    return DashboardResponse(
        tenant=TenantSummary(**_tenant_fields(tenant)),
        tenants=[TenantSummary(**_tenant_fields(t)) for t in bundle.tenants],
        organisation=organisations[0] if organisations else None,
        accounts=accounts,
        contacts=contacts,
    )


def _tenant_fields(tenant: Tenant) -> dict[str, Any]:
    return {
        "tenant_id": tenant.tenant_id,
        "tenant_name": tenant.tenant_name,
        "tenant_type": tenant.tenant_type,
    }
