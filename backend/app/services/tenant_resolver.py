from __future__ import annotations

import logging

from ..models import Tenant, TokenBundle
from .oauth_errors import NoTenantsError
from .token_store import SessionContext


logger = logging.getLogger(__name__)


def resolve_tenant(
    ctx: SessionContext,
    bundle: TokenBundle,
    requested_tenant_id: str | None = None,
) -> Tenant:
    """Pick the tenant for downstream API calls and remember it for the session.

    Precedence:
    - an explicitly requested tenant that the token is authorized for;
    - the tenant previously stored for this session, if still authorized;
    - the first authorized tenant.
    """
    if not bundle.tenants:
        raise NoTenantsError("Token has no authorized tenants")

    requested = bundle.find_tenant(requested_tenant_id)
    if requested is not None:
        ctx.store_tenant_id(requested.tenant_id)
        return requested
    if requested_tenant_id:
        logger.info(
            "tenant_request_not_authorized",
            extra={"tenant_id": requested_tenant_id},
        )

    current = bundle.find_tenant(ctx.get_current_tenant_id())
    if current is not None:
        return current

    fallback = bundle.tenants[0]
    ctx.store_tenant_id(fallback.tenant_id)
    return fallback
