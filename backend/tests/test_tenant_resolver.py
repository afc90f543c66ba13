from datetime import UTC, datetime, timedelta

import pytest

from app.models import Tenant, TokenBundle
from app.services.oauth_errors import NoTenantsError
from app.services.tenant_resolver import resolve_tenant


def _bundle(*tenant_ids: str) -> TokenBundle:
    return TokenBundle(
        access_token="access",
        refresh_token="refresh",
        expires_at=datetime.now(UTC) + timedelta(minutes=30),
        tenants=[Tenant(tid, f"Org {tid}") for tid in tenant_ids],
    )


def test_first_tenant_is_chosen_and_remembered(ctx) -> None:
    tenant = resolve_tenant(ctx, _bundle("A", "B"))
    assert tenant.tenant_id == "A"
    assert ctx.get_current_tenant_id() == "A"


def test_stored_tenant_wins_over_first(ctx) -> None:
    ctx.store_tenant_id("B")
    assert resolve_tenant(ctx, _bundle("A", "B")).tenant_id == "B"


def test_requested_tenant_switches_current(ctx) -> None:
    ctx.store_tenant_id("A")
    tenant = resolve_tenant(ctx, _bundle("A", "B"), requested_tenant_id="B")
    assert tenant.tenant_id == "B"
    assert ctx.get_current_tenant_id() == "B"


def test_unknown_requested_tenant_is_ignored(ctx) -> None:
    ctx.store_tenant_id("A")
    tenant = resolve_tenant(ctx, _bundle("A", "B"), requested_tenant_id="Z")
    assert tenant.tenant_id == "A"
    assert ctx.get_current_tenant_id() == "A"


def test_stale_stored_tenant_falls_back_to_first(ctx) -> None:
    ctx.store_tenant_id("gone")
    assert resolve_tenant(ctx, _bundle("B")).tenant_id == "B"
    assert ctx.get_current_tenant_id() == "B"


def test_no_tenants_raises(ctx) -> None:
    with pytest.raises(NoTenantsError):
        resolve_tenant(ctx, _bundle())
    assert ctx.get_current_tenant_id() is None
