"""
Multi-tenancy context module.

This module provides the TenantContext abstraction for tenant isolation.
Every tenant-specific database operation runs with a resolved context;
handlers receive it through the FastAPI dependencies defined here.

Resolution sources:
    - URL slug:   /api/storefront/{slug}/... and /api/admin/{slug}/...
    - Domain:     verified custom hostname from the Host header
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from fastapi import Depends, Path, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.db import get_session
from ..core.responses import ApiError, ErrorCodes
from ..models import Domain, Tenant, TenantPlan, TenantStatus


logger = logging.getLogger(__name__)


class TenantResolutionSource(str, Enum):
    """How the tenant context was determined."""

    URL_SLUG = "url_slug"
    DOMAIN = "domain"
    HEADER = "header"


@dataclass(frozen=True)
class TenantContext:
    """
    Immutable context representing the current tenant for a request.

    Attributes:
        tenant_id: The database ID of the tenant (tenants.id)
        slug: URL-safe identifier (e.g., "acme-store")
        name: Human-readable store name
        currency: ISO currency code used for prices and totals
        plan: Subscription plan, drives resource limits
        status: ACTIVE or SUSPENDED
        source: How this context was determined (for audit logging)
    """

    tenant_id: int
    slug: str
    name: str
    currency: str = "KWD"
    plan: TenantPlan = TenantPlan.FREE
    status: TenantStatus = TenantStatus.ACTIVE
    source: TenantResolutionSource = TenantResolutionSource.URL_SLUG

    def __post_init__(self):
        if self.tenant_id <= 0:
            raise ValueError("tenant_id must be positive")

    @property
    def is_active(self) -> bool:
        return self.status == TenantStatus.ACTIVE

    @classmethod
    def from_tenant(cls, tenant: Tenant, source: TenantResolutionSource) -> "TenantContext":
        return cls(
            tenant_id=tenant.id,
            slug=tenant.slug,
            name=tenant.name,
            currency=tenant.currency,
            plan=tenant.plan,
            status=tenant.status,
            source=source,
        )


# ────────────────────────────────────────────────────────────────
# Resolution
# ────────────────────────────────────────────────────────────────

async def resolve_tenant_from_slug(
    session: AsyncSession,
    slug: str,
) -> Optional[TenantContext]:
    """Resolve tenant context from a URL slug. Returns None if not found."""
    result = await session.execute(select(Tenant).where(Tenant.slug == slug))
    tenant = result.scalar_one_or_none()

    if not tenant:
        return None

    return TenantContext.from_tenant(tenant, TenantResolutionSource.URL_SLUG)


def normalize_host(host: str) -> str:
    """Lowercase a Host header value and strip any port."""
    return (host or "").strip().lower().split(":", 1)[0]


async def resolve_tenant_from_domain(
    session: AsyncSession,
    host: str,
    source: TenantResolutionSource = TenantResolutionSource.DOMAIN,
) -> Optional[TenantContext]:
    """Resolve tenant context from a verified custom domain. HEADER marks a raw Host header lookup."""
    hostname = normalize_host(host)
    if not hostname:
        return None

    result = await session.execute(
        select(Tenant)
        .join(Domain, Domain.tenant_id == Tenant.id)
        .where(Domain.hostname == hostname, Domain.verified.is_(True))
    )
    tenant = result.scalar_one_or_none()
    if not tenant:
        return None

    return TenantContext.from_tenant(tenant, source)


_SLUG_PATH = re.compile(r"^/api/(?:storefront|admin)/(?P<slug>[a-z0-9-]+)(?:/|$)")


def extract_slug_from_path(path: str) -> Optional[str]:
    """
    Extract tenant slug from a URL path.

    Examples:
        /api/storefront/acme-store/cart -> "acme-store"
        /api/admin/acme-store/orders    -> "acme-store"
        /api/platform/tenants           -> None
    """
    match = _SLUG_PATH.match(path or "")
    return match.group("slug") if match else None


# ────────────────────────────────────────────────────────────────
# FastAPI dependencies
# ────────────────────────────────────────────────────────────────

async def get_tenant_context_from_slug(
    slug: str = Path(..., description="Store URL slug (e.g., 'acme-store')"),
    session: AsyncSession = Depends(get_session),
) -> TenantContext:
    """
    Resolve tenant context strictly from URL slug.

    Raises 404 if the slug is unknown.
    """
    ctx = await resolve_tenant_from_slug(session, slug)
    if not ctx:
        raise ApiError(
            status.HTTP_404_NOT_FOUND,
            ErrorCodes.TENANT_NOT_FOUND,
            f"Store not found: {slug}",
        )
    logger.debug(f"Resolved tenant from slug '{slug}': tenant_id={ctx.tenant_id}")
    return ctx


async def get_active_storefront_tenant(
    ctx: TenantContext = Depends(get_tenant_context_from_slug),
) -> TenantContext:
    """Storefronts of suspended tenants are hidden from customers."""
    if not ctx.is_active:
        logger.info(f"Storefront request for suspended tenant {ctx.slug}")
        raise ApiError(
            status.HTTP_404_NOT_FOUND,
            ErrorCodes.TENANT_NOT_FOUND,
            f"Store not found: {ctx.slug}",
        )
    return ctx
