"""
Plan limits per subscription tier.

Usage:
    from .limits import enforce_tenant_limit

    await enforce_tenant_limit(session, tenant, "categories")
"""

import logging
from dataclasses import dataclass

from fastapi import status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .core.responses import ApiError, ErrorCodes
from .models import Category, Domain, Product, Tenant, TenantPlan

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlanLimits:
    max_products: int
    max_categories: int
    max_domains: int
    max_storage_mb: int
    custom_domain: bool = False
    analytics: bool = False


PLAN_LIMITS: dict[TenantPlan, PlanLimits] = {
    TenantPlan.FREE: PlanLimits(max_products=10, max_categories=5, max_domains=0, max_storage_mb=100),
    TenantPlan.BASIC: PlanLimits(
        max_products=100, max_categories=25, max_domains=1, max_storage_mb=1000, custom_domain=True
    ),
    TenantPlan.PREMIUM: PlanLimits(
        max_products=1000, max_categories=100, max_domains=3, max_storage_mb=10000,
        custom_domain=True, analytics=True,
    ),
    TenantPlan.ENTERPRISE: PlanLimits(
        max_products=10000, max_categories=1000, max_domains=10, max_storage_mb=100000,
        custom_domain=True, analytics=True,
    ),
}

RESOURCE_FIELDS = {
    "products": "max_products",
    "categories": "max_categories",
    "domains": "max_domains",
}

_RESOURCE_MODELS = {
    "products": Product,
    "categories": Category,
    "domains": Domain,
}


@dataclass(frozen=True)
class LimitCheck:
    allowed: bool
    current: int
    limit: int
    remaining: int


def get_plan_limits(plan: TenantPlan | str) -> PlanLimits:
    """Unknown plans fall back to the free tier."""
    try:
        return PLAN_LIMITS[TenantPlan(plan)]
    except ValueError:
        return PLAN_LIMITS[TenantPlan.FREE]


def check_limit(plan: TenantPlan | str, resource: str, current: int, requested: int = 1) -> LimitCheck:
    if resource not in RESOURCE_FIELDS:
        raise ValueError(f"Unknown limited resource: {resource}")
    limit = getattr(get_plan_limits(plan), RESOURCE_FIELDS[resource])
    return LimitCheck(
        allowed=current + requested <= limit,
        current=current,
        limit=limit,
        remaining=max(0, limit - current),
    )


def enforce_limit(plan: TenantPlan | str, resource: str, current: int, requested: int = 1) -> LimitCheck:
    check = check_limit(plan, resource, current, requested)
    if not check.allowed:
        logger.info(f"Plan limit reached: {resource} {check.current}/{check.limit} on plan {plan}")
        raise ApiError(
            status.HTTP_403_FORBIDDEN,
            ErrorCodes.PLAN_LIMIT_EXCEEDED,
            f"Plan limit reached for {resource} ({check.limit})",
            {"resource": resource, "current": check.current, "limit": check.limit},
        )
    return check


async def count_usage(session: AsyncSession, tenant_id: int, resource: str) -> int:
    model = _RESOURCE_MODELS[resource]
    result = await session.execute(
        select(func.count()).select_from(model).where(model.tenant_id == tenant_id)
    )
    return result.scalar_one()


async def enforce_tenant_limit(session: AsyncSession, tenant: Tenant, resource: str) -> LimitCheck:
    current = await count_usage(session, tenant.id, resource)
    return enforce_limit(tenant.plan, resource, current)
