"""
Tenant business rules: slug eligibility and plan changes.
"""

import re

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Tenant, TenantPlan
from .types import BusinessRuleResult

RESERVED_SLUGS = frozenset({
    "admin", "api", "app", "www", "mail", "ftp", "blog", "shop", "store",
    "support", "help", "docs", "status", "dashboard", "login", "signup",
    "register", "account", "profile", "settings", "billing", "payment",
})

SLUG_PATTERN = re.compile(r"^[a-z0-9](-?[a-z0-9])*$")
SLUG_MIN_LENGTH = 3
SLUG_MAX_LENGTH = 50

PLAN_ORDER = (TenantPlan.FREE, TenantPlan.BASIC, TenantPlan.PREMIUM, TenantPlan.ENTERPRISE)


def validate_slug_format(slug: str) -> BusinessRuleResult:
    if not slug or not (SLUG_MIN_LENGTH <= len(slug) <= SLUG_MAX_LENGTH) or not SLUG_PATTERN.match(slug):
        return BusinessRuleResult.fail(
            "INVALID_SLUG",
            f"Slug must be {SLUG_MIN_LENGTH}-{SLUG_MAX_LENGTH} lowercase letters, digits or single hyphens",
            slug=slug,
        )
    if slug in RESERVED_SLUGS:
        return BusinessRuleResult.fail(
            "RESERVED_SLUG", f"Slug '{slug}' is reserved", slug=slug
        )
    return BusinessRuleResult.ok()


async def validate_tenant_creation(session: AsyncSession, slug: str) -> BusinessRuleResult:
    result = validate_slug_format(slug)
    if not result:
        return result

    existing = await session.execute(select(Tenant.id).where(Tenant.slug == slug))
    if existing.first() is not None:
        return BusinessRuleResult.fail(
            "DUPLICATE_SLUG", f"A store with slug '{slug}' already exists", slug=slug
        )
    return BusinessRuleResult.ok()


def validate_plan_upgrade(current_plan: TenantPlan | str, new_plan: str) -> BusinessRuleResult:
    try:
        target = TenantPlan(new_plan)
    except ValueError:
        return BusinessRuleResult.fail(
            "INVALID_PLAN",
            f"Unknown plan: {new_plan}",
            plan=new_plan,
            valid_plans=[p.value for p in PLAN_ORDER],
        )

    current = TenantPlan(current_plan)
    if PLAN_ORDER.index(target) < PLAN_ORDER.index(current):
        return BusinessRuleResult.fail(
            "PLAN_DOWNGRADE_NOT_ALLOWED",
            f"Cannot downgrade from {current.value} to {target.value}",
            current_plan=current.value,
            new_plan=target.value,
        )
    return BusinessRuleResult.ok()
