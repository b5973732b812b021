"""
Platform administration API.

Pattern: /api/platform/endpoint

Requires a platform role (SUPER_ADMIN, SUPPORT or BILLING):
    GET    /api/platform/tenants               -> List stores
    POST   /api/platform/tenants               -> Create store + OWNER membership
    PATCH  /api/platform/tenants/{slug}/status -> Suspend/reactivate (SUPER_ADMIN, SUPPORT)
    PATCH  /api/platform/tenants/{slug}/plan   -> Upgrade plan (SUPER_ADMIN, BILLING)
    POST   /api/platform/domains/{id}/verify   -> Mark a custom domain verified (SUPER_ADMIN, SUPPORT)
    GET    /api/platform/rate-limits           -> Limiter stats (SUPER_ADMIN)
    DELETE /api/platform/rate-limits           -> Reset limiter (SUPER_ADMIN)

Public:
    GET    /api/domains/resolve?host=shop.example.com -> Store for a verified custom domain
"""

import logging
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .auth import (
    AUDIT_DOMAIN_VERIFIED,
    AUDIT_TENANT_CREATED,
    AUDIT_TENANT_PLAN_CHANGED,
    AUDIT_TENANT_STATUS_CHANGED,
    log_audit,
    require_platform,
)
from .business_rules import raise_for_result
from .business_rules.tenant import validate_plan_upgrade, validate_tenant_creation
from .core.config import get_settings
from .core.db import get_session
from .core.request_context import RequestContext
from .core.responses import ApiError, ErrorCodes, success_response
from .models import PlatformRole, Tenant, TenantPlan, TenantRole, TenantStatus, TenantUser, ensure_aware
from .rate_limiter import clear_rate_limits, get_rate_limit_stats, rate_limit
from .services import domains
from .tenancy import TenantResolutionSource, get_tenant_by_slug, resolve_tenant_from_domain

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/platform", tags=["platform"], dependencies=[Depends(rate_limit("api"))])
domains_router = APIRouter(prefix="/api/domains", tags=["domains"], dependencies=[Depends(rate_limit("public"))])


class TenantCreate(BaseModel):
    slug: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=255)
    owner_user_id: str = Field(..., min_length=1, max_length=255)
    plan: TenantPlan = TenantPlan.FREE
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    tax_rate: Optional[Decimal] = Field(default=None, ge=0, le=1)
    shipping_flat_rate: Decimal = Field(default=Decimal("0"), ge=0)


class TenantStatusUpdate(BaseModel):
    status: TenantStatus
    reason: Optional[str] = Field(default=None, max_length=500)


class TenantPlanUpdate(BaseModel):
    plan: str


def tenant_to_dict(tenant: Tenant, member_count: Optional[int] = None) -> dict:
    data = {
        "id": tenant.id,
        "slug": tenant.slug,
        "name": tenant.name,
        "status": TenantStatus(tenant.status).value,
        "plan": TenantPlan(tenant.plan).value,
        "currency": tenant.currency,
        "tax_rate": float(tenant.tax_rate),
        "shipping_flat_rate": float(tenant.shipping_flat_rate),
        "created_at": ensure_aware(tenant.created_at).isoformat(),
    }
    if member_count is not None:
        data["member_count"] = member_count
    return data


async def _tenant_or_404(session: AsyncSession, slug: str) -> Tenant:
    tenant = await get_tenant_by_slug(session, slug)
    if not tenant:
        raise ApiError(status.HTTP_404_NOT_FOUND, ErrorCodes.TENANT_NOT_FOUND, f"Store not found: {slug}")
    return tenant


# ────────────────────────────────────────────────────────────────
# Tenants
# ────────────────────────────────────────────────────────────────

@router.get("/tenants")
async def list_tenants(
    tenant_status: Optional[TenantStatus] = Query(default=None, alias="status"),
    user: RequestContext = Depends(require_platform()),
    session: AsyncSession = Depends(get_session),
):
    stmt = select(Tenant).order_by(Tenant.created_at.desc(), Tenant.id.desc())
    if tenant_status is not None:
        stmt = stmt.where(Tenant.status == tenant_status)
    tenants = (await session.execute(stmt)).scalars().all()

    counts = dict(
        (
            await session.execute(
                select(TenantUser.tenant_id, func.count(TenantUser.id)).group_by(TenantUser.tenant_id)
            )
        ).all()
    )
    return success_response([tenant_to_dict(t, counts.get(t.id, 0)) for t in tenants])


@router.post("/tenants", status_code=status.HTTP_201_CREATED)
async def create_tenant(
    body: TenantCreate,
    user: RequestContext = Depends(require_platform(PlatformRole.SUPER_ADMIN, PlatformRole.SUPPORT)),
    session: AsyncSession = Depends(get_session),
):
    slug = body.slug.strip().lower()
    raise_for_result(await validate_tenant_creation(session, slug))

    settings = get_settings()
    tenant = Tenant(
        slug=slug,
        name=body.name.strip(),
        plan=body.plan,
        status=TenantStatus.ACTIVE,
        currency=(body.currency or settings.default_currency).upper(),
        tax_rate=body.tax_rate if body.tax_rate is not None else settings.default_tax_rate,
        shipping_flat_rate=body.shipping_flat_rate,
    )
    session.add(tenant)
    await session.flush()

    session.add(TenantUser(tenant_id=tenant.id, user_id=body.owner_user_id, role=TenantRole.OWNER.value))
    await log_audit(
        session,
        actor_user_id=user.user_id,
        action=AUDIT_TENANT_CREATED,
        tenant_id=tenant.id,
        target_type="tenant",
        target_id=str(tenant.id),
        metadata={"slug": tenant.slug, "plan": tenant.plan.value, "owner": body.owner_user_id},
    )
    await session.commit()

    logger.info(f"Created tenant {tenant.slug} (id={tenant.id}) owned by {body.owner_user_id}")
    return success_response(tenant_to_dict(tenant, member_count=1))


@router.patch("/tenants/{slug}/status")
async def update_tenant_status(
    slug: str,
    body: TenantStatusUpdate,
    user: RequestContext = Depends(require_platform(PlatformRole.SUPER_ADMIN, PlatformRole.SUPPORT)),
    session: AsyncSession = Depends(get_session),
):
    tenant = await _tenant_or_404(session, slug)
    previous = TenantStatus(tenant.status)
    tenant.status = body.status
    await log_audit(
        session,
        actor_user_id=user.user_id,
        action=AUDIT_TENANT_STATUS_CHANGED,
        tenant_id=tenant.id,
        target_type="tenant",
        target_id=str(tenant.id),
        metadata={"from": previous.value, "to": body.status.value, "reason": body.reason},
    )
    await session.commit()
    logger.info(f"Tenant {tenant.slug} status {previous.value} -> {body.status.value}")
    return success_response(tenant_to_dict(tenant))


@router.patch("/tenants/{slug}/plan")
async def update_tenant_plan(
    slug: str,
    body: TenantPlanUpdate,
    user: RequestContext = Depends(require_platform(PlatformRole.SUPER_ADMIN, PlatformRole.BILLING)),
    session: AsyncSession = Depends(get_session),
):
    tenant = await _tenant_or_404(session, slug)
    raise_for_result(validate_plan_upgrade(tenant.plan, body.plan))

    previous = TenantPlan(tenant.plan)
    tenant.plan = TenantPlan(body.plan)
    await log_audit(
        session,
        actor_user_id=user.user_id,
        action=AUDIT_TENANT_PLAN_CHANGED,
        tenant_id=tenant.id,
        target_type="tenant",
        target_id=str(tenant.id),
        metadata={"from": previous.value, "to": tenant.plan.value},
    )
    await session.commit()
    return success_response(tenant_to_dict(tenant))


# ────────────────────────────────────────────────────────────────
# Custom domain verification
# ────────────────────────────────────────────────────────────────

@router.post("/domains/{domain_id}/verify")
async def verify_domain(
    domain_id: int,
    user: RequestContext = Depends(require_platform(PlatformRole.SUPER_ADMIN, PlatformRole.SUPPORT)),
    session: AsyncSession = Depends(get_session),
):
    domain = await domains.verify_domain(session, domain_id)
    await log_audit(
        session,
        actor_user_id=user.user_id,
        action=AUDIT_DOMAIN_VERIFIED,
        tenant_id=domain.tenant_id,
        target_type="domain",
        target_id=str(domain.id),
        metadata={"hostname": domain.hostname},
    )
    await session.commit()
    return success_response(domains.domain_to_dict(domain))


# ────────────────────────────────────────────────────────────────
# Rate limiter administration
# ────────────────────────────────────────────────────────────────

@router.get("/rate-limits")
async def rate_limit_stats(user: RequestContext = Depends(require_platform(PlatformRole.SUPER_ADMIN))):
    return success_response(get_rate_limit_stats())


@router.delete("/rate-limits")
async def reset_rate_limits(
    ip: Optional[str] = None,
    user: RequestContext = Depends(require_platform(PlatformRole.SUPER_ADMIN)),
):
    clear_rate_limits(ip)
    return success_response({"cleared": ip or "all"})


# ────────────────────────────────────────────────────────────────
# Custom domains
# ────────────────────────────────────────────────────────────────

@domains_router.get("/resolve")
async def resolve_domain(
    request: Request,
    host: Optional[str] = Query(default=None, max_length=255),
    session: AsyncSession = Depends(get_session),
):
    """Map a verified custom hostname (default: the request's Host header) to its store."""
    if host:
        ctx = await resolve_tenant_from_domain(session, host)
    else:
        ctx = await resolve_tenant_from_domain(
            session, request.headers.get("host", ""), TenantResolutionSource.HEADER
        )
    if not ctx or not ctx.is_active:
        raise ApiError(status.HTTP_404_NOT_FOUND, ErrorCodes.TENANT_NOT_FOUND, "No store for this domain")
    return success_response({
        "tenant_id": ctx.tenant_id,
        "slug": ctx.slug,
        "name": ctx.name,
        "source": ctx.source.value,
    })
