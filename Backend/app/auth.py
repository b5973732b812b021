"""
Authorization dependencies and audit logging.

Identity is resolved by ``app.core.request_context``; this module turns it
into route-level guards for the merchant admin and platform admin APIs.

Tenant roles:
    OWNER  - everything, including billing-relevant settings
    ADMIN  - catalog, coupons, orders, inventory
    STAFF  - read access, stock movements, order status updates

Usage:
    @router.post("/coupons")
    async def create(
        tenant: TenantContext = Depends(get_tenant_context_from_slug),
        user: RequestContext = Depends(require_tenant_admin),
        session: AsyncSession = Depends(get_session),
    ):
        ...
"""

import logging
from typing import Optional

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from .core.request_context import (
    RequestContext,
    get_request_context,
    require_platform_role,
    require_tenant_access,
)
from .models import AuditLog, PlatformRole, TenantRole
from .tenancy import TenantContext, get_tenant_context_from_slug

logger = logging.getLogger(__name__)


# ============================================================================
# ROLE-BASED ACCESS CONTROL (RBAC)
# ============================================================================

def require_tenant_role(*allowed_roles: TenantRole):
    """
    Build a dependency that requires membership of the URL's tenant.

    With no roles, any membership is enough.
    """
    async def dependency(
        tenant: TenantContext = Depends(get_tenant_context_from_slug),
        ctx: RequestContext = Depends(get_request_context),
    ) -> RequestContext:
        require_tenant_access(ctx, tenant.tenant_id, allowed_roles or None)
        return ctx

    return dependency


require_tenant_staff = require_tenant_role()
require_tenant_admin = require_tenant_role(TenantRole.OWNER, TenantRole.ADMIN)
require_tenant_owner = require_tenant_role(TenantRole.OWNER)


def require_platform(*allowed_roles: PlatformRole):
    """Build a dependency that requires one of the platform roles (any role if none given)."""
    roles = allowed_roles or tuple(PlatformRole)

    async def dependency(ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
        require_platform_role(ctx, roles)
        return ctx

    return dependency


# ============================================================================
# AUDIT LOGGING HELPERS
# ============================================================================

async def log_audit(
    session: AsyncSession,
    *,
    actor_user_id: str,
    action: str,
    tenant_id: Optional[int] = None,
    target_type: Optional[str] = None,
    target_id: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> AuditLog:
    """
    Create an audit log entry.

    Do NOT include customer PII (emails, addresses) in metadata.
    The entry is flushed, not committed; the caller owns the transaction.

    Example:
        await log_audit(
            session,
            actor_user_id=user.user_id,
            action=AUDIT_ORDER_STATUS_CHANGED,
            tenant_id=tenant.tenant_id,
            target_type="order",
            target_id=str(order.id),
            metadata={"from": "paid", "to": "processing"},
        )
    """
    audit_log = AuditLog(
        tenant_id=tenant_id,
        actor_user_id=actor_user_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        extra_data=metadata,
    )
    session.add(audit_log)
    await session.flush()

    logger.info(
        f"Audit: {action} by {actor_user_id} "
        f"(tenant={tenant_id}, target={target_type}:{target_id})"
    )

    return audit_log


# ============================================================================
# COMMON AUDIT ACTIONS
# ============================================================================

# Tenant lifecycle
AUDIT_TENANT_CREATED = "tenant.created"
AUDIT_TENANT_STATUS_CHANGED = "tenant.status_changed"
AUDIT_TENANT_PLAN_CHANGED = "tenant.plan_changed"

# Catalog
AUDIT_PRODUCT_CREATED = "product.created"
AUDIT_PRODUCT_UPDATED = "product.updated"
AUDIT_PRODUCT_DELETED = "product.deleted"
AUDIT_CATEGORY_CREATED = "category.created"
AUDIT_CATEGORY_UPDATED = "category.updated"
AUDIT_CATEGORY_DELETED = "category.deleted"

# Orders
AUDIT_ORDER_CREATED = "order.created"
AUDIT_ORDER_UPDATED = "order.updated"
AUDIT_ORDER_STATUS_CHANGED = "order.status_changed"

# Customers
AUDIT_CUSTOMER_CREATED = "customer.created"
AUDIT_CUSTOMER_UPDATED = "customer.updated"
AUDIT_CUSTOMER_DELETED = "customer.deleted"

# Coupons
AUDIT_COUPON_CREATED = "coupon.created"
AUDIT_COUPON_UPDATED = "coupon.updated"
AUDIT_COUPON_DEACTIVATED = "coupon.deactivated"

# Inventory
AUDIT_STOCK_ADJUSTED = "inventory.movement_recorded"
AUDIT_ALERT_ACKNOWLEDGED = "inventory.alert_acknowledged"

# Custom domains
AUDIT_DOMAIN_ADDED = "domain.added"
AUDIT_DOMAIN_REMOVED = "domain.removed"
AUDIT_DOMAIN_VERIFIED = "domain.verified"
