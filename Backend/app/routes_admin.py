"""
Merchant admin API.

Pattern: /api/admin/{slug}/endpoint

Every route requires membership of the store. Writes to the catalog,
coupons and orders need OWNER or ADMIN; STAFF may read, record stock
movements, acknowledge alerts and move orders through their lifecycle.
Custom domains are managed by the OWNER only. Customers follow the same
rule as the catalog: STAFF read, OWNER or ADMIN write.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from .auth import (
    AUDIT_ALERT_ACKNOWLEDGED,
    AUDIT_COUPON_CREATED,
    AUDIT_COUPON_DEACTIVATED,
    AUDIT_COUPON_UPDATED,
    AUDIT_DOMAIN_ADDED,
    AUDIT_DOMAIN_REMOVED,
    AUDIT_STOCK_ADJUSTED,
    log_audit,
    require_tenant_admin,
    require_tenant_owner,
    require_tenant_staff,
)
from .core.db import get_session
from .core.request_context import RequestContext
from .core.responses import success_response
from .models import CouponType, OrderStatus, ProductStatus
from .rate_limiter import rate_limit
from .services import catalog, coupons, customers, dashboard, domains, inventory, orders
from .tenancy import TenantContext, get_tenant_by_id, get_tenant_context_from_slug

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/admin/{slug}",
    tags=["admin"],
    dependencies=[Depends(rate_limit("api"))],
)


# ────────────────────────────────────────────────────────────────
# Products
# ────────────────────────────────────────────────────────────────

@router.get("/products")
async def list_products(
    q: Optional[str] = Query(default=None, max_length=200),
    category_id: Optional[int] = None,
    product_status: Optional[ProductStatus] = Query(default=None, alias="status"),
    sort_by: str = Query(default="created_at", pattern="^(name|price|created_at)$"),
    sort_order: str = Query(default="desc", pattern="^(asc|desc)$"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    tenant: TenantContext = Depends(get_tenant_context_from_slug),
    user: RequestContext = Depends(require_tenant_staff),
    session: AsyncSession = Depends(get_session),
):
    params = catalog.ProductSearch(
        q=q,
        category_id=category_id,
        status=product_status,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit,
    )
    result = await catalog.search_products(session, tenant.tenant_id, params, active_only=False)
    return success_response({
        "products": [catalog.product_to_dict(p) for p in result["products"]],
        "pagination": result["pagination"],
    })


@router.post("/products", status_code=status.HTTP_201_CREATED)
async def create_product(
    body: catalog.ProductCreate,
    tenant: TenantContext = Depends(get_tenant_context_from_slug),
    user: RequestContext = Depends(require_tenant_admin),
    session: AsyncSession = Depends(get_session),
):
    tenant_row = await get_tenant_by_id(session, tenant.tenant_id)
    product = await catalog.create_product(session, tenant_row, body, user.user_id)
    await session.commit()
    return success_response(catalog.product_to_dict(product))


@router.get("/products/{product_id}")
async def get_product(
    product_id: int,
    tenant: TenantContext = Depends(get_tenant_context_from_slug),
    user: RequestContext = Depends(require_tenant_staff),
    session: AsyncSession = Depends(get_session),
):
    product = await catalog.get_product(session, tenant.tenant_id, product_id)
    return success_response(catalog.product_to_dict(product))


@router.patch("/products/{product_id}")
async def update_product(
    product_id: int,
    body: catalog.ProductUpdate,
    tenant: TenantContext = Depends(get_tenant_context_from_slug),
    user: RequestContext = Depends(require_tenant_admin),
    session: AsyncSession = Depends(get_session),
):
    product = await catalog.update_product(session, tenant.tenant_id, product_id, body, user.user_id)
    await session.commit()
    return success_response(catalog.product_to_dict(product))


@router.delete("/products/{product_id}")
async def delete_product(
    product_id: int,
    tenant: TenantContext = Depends(get_tenant_context_from_slug),
    user: RequestContext = Depends(require_tenant_admin),
    session: AsyncSession = Depends(get_session),
):
    product = await catalog.archive_product(session, tenant.tenant_id, product_id, user.user_id)
    await session.commit()
    return success_response({"id": product.id, "status": ProductStatus(product.status).value})


# ────────────────────────────────────────────────────────────────
# Categories
# ────────────────────────────────────────────────────────────────

@router.get("/categories")
async def list_categories(
    tenant: TenantContext = Depends(get_tenant_context_from_slug),
    user: RequestContext = Depends(require_tenant_staff),
    session: AsyncSession = Depends(get_session),
):
    return success_response(await catalog.list_categories_with_counts(session, tenant.tenant_id))


@router.post("/categories", status_code=status.HTTP_201_CREATED)
async def create_category(
    body: catalog.CategoryCreate,
    tenant: TenantContext = Depends(get_tenant_context_from_slug),
    user: RequestContext = Depends(require_tenant_admin),
    session: AsyncSession = Depends(get_session),
):
    tenant_row = await get_tenant_by_id(session, tenant.tenant_id)
    category = await catalog.create_category(session, tenant_row, body, user.user_id)
    await session.commit()
    return success_response(catalog.category_to_dict(category))


@router.patch("/categories/{category_id}")
async def update_category(
    category_id: int,
    body: catalog.CategoryUpdate,
    tenant: TenantContext = Depends(get_tenant_context_from_slug),
    user: RequestContext = Depends(require_tenant_admin),
    session: AsyncSession = Depends(get_session),
):
    category = await catalog.update_category(session, tenant.tenant_id, category_id, body, user.user_id)
    await session.commit()
    return success_response(catalog.category_to_dict(category))


@router.delete("/categories/{category_id}")
async def delete_category(
    category_id: int,
    tenant: TenantContext = Depends(get_tenant_context_from_slug),
    user: RequestContext = Depends(require_tenant_admin),
    session: AsyncSession = Depends(get_session),
):
    await catalog.delete_category(session, tenant.tenant_id, category_id, user.user_id)
    await session.commit()
    return success_response({"id": category_id, "deleted": True})


# ────────────────────────────────────────────────────────────────
# Orders
# ────────────────────────────────────────────────────────────────

@router.get("/orders")
async def list_orders(
    order_status: Optional[OrderStatus] = Query(default=None, alias="status"),
    customer_id: Optional[int] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    search: Optional[str] = Query(default=None, max_length=200),
    sort_by: str = Query(default="created_at", pattern="^(created_at|total|order_number)$"),
    sort_order: str = Query(default="desc", pattern="^(asc|desc)$"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    tenant: TenantContext = Depends(get_tenant_context_from_slug),
    user: RequestContext = Depends(require_tenant_staff),
    session: AsyncSession = Depends(get_session),
):
    filters = orders.OrderFilters(
        status=order_status,
        customer_id=customer_id,
        date_from=date_from,
        date_to=date_to,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit,
    )
    result = await orders.list_orders(session, tenant.tenant_id, filters)
    return success_response({
        "orders": [orders.order_to_dict(o, include_items=False) for o in result["orders"]],
        "pagination": result["pagination"],
    })


@router.post("/orders", status_code=status.HTTP_201_CREATED)
async def create_order(
    body: orders.OrderCreate,
    tenant: TenantContext = Depends(get_tenant_context_from_slug),
    user: RequestContext = Depends(require_tenant_admin),
    session: AsyncSession = Depends(get_session),
):
    tenant_row = await get_tenant_by_id(session, tenant.tenant_id)
    order = await orders.create_order(session, tenant_row, body, user.user_id)
    await session.commit()
    return success_response(orders.order_to_dict(order, include_internal=True))


@router.get("/orders/{order_id}")
async def get_order(
    order_id: int,
    tenant: TenantContext = Depends(get_tenant_context_from_slug),
    user: RequestContext = Depends(require_tenant_staff),
    session: AsyncSession = Depends(get_session),
):
    order = await orders.get_order(session, tenant.tenant_id, order_id)
    return success_response(orders.order_to_dict(order, include_internal=True))


@router.patch("/orders/{order_id}")
async def update_order(
    order_id: int,
    body: orders.OrderUpdate,
    tenant: TenantContext = Depends(get_tenant_context_from_slug),
    user: RequestContext = Depends(require_tenant_admin),
    session: AsyncSession = Depends(get_session),
):
    order = await orders.update_order(session, tenant.tenant_id, order_id, body, user.user_id)
    await session.commit()
    return success_response(orders.order_to_dict(order, include_internal=True))


@router.post("/orders/{order_id}/status")
async def change_order_status(
    order_id: int,
    body: orders.OrderStatusUpdate,
    tenant: TenantContext = Depends(get_tenant_context_from_slug),
    user: RequestContext = Depends(require_tenant_staff),
    session: AsyncSession = Depends(get_session),
):
    order = await orders.update_order_status(
        session,
        tenant.tenant_id,
        order_id,
        body.status,
        user.user_id,
        tracking_number=body.tracking_number,
        carrier=body.carrier,
    )
    await session.commit()
    return success_response(orders.order_to_dict(order, include_internal=True))


# ────────────────────────────────────────────────────────────────
# Customers
# ────────────────────────────────────────────────────────────────

@router.get("/customers")
async def list_customers(
    search: Optional[str] = Query(default=None, max_length=200),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    tenant: TenantContext = Depends(get_tenant_context_from_slug),
    user: RequestContext = Depends(require_tenant_staff),
    session: AsyncSession = Depends(get_session),
):
    return success_response(
        await customers.list_customers(session, tenant.tenant_id, search=search, page=page, limit=limit)
    )


@router.post("/customers", status_code=status.HTTP_201_CREATED)
async def create_customer(
    body: customers.CustomerCreate,
    tenant: TenantContext = Depends(get_tenant_context_from_slug),
    user: RequestContext = Depends(require_tenant_admin),
    session: AsyncSession = Depends(get_session),
):
    customer = await customers.create_customer(session, tenant.tenant_id, body, user.user_id)
    await session.commit()
    return success_response(customers.customer_to_dict(customer))


@router.get("/customers/{customer_id}")
async def get_customer(
    customer_id: int,
    tenant: TenantContext = Depends(get_tenant_context_from_slug),
    user: RequestContext = Depends(require_tenant_staff),
    session: AsyncSession = Depends(get_session),
):
    return success_response(await customers.get_customer_details(session, tenant.tenant_id, customer_id))


@router.patch("/customers/{customer_id}")
async def update_customer(
    customer_id: int,
    body: customers.CustomerUpdate,
    tenant: TenantContext = Depends(get_tenant_context_from_slug),
    user: RequestContext = Depends(require_tenant_admin),
    session: AsyncSession = Depends(get_session),
):
    await customers.update_customer(session, tenant.tenant_id, customer_id, body, user.user_id)
    await session.commit()
    return success_response(await customers.get_customer_details(session, tenant.tenant_id, customer_id))


@router.delete("/customers/{customer_id}")
async def delete_customer(
    customer_id: int,
    tenant: TenantContext = Depends(get_tenant_context_from_slug),
    user: RequestContext = Depends(require_tenant_admin),
    session: AsyncSession = Depends(get_session),
):
    await customers.delete_customer(session, tenant.tenant_id, customer_id, user.user_id)
    await session.commit()
    return success_response({"id": customer_id, "deleted": True})


# ────────────────────────────────────────────────────────────────
# Coupons
# ────────────────────────────────────────────────────────────────

@router.get("/coupons")
async def list_coupons(
    is_active: Optional[bool] = None,
    coupon_type: Optional[CouponType] = Query(default=None, alias="type"),
    tenant: TenantContext = Depends(get_tenant_context_from_slug),
    user: RequestContext = Depends(require_tenant_staff),
    session: AsyncSession = Depends(get_session),
):
    items = await coupons.list_coupons(session, tenant.tenant_id, is_active=is_active, coupon_type=coupon_type)
    return success_response([coupons.coupon_to_dict(c) for c in items])


# Declared before /coupons/{coupon_id} so "analytics" is not parsed as an id
@router.get("/coupons/analytics")
async def coupon_analytics(
    tenant: TenantContext = Depends(get_tenant_context_from_slug),
    user: RequestContext = Depends(require_tenant_staff),
    session: AsyncSession = Depends(get_session),
):
    return success_response(await coupons.get_coupon_analytics(session, tenant.tenant_id))


@router.post("/coupons", status_code=status.HTTP_201_CREATED)
async def create_coupon(
    body: coupons.CouponCreate,
    tenant: TenantContext = Depends(get_tenant_context_from_slug),
    user: RequestContext = Depends(require_tenant_admin),
    session: AsyncSession = Depends(get_session),
):
    coupon = await coupons.create_coupon(session, tenant.tenant_id, body, created_by=user.user_id)
    await log_audit(
        session,
        actor_user_id=user.user_id,
        action=AUDIT_COUPON_CREATED,
        tenant_id=tenant.tenant_id,
        target_type="coupon",
        target_id=str(coupon.id),
        metadata={"code": coupon.code},
    )
    await session.commit()
    return success_response(coupons.coupon_to_dict(coupon))


@router.get("/coupons/{coupon_id}")
async def get_coupon(
    coupon_id: int,
    tenant: TenantContext = Depends(get_tenant_context_from_slug),
    user: RequestContext = Depends(require_tenant_staff),
    session: AsyncSession = Depends(get_session),
):
    coupon = await coupons.get_coupon(session, tenant.tenant_id, coupon_id)
    return success_response(coupons.coupon_to_dict(coupon))


@router.patch("/coupons/{coupon_id}")
async def update_coupon(
    coupon_id: int,
    body: coupons.CouponUpdate,
    tenant: TenantContext = Depends(get_tenant_context_from_slug),
    user: RequestContext = Depends(require_tenant_admin),
    session: AsyncSession = Depends(get_session),
):
    coupon = await coupons.update_coupon(session, tenant.tenant_id, coupon_id, body)
    await log_audit(
        session,
        actor_user_id=user.user_id,
        action=AUDIT_COUPON_UPDATED,
        tenant_id=tenant.tenant_id,
        target_type="coupon",
        target_id=str(coupon.id),
        metadata={"fields": sorted(body.model_dump(exclude_unset=True))},
    )
    await session.commit()
    return success_response(coupons.coupon_to_dict(coupon))


@router.delete("/coupons/{coupon_id}")
async def deactivate_coupon(
    coupon_id: int,
    tenant: TenantContext = Depends(get_tenant_context_from_slug),
    user: RequestContext = Depends(require_tenant_admin),
    session: AsyncSession = Depends(get_session),
):
    coupon = await coupons.deactivate_coupon(session, tenant.tenant_id, coupon_id)
    await log_audit(
        session,
        actor_user_id=user.user_id,
        action=AUDIT_COUPON_DEACTIVATED,
        tenant_id=tenant.tenant_id,
        target_type="coupon",
        target_id=str(coupon.id),
    )
    await session.commit()
    return success_response(coupons.coupon_to_dict(coupon))


# ────────────────────────────────────────────────────────────────
# Inventory
# ────────────────────────────────────────────────────────────────

@router.get("/inventory/movements")
async def list_movements(
    product_id: Optional[int] = None,
    limit: int = Query(default=50, ge=1, le=200),
    tenant: TenantContext = Depends(get_tenant_context_from_slug),
    user: RequestContext = Depends(require_tenant_staff),
    session: AsyncSession = Depends(get_session),
):
    movements = await inventory.list_stock_movements(session, tenant.tenant_id, product_id, limit)
    return success_response([inventory.movement_to_dict(m) for m in movements])


@router.post("/inventory/movements", status_code=status.HTTP_201_CREATED)
async def record_movement(
    body: inventory.StockMovementCreate,
    tenant: TenantContext = Depends(get_tenant_context_from_slug),
    user: RequestContext = Depends(require_tenant_staff),
    session: AsyncSession = Depends(get_session),
):
    movement = await inventory.record_stock_movement(
        session,
        tenant.tenant_id,
        body.product_id,
        body.type,
        body.quantity,
        reason=body.reason,
        created_by=user.user_id,
        reference=body.reference,
    )
    await log_audit(
        session,
        actor_user_id=user.user_id,
        action=AUDIT_STOCK_ADJUSTED,
        tenant_id=tenant.tenant_id,
        target_type="product",
        target_id=str(body.product_id),
        metadata={"type": body.type.value, "quantity": body.quantity},
    )
    await session.commit()
    return success_response(inventory.movement_to_dict(movement))


@router.get("/inventory/alerts")
async def list_alerts(
    acknowledged: Optional[bool] = None,
    tenant: TenantContext = Depends(get_tenant_context_from_slug),
    user: RequestContext = Depends(require_tenant_staff),
    session: AsyncSession = Depends(get_session),
):
    alerts = await inventory.list_inventory_alerts(session, tenant.tenant_id, acknowledged)
    return success_response([inventory.alert_to_dict(a) for a in alerts])


@router.post("/inventory/alerts/check")
async def check_alerts(
    tenant: TenantContext = Depends(get_tenant_context_from_slug),
    user: RequestContext = Depends(require_tenant_staff),
    session: AsyncSession = Depends(get_session),
):
    created = await inventory.check_low_stock_alerts(session, tenant.tenant_id)
    await session.commit()
    return success_response({"created": len(created), "alerts": [inventory.alert_to_dict(a) for a in created]})


@router.post("/inventory/alerts/{alert_id}/acknowledge")
async def acknowledge_alert(
    alert_id: int,
    tenant: TenantContext = Depends(get_tenant_context_from_slug),
    user: RequestContext = Depends(require_tenant_staff),
    session: AsyncSession = Depends(get_session),
):
    alert = await inventory.acknowledge_alert(session, tenant.tenant_id, alert_id, user.user_id)
    await log_audit(
        session,
        actor_user_id=user.user_id,
        action=AUDIT_ALERT_ACKNOWLEDGED,
        tenant_id=tenant.tenant_id,
        target_type="inventory_alert",
        target_id=str(alert.id),
    )
    await session.commit()
    return success_response(inventory.alert_to_dict(alert))


@router.get("/inventory/summary")
async def inventory_summary(
    tenant: TenantContext = Depends(get_tenant_context_from_slug),
    user: RequestContext = Depends(require_tenant_staff),
    session: AsyncSession = Depends(get_session),
):
    return success_response(await inventory.get_inventory_summary(session, tenant.tenant_id))


# ────────────────────────────────────────────────────────────────
# Dashboard
# ────────────────────────────────────────────────────────────────

@router.get("/dashboard/stats")
async def dashboard_stats(
    tenant: TenantContext = Depends(get_tenant_context_from_slug),
    user: RequestContext = Depends(require_tenant_staff),
    session: AsyncSession = Depends(get_session),
):
    stats = await dashboard.get_dashboard_stats(session, tenant.tenant_id)
    return success_response({**stats, "currency": tenant.currency})


@router.get("/dashboard/low-stock")
async def dashboard_low_stock(
    limit: int = Query(default=10, ge=1, le=100),
    tenant: TenantContext = Depends(get_tenant_context_from_slug),
    user: RequestContext = Depends(require_tenant_staff),
    session: AsyncSession = Depends(get_session),
):
    products = await inventory.low_stock_products(session, tenant.tenant_id, limit)
    return success_response([catalog.product_to_dict(p) for p in products])


# ────────────────────────────────────────────────────────────────
# Custom domains
# ────────────────────────────────────────────────────────────────

@router.get("/domains")
async def list_domains(
    tenant: TenantContext = Depends(get_tenant_context_from_slug),
    user: RequestContext = Depends(require_tenant_staff),
    session: AsyncSession = Depends(get_session),
):
    items = await domains.list_domains(session, tenant.tenant_id)
    return success_response([domains.domain_to_dict(d) for d in items])


@router.post("/domains", status_code=status.HTTP_201_CREATED)
async def add_domain(
    body: domains.DomainCreate,
    tenant: TenantContext = Depends(get_tenant_context_from_slug),
    user: RequestContext = Depends(require_tenant_owner),
    session: AsyncSession = Depends(get_session),
):
    tenant_row = await get_tenant_by_id(session, tenant.tenant_id)
    domain = await domains.add_domain(session, tenant_row, body.hostname)
    await log_audit(
        session,
        actor_user_id=user.user_id,
        action=AUDIT_DOMAIN_ADDED,
        tenant_id=tenant.tenant_id,
        target_type="domain",
        target_id=str(domain.id),
        metadata={"hostname": domain.hostname},
    )
    await session.commit()
    return success_response(domains.domain_to_dict(domain))


@router.delete("/domains/{domain_id}")
async def remove_domain(
    domain_id: int,
    tenant: TenantContext = Depends(get_tenant_context_from_slug),
    user: RequestContext = Depends(require_tenant_owner),
    session: AsyncSession = Depends(get_session),
):
    domain = await domains.remove_domain(session, tenant.tenant_id, domain_id)
    await log_audit(
        session,
        actor_user_id=user.user_id,
        action=AUDIT_DOMAIN_REMOVED,
        tenant_id=tenant.tenant_id,
        target_type="domain",
        target_id=str(domain_id),
        metadata={"hostname": domain.hostname},
    )
    await session.commit()
    return success_response({"id": domain_id, "deleted": True})
