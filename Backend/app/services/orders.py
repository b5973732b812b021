"""
Order service.

Orders are always priced from the stored product prices; client-supplied
prices are never trusted. Creation, stock deduction, coupon usage and the
audit entry happen in the caller's transaction, so a failure anywhere rolls
the whole order back.

Functions:
    get_or_create_customer - find a tenant customer by email or create one
    create_order - validate, price and persist an order
    list_orders - filtered, sorted, paginated listing
    get_order / update_order / update_order_status - admin order management
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import AUDIT_ORDER_CREATED, AUDIT_ORDER_STATUS_CHANGED, AUDIT_ORDER_UPDATED, log_audit
from ..business_rules import BusinessRuleResult, raise_for_result
from ..business_rules.order import (
    OrderDraft,
    OrderLine,
    calculate_totals,
    generate_order_number,
    validate_order_creation,
    validate_shipping_address,
    validate_status_transition,
    validate_order_update,
)
from ..core.responses import ApiError
from ..currency import currency_decimals, to_decimal
from ..models import (
    Customer,
    MovementType,
    Order,
    OrderItem,
    OrderStatus,
    Product,
    Tenant,
    ensure_aware,
)
from ..tenancy import get_customer_by_email, get_products_by_ids, require_owned, scoped_select
from . import coupons, inventory

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"

# Cancelling from these statuses puts the reserved stock back
RESTOCK_ON_CANCEL = (OrderStatus.PENDING, OrderStatus.PAID, OrderStatus.PROCESSING)

SORT_FIELDS = {
    "created_at": Order.created_at,
    "total": Order.total,
    "order_number": Order.order_number,
}

MAX_PAGE_SIZE = 100


# ============================================================================
# REQUEST MODELS
# ============================================================================

class OrderItemInput(BaseModel):
    product_id: int
    quantity: int


class CustomerInput(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=32)


class OrderCreate(BaseModel):
    """Admin/manual order. Either ``customer_id`` or ``customer`` identifies the buyer."""

    customer_id: Optional[int] = None
    customer: Optional[CustomerInput] = None
    items: list[OrderItemInput] = Field(default_factory=list)
    shipping_address: Optional[dict[str, Any]] = None
    shipping_cost: Optional[Decimal] = Field(default=None, ge=0)
    coupon_code: Optional[str] = Field(default=None, max_length=20)
    notes: Optional[str] = Field(default=None, max_length=2000)


class OrderUpdate(BaseModel):
    status: Optional[OrderStatus] = None
    tracking_number: Optional[str] = Field(default=None, max_length=100)
    carrier: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = Field(default=None, max_length=2000)
    internal_notes: Optional[str] = Field(default=None, max_length=2000)
    shipping_address: Optional[dict[str, Any]] = None
    tax_amount: Optional[Decimal] = None
    shipping_cost: Optional[Decimal] = None
    discount_amount: Optional[Decimal] = None
    total: Optional[Decimal] = None

    @field_validator("status", "tax_amount", "shipping_cost", "discount_amount", "total")
    @classmethod
    def reject_null(cls, v):
        """Amounts and status can be changed but never cleared."""
        if v is None:
            raise ValueError("Field cannot be null")
        return v


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    tracking_number: Optional[str] = Field(default=None, max_length=100)
    carrier: Optional[str] = Field(default=None, max_length=100)


@dataclass
class OrderFilters:
    status: Optional[OrderStatus] = None
    customer_id: Optional[int] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    search: Optional[str] = None
    sort_by: str = "created_at"
    sort_order: str = "desc"
    page: int = 1
    limit: int = 20


# ============================================================================
# CUSTOMERS
# ============================================================================

async def get_or_create_customer(
    session: AsyncSession,
    tenant_id: int,
    data: CustomerInput,
) -> Customer:
    """Customers are unique per tenant by (lower-cased) email."""
    email = data.email.strip().lower()
    customer = await get_customer_by_email(session, tenant_id, email)
    if customer:
        for name in ("first_name", "last_name", "phone"):
            value = getattr(data, name)
            if value and not getattr(customer, name):
                setattr(customer, name, value)
        return customer

    customer = Customer(
        tenant_id=tenant_id,
        email=email,
        first_name=data.first_name,
        last_name=data.last_name,
        phone=data.phone,
    )
    session.add(customer)
    await session.flush()
    logger.info(f"Created customer {customer.id} for tenant {tenant_id}")
    return customer


async def _resolve_customer_id(session: AsyncSession, tenant_id: int, payload: OrderCreate) -> Optional[int]:
    if payload.customer is not None:
        customer = await get_or_create_customer(session, tenant_id, payload.customer)
        return customer.id
    if payload.customer_id is not None:
        customer = await require_owned(session, Customer, payload.customer_id, tenant_id)
        if not customer:
            raise_for_result(
                BusinessRuleResult.fail(
                    "INVALID_CUSTOMER",
                    "Customer not found for this store",
                    customer_id=payload.customer_id,
                )
            )
        return customer.id
    return None


# ============================================================================
# CREATION
# ============================================================================

def _price_lines(items: list[OrderItemInput], products: dict[int, Product]) -> list[OrderLine]:
    """Build order lines from stored product prices."""
    lines = []
    for item in items:
        product = products.get(item.product_id)
        lines.append(
            OrderLine(
                product_id=item.product_id,
                quantity=item.quantity,
                price=to_decimal(product.price) if product else Decimal("0"),
                name=product.name if product else "",
                sku=product.sku if product else None,
            )
        )
    return lines


async def create_order(
    session: AsyncSession,
    tenant: Tenant,
    payload: OrderCreate,
    actor: str,
) -> Order:
    """
    Create an order in status pending.

    Steps: re-price lines, compute totals with the tenant's tax rate and
    currency precision, apply the coupon, run the creation rules once on
    the final totals, persist the order, deduct stock and record coupon
    usage.

    Raises:
        ApiError: For any failed business rule (see ``raise_for_result``)
    """
    places = currency_decimals(tenant.currency)
    customer_id = await _resolve_customer_id(session, tenant.id, payload)

    products = await get_products_by_ids(session, tenant.id, [i.product_id for i in payload.items])
    lines = _price_lines(payload.items, products)

    shipping_cost = payload.shipping_cost if payload.shipping_cost is not None else tenant.shipping_flat_rate
    totals = calculate_totals(lines, tenant.tax_rate, shipping_cost, places=places)

    discount = None
    if payload.coupon_code:
        discount = await coupons.apply_coupon_to_order(
            session,
            tenant.id,
            payload.coupon_code,
            totals.subtotal,
            totals.shipping_cost,
            customer_id=customer_id,
            product_ids=[line.product_id for line in lines],
            category_ids=[
                products[line.product_id].category_id
                for line in lines
                if line.product_id in products and products[line.product_id].category_id is not None
            ],
            places=places,
            currency=tenant.currency,
        )
        totals = calculate_totals(
            lines, tenant.tax_rate, shipping_cost, discount.discount_amount, places=places
        )

    draft = OrderDraft(
        tenant_id=tenant.id,
        customer_id=customer_id,
        items=lines,
        shipping_address=payload.shipping_address or {},
        **totals.as_fields(),
    )
    raise_for_result(validate_order_creation(draft, products))

    order = Order(
        tenant_id=tenant.id,
        order_number=generate_order_number(tenant.slug),
        customer_id=customer_id,
        status=OrderStatus.PENDING,
        currency=tenant.currency,
        coupon_code=discount.coupon_code if discount else None,
        shipping_address=dict(payload.shipping_address or {}),
        notes=payload.notes,
        items=[
            OrderItem(
                product_id=line.product_id,
                name=line.name,
                sku=line.sku,
                price=line.price,
                quantity=line.quantity,
                total=line.line_total,
            )
            for line in lines
        ],
        **totals.as_fields(),
    )
    session.add(order)
    await session.flush()

    for line in lines:
        if products[line.product_id].track_inventory:
            await inventory.record_stock_movement(
                session,
                tenant.id,
                line.product_id,
                MovementType.OUT,
                line.quantity,
                reason=f"Order {order.order_number}",
                created_by=SYSTEM_ACTOR,
                reference=order.order_number,
            )

    if discount:
        await coupons.record_coupon_usage(
            session,
            tenant.id,
            discount.coupon_id,
            order.id,
            discount.discount_amount,
            customer_id=customer_id,
        )

    await log_audit(
        session,
        actor_user_id=actor,
        action=AUDIT_ORDER_CREATED,
        tenant_id=tenant.id,
        target_type="order",
        target_id=str(order.id),
        metadata={"order_number": order.order_number, "total": str(order.total), "items": len(lines)},
    )

    logger.info(
        f"Created order {order.order_number} for tenant {tenant.id}: "
        f"{len(lines)} items, total {order.total} {order.currency}"
    )
    return order


# ============================================================================
# QUERIES
# ============================================================================

async def get_order(session: AsyncSession, tenant_id: int, order_id: int) -> Order:
    order = await require_owned(session, Order, order_id, tenant_id)
    if not order:
        raise ApiError.not_found("Order")
    return order


async def list_orders(session: AsyncSession, tenant_id: int, filters: OrderFilters) -> dict:
    """
    List orders with filters and pagination.

    ``search`` matches the order number or the customer's email or name.
    """
    stmt = scoped_select(Order, tenant_id)

    if filters.status is not None:
        stmt = stmt.where(Order.status == OrderStatus(filters.status))
    if filters.customer_id is not None:
        stmt = stmt.where(Order.customer_id == filters.customer_id)
    if filters.date_from is not None:
        stmt = stmt.where(Order.created_at >= ensure_aware(filters.date_from))
    if filters.date_to is not None:
        stmt = stmt.where(Order.created_at <= ensure_aware(filters.date_to))
    if filters.search:
        pattern = f"%{filters.search.strip()}%"
        customer_match = (
            select(Customer.id)
            .where(
                Customer.tenant_id == tenant_id,
                or_(
                    Customer.email.ilike(pattern),
                    Customer.first_name.ilike(pattern),
                    Customer.last_name.ilike(pattern),
                ),
            )
        )
        stmt = stmt.where(or_(Order.order_number.ilike(pattern), Order.customer_id.in_(customer_match)))

    total = (await session.execute(select(func.count()).select_from(stmt.subquery()))).scalar_one()

    limit = max(1, min(filters.limit, MAX_PAGE_SIZE))
    page = max(1, filters.page)
    column = SORT_FIELDS.get(filters.sort_by, Order.created_at)
    if filters.sort_order == "asc":
        stmt = stmt.order_by(column.asc(), Order.id.asc())
    else:
        stmt = stmt.order_by(column.desc(), Order.id.desc())
    stmt = stmt.offset((page - 1) * limit).limit(limit)

    orders = (await session.execute(stmt)).scalars().all()
    total_pages = math.ceil(total / limit) if total else 0

    return {
        "orders": list(orders),
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


# ============================================================================
# UPDATES
# ============================================================================

async def _restock(session: AsyncSession, order: Order, actor: str) -> None:
    product_ids = [item.product_id for item in order.items]
    products = await get_products_by_ids(session, order.tenant_id, product_ids)
    for item in order.items:
        product = products.get(item.product_id)
        if product is None or not product.track_inventory:
            continue
        await inventory.record_stock_movement(
            session,
            order.tenant_id,
            item.product_id,
            MovementType.RETURN,
            item.quantity,
            reason=f"Order {order.order_number} cancelled",
            created_by=actor,
            reference=order.order_number,
        )


async def update_order_status(
    session: AsyncSession,
    tenant_id: int,
    order_id: int,
    new_status: OrderStatus | str,
    actor: str,
    tracking_number: Optional[str] = None,
    carrier: Optional[str] = None,
) -> Order:
    """
    Move an order along its lifecycle.

    Raises:
        ApiError 404: Order not in this tenant
        ApiError 422: Transition not allowed
    """
    order = await get_order(session, tenant_id, order_id)
    previous = OrderStatus(order.status)

    raise_for_result(validate_status_transition(previous, new_status))
    target = OrderStatus(new_status)

    if target == OrderStatus.CANCELLED and previous in RESTOCK_ON_CANCEL:
        await _restock(session, order, actor)

    order.status = target
    if tracking_number is not None:
        order.tracking_number = tracking_number
    if carrier is not None:
        order.carrier = carrier
    await session.flush()

    await log_audit(
        session,
        actor_user_id=actor,
        action=AUDIT_ORDER_STATUS_CHANGED,
        tenant_id=tenant_id,
        target_type="order",
        target_id=str(order.id),
        metadata={"from": previous.value, "to": target.value},
    )
    logger.info(f"Order {order.order_number} status {previous.value} -> {target.value}")
    return order


async def update_order(
    session: AsyncSession,
    tenant_id: int,
    order_id: int,
    updates: OrderUpdate,
    actor: str,
) -> Order:
    """Apply a partial update; a status change goes through ``update_order_status``."""
    order = await get_order(session, tenant_id, order_id)
    changes = updates.model_dump(exclude_unset=True)
    if not changes:
        return order

    raise_for_result(validate_order_update(changes, order))
    if "shipping_address" in changes:
        raise_for_result(validate_shipping_address(changes["shipping_address"]))

    new_status = changes.pop("status", None)
    for name, value in changes.items():
        setattr(order, name, value)
    await session.flush()

    if changes:
        await log_audit(
            session,
            actor_user_id=actor,
            action=AUDIT_ORDER_UPDATED,
            tenant_id=tenant_id,
            target_type="order",
            target_id=str(order.id),
            metadata={"fields": sorted(changes)},
        )

    if new_status is not None and OrderStatus(new_status) != OrderStatus(order.status):
        order = await update_order_status(session, tenant_id, order.id, new_status, actor)

    return order


# ============================================================================
# SERIALIZATION
# ============================================================================

def order_to_dict(order: Order, include_items: bool = True, include_internal: bool = False) -> dict:
    data = {
        "id": order.id,
        "order_number": order.order_number,
        "customer_id": order.customer_id,
        "status": OrderStatus(order.status).value,
        "subtotal": float(order.subtotal),
        "tax_amount": float(order.tax_amount),
        "shipping_cost": float(order.shipping_cost),
        "discount_amount": float(order.discount_amount),
        "total": float(order.total),
        "currency": order.currency,
        "coupon_code": order.coupon_code,
        "shipping_address": order.shipping_address,
        "tracking_number": order.tracking_number,
        "carrier": order.carrier,
        "notes": order.notes,
        "created_at": ensure_aware(order.created_at).isoformat(),
        "updated_at": ensure_aware(order.updated_at).isoformat(),
    }
    if include_internal:
        data["internal_notes"] = order.internal_notes
    if include_items:
        data["items"] = [
            {
                "product_id": item.product_id,
                "name": item.name,
                "sku": item.sku,
                "price": float(item.price),
                "quantity": item.quantity,
                "total": float(item.total),
            }
            for item in order.items
        ]
    return data
