"""
Customer management for the merchant admin.

Customers are created implicitly at checkout (see
``orders.get_or_create_customer``); this module lets merchants list, search
and maintain them. Emails are stored lower-cased and are unique per tenant.
"""

import logging
import math
import re
from typing import Optional

from pydantic import BaseModel, Field, field_validator
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import AUDIT_CUSTOMER_CREATED, AUDIT_CUSTOMER_DELETED, AUDIT_CUSTOMER_UPDATED, log_audit
from ..business_rules import BusinessRuleResult, raise_for_result
from ..core.responses import ApiError
from ..models import Customer, Order, ensure_aware
from ..tenancy import get_customer_by_email, require_owned, scoped_select, tenant_filter

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

MAX_PAGE_SIZE = 100


def _normalize_email(value: str) -> str:
    email = value.strip().lower()
    if not EMAIL_PATTERN.match(email):
        raise ValueError("Invalid email address")
    return email


class CustomerCreate(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=32)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return _normalize_email(v)


class CustomerUpdate(BaseModel):
    email: Optional[str] = Field(default=None, min_length=3, max_length=255)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=32)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: Optional[str]) -> str:
        if v is None:
            raise ValueError("Field cannot be null")
        return _normalize_email(v)


def customer_to_dict(customer: Customer, order_count: int = 0, total_spent=0) -> dict:
    return {
        "id": customer.id,
        "email": customer.email,
        "first_name": customer.first_name,
        "last_name": customer.last_name,
        "phone": customer.phone,
        "order_count": int(order_count or 0),
        "total_spent": float(total_spent or 0),
        "created_at": ensure_aware(customer.created_at).isoformat(),
    }


def _order_stats(tenant_id: int):
    """Per-customer order count and spend for one tenant."""
    return (
        select(
            Order.customer_id.label("customer_id"),
            func.count(Order.id).label("order_count"),
            func.coalesce(func.sum(Order.total), 0).label("total_spent"),
        )
        .where(Order.tenant_id == tenant_id, Order.customer_id.is_not(None))
        .group_by(Order.customer_id)
        .subquery()
    )


async def list_customers(
    session: AsyncSession,
    tenant_id: int,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> dict:
    """Newest first; ``search`` matches email, name or phone."""
    stmt = scoped_select(Customer, tenant_id)
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(
            or_(
                Customer.email.ilike(pattern),
                Customer.first_name.ilike(pattern),
                Customer.last_name.ilike(pattern),
                Customer.phone.ilike(pattern),
            )
        )

    total = (await session.execute(select(func.count()).select_from(stmt.subquery()))).scalar_one()

    limit = max(1, min(limit, MAX_PAGE_SIZE))
    page = max(1, page)
    page_ids = (
        stmt.with_only_columns(Customer.id)
        .order_by(Customer.created_at.desc(), Customer.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .subquery()
    )

    stats = _order_stats(tenant_id)
    rows = await session.execute(
        select(Customer, stats.c.order_count, stats.c.total_spent)
        .join(page_ids, page_ids.c.id == Customer.id)
        .outerjoin(stats, stats.c.customer_id == Customer.id)
        .where(tenant_filter(Customer, tenant_id))
        .order_by(Customer.created_at.desc(), Customer.id.desc())
    )
    total_pages = math.ceil(total / limit) if total else 0

    return {
        "customers": [customer_to_dict(c, count, spent) for c, count, spent in rows.all()],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


async def get_customer(session: AsyncSession, tenant_id: int, customer_id: int) -> Customer:
    customer = await require_owned(session, Customer, customer_id, tenant_id)
    if not customer:
        raise ApiError.not_found("Customer")
    return customer


async def get_customer_details(session: AsyncSession, tenant_id: int, customer_id: int) -> dict:
    customer = await get_customer(session, tenant_id, customer_id)
    stats = _order_stats(tenant_id)
    row = (
        await session.execute(
            select(stats.c.order_count, stats.c.total_spent).where(stats.c.customer_id == customer.id)
        )
    ).first()
    return customer_to_dict(customer, *(row or (0, 0)))


def _duplicate_email(email: str) -> BusinessRuleResult:
    return BusinessRuleResult.fail(
        "DUPLICATE_EMAIL", "Customer with this email already exists", email=email
    )


async def create_customer(session: AsyncSession, tenant_id: int, data: CustomerCreate, actor: str) -> Customer:
    if await get_customer_by_email(session, tenant_id, data.email):
        raise_for_result(_duplicate_email(data.email))

    customer = Customer(tenant_id=tenant_id, **data.model_dump())
    session.add(customer)
    await session.flush()

    await log_audit(
        session,
        actor_user_id=actor,
        action=AUDIT_CUSTOMER_CREATED,
        tenant_id=tenant_id,
        target_type="customer",
        target_id=str(customer.id),
    )
    logger.info(f"Created customer {customer.id} for tenant {tenant_id}")
    return customer


async def update_customer(
    session: AsyncSession,
    tenant_id: int,
    customer_id: int,
    updates: CustomerUpdate,
    actor: str,
) -> Customer:
    customer = await get_customer(session, tenant_id, customer_id)
    changes = updates.model_dump(exclude_unset=True)

    new_email = changes.get("email")
    if new_email and new_email != customer.email:
        existing = await get_customer_by_email(session, tenant_id, new_email)
        if existing and existing.id != customer.id:
            raise_for_result(_duplicate_email(new_email))

    for name, value in changes.items():
        setattr(customer, name, value)
    await session.flush()

    if changes:
        await log_audit(
            session,
            actor_user_id=actor,
            action=AUDIT_CUSTOMER_UPDATED,
            tenant_id=tenant_id,
            target_type="customer",
            target_id=str(customer.id),
            metadata={"fields": sorted(changes)},
        )
    return customer


async def delete_customer(session: AsyncSession, tenant_id: int, customer_id: int, actor: str) -> None:
    """Customers with orders are kept so order history stays intact."""
    customer = await get_customer(session, tenant_id, customer_id)

    order_count = (
        await session.execute(
            select(func.count(Order.id)).where(Order.tenant_id == tenant_id, Order.customer_id == customer.id)
        )
    ).scalar_one()
    if order_count:
        raise_for_result(
            BusinessRuleResult.fail(
                "HAS_ORDERS",
                "Cannot delete a customer with orders",
                order_count=order_count,
            )
        )

    await session.delete(customer)
    await session.flush()
    await log_audit(
        session,
        actor_user_id=actor,
        action=AUDIT_CUSTOMER_DELETED,
        tenant_id=tenant_id,
        target_type="customer",
        target_id=str(customer_id),
    )
    logger.info(f"Deleted customer {customer_id} from tenant {tenant_id}")
