"""
Tenant-scoped query helpers.

Every query against tenant data goes through these helpers (or applies
``tenant_filter`` itself) so that a missing ``tenant_id`` condition cannot
leak rows across stores.

Usage:
    product = await require_owned(session, Product, product_id, ctx.tenant_id)
    if not product:
        raise ApiError.not_found("Product")
"""

from typing import Optional, Sequence, Type, TypeVar

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Category, Coupon, Customer, Order, Product, Tenant

T = TypeVar("T")


# ────────────────────────────────────────────────────────────────
# Composable helpers
# ────────────────────────────────────────────────────────────────

def scoped_select(model: Type[T], tenant_id: int) -> Select:
    """
    Create a SELECT statement pre-filtered by tenant_id.

    Usage:
        stmt = scoped_select(Product, ctx.tenant_id).where(Product.status == ProductStatus.ACTIVE)
    """
    return select(model).where(model.tenant_id == tenant_id)


def tenant_filter(model: Type[T], tenant_id: int):
    """Return a SQLAlchemy filter clause for tenant_id."""
    return model.tenant_id == tenant_id


async def require_owned(
    session: AsyncSession,
    model: Type[T],
    entity_id: int,
    tenant_id: int,
) -> Optional[T]:
    """
    Fetch an entity by ID, validating tenant ownership.
    Returns None if not found or owned by another tenant.
    """
    result = await session.execute(
        select(model).where(model.id == entity_id, model.tenant_id == tenant_id)
    )
    return result.scalar_one_or_none()


# ────────────────────────────────────────────────────────────────
# Tenant queries
# ────────────────────────────────────────────────────────────────

async def get_tenant_by_id(session: AsyncSession, tenant_id: int) -> Optional[Tenant]:
    result = await session.execute(select(Tenant).where(Tenant.id == tenant_id))
    return result.scalar_one_or_none()


async def get_tenant_by_slug(session: AsyncSession, slug: str) -> Optional[Tenant]:
    result = await session.execute(select(Tenant).where(Tenant.slug == slug))
    return result.scalar_one_or_none()


# ────────────────────────────────────────────────────────────────
# Catalog queries (tenant-scoped)
# ────────────────────────────────────────────────────────────────

async def get_products_by_ids(
    session: AsyncSession,
    tenant_id: int,
    product_ids: Sequence[int],
) -> dict[int, Product]:
    """Get products by IDs, scoped to tenant, keyed by id."""
    if not product_ids:
        return {}
    result = await session.execute(
        select(Product).where(Product.tenant_id == tenant_id, Product.id.in_(set(product_ids)))
    )
    return {product.id: product for product in result.scalars().all()}


async def list_categories(
    session: AsyncSession,
    tenant_id: int,
    active_only: bool = False,
) -> Sequence[Category]:
    stmt = scoped_select(Category, tenant_id)
    if active_only:
        stmt = stmt.where(Category.is_active.is_(True))
    result = await session.execute(stmt.order_by(Category.name, Category.id))
    return result.scalars().all()


# ────────────────────────────────────────────────────────────────
# Order / customer / coupon queries (tenant-scoped)
# ────────────────────────────────────────────────────────────────

async def get_order_by_number(
    session: AsyncSession,
    tenant_id: int,
    order_number: str,
) -> Optional[Order]:
    result = await session.execute(
        select(Order).where(Order.tenant_id == tenant_id, Order.order_number == order_number.upper())
    )
    return result.scalar_one_or_none()


async def get_customer_by_email(
    session: AsyncSession,
    tenant_id: int,
    email: str,
) -> Optional[Customer]:
    result = await session.execute(
        select(Customer).where(Customer.tenant_id == tenant_id, Customer.email == email.strip().lower())
    )
    return result.scalar_one_or_none()


async def get_coupon_by_code(
    session: AsyncSession,
    tenant_id: int,
    code: str,
    active_only: bool = True,
) -> Optional[Coupon]:
    stmt = select(Coupon).where(Coupon.tenant_id == tenant_id, Coupon.code == code.strip().upper())
    if active_only:
        stmt = stmt.where(Coupon.is_active.is_(True))
    result = await session.execute(stmt)
    return result.scalar_one_or_none()
