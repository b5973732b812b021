"""
Catalog service: storefront product search and admin product/category writes.

Product stock is never written directly: initial stock and stock edits are
recorded as inventory movements.
"""

import logging
import math
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import (
    AUDIT_CATEGORY_CREATED,
    AUDIT_CATEGORY_DELETED,
    AUDIT_CATEGORY_UPDATED,
    AUDIT_PRODUCT_CREATED,
    AUDIT_PRODUCT_DELETED,
    AUDIT_PRODUCT_UPDATED,
    log_audit,
)
from ..business_rules import raise_for_result
from ..business_rules.catalog import (
    validate_category,
    validate_category_deletion,
    validate_product_creation,
    validate_product_update,
)
from ..core.responses import ApiError
from ..limits import enforce_tenant_limit
from ..models import Category, MovementType, Product, ProductStatus, Tenant, ensure_aware
from ..slug import ensure_unique_slug, slugify
from ..tenancy import list_categories, require_owned, scoped_select
from . import inventory

logger = logging.getLogger(__name__)

PRODUCT_SORT_FIELDS = {
    "name": Product.name,
    "price": Product.price,
    "created_at": Product.created_at,
}

MAX_PAGE_SIZE = 100

# Upper bound of the price filter when a store has no active products
DEFAULT_MAX_PRICE = 1000


# ============================================================================
# REQUEST MODELS
# ============================================================================

class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    slug: Optional[str] = Field(default=None, max_length=120)
    sku: Optional[str] = Field(default=None, max_length=64)
    description: Optional[str] = None
    price: Decimal
    compare_at_price: Optional[Decimal] = None
    category_id: Optional[int] = None
    status: ProductStatus = ProductStatus.ACTIVE
    track_inventory: bool = True
    allow_backorder: bool = False
    stock_quantity: int = 0
    low_stock_threshold: Optional[int] = None
    tags: list[str] = Field(default_factory=list)


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    slug: Optional[str] = Field(default=None, max_length=120)
    sku: Optional[str] = Field(default=None, max_length=64)
    description: Optional[str] = None
    price: Optional[Decimal] = None
    compare_at_price: Optional[Decimal] = None
    category_id: Optional[int] = None
    status: Optional[ProductStatus] = None
    track_inventory: Optional[bool] = None
    allow_backorder: Optional[bool] = None
    stock_quantity: Optional[int] = None
    low_stock_threshold: Optional[int] = None
    tags: Optional[list[str]] = None

    @field_validator("name", "price", "status", "track_inventory", "allow_backorder", "stock_quantity", "tags")
    @classmethod
    def reject_null(cls, v):
        """Omit a field to leave it unchanged; these columns cannot be cleared."""
        if v is None:
            raise ValueError("Field cannot be null")
        return v


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    slug: Optional[str] = Field(default=None, max_length=120)
    description: Optional[str] = None
    parent_id: Optional[int] = None
    is_active: bool = True


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    slug: Optional[str] = Field(default=None, max_length=120)
    description: Optional[str] = None
    parent_id: Optional[int] = None
    is_active: Optional[bool] = None

    @field_validator("name", "is_active")
    @classmethod
    def reject_null(cls, v):
        if v is None:
            raise ValueError("Field cannot be null")
        return v


@dataclass
class ProductSearch:
    q: Optional[str] = None
    category_id: Optional[int] = None
    min_price: Optional[Decimal] = None
    max_price: Optional[Decimal] = None
    in_stock: Optional[bool] = None
    tags: list[str] = field(default_factory=list)
    status: Optional[ProductStatus] = None
    sort_by: str = "created_at"
    sort_order: str = "desc"
    page: int = 1
    limit: int = 20


def _pagination(page: int, limit: int, total: int) -> dict:
    total_pages = math.ceil(total / limit) if total else 0
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": total_pages,
        "has_next": page < total_pages,
        "has_prev": page > 1,
    }


# ============================================================================
# STOREFRONT SEARCH
# ============================================================================

async def search_products(
    session: AsyncSession,
    tenant_id: int,
    params: ProductSearch,
    active_only: bool = True,
) -> dict:
    """
    Filter, sort and paginate a tenant's products.

    Tag matching (any of ``params.tags``) happens after the SQL filters since
    tags are stored as a JSON list.
    """
    stmt = scoped_select(Product, tenant_id)
    if active_only:
        stmt = stmt.where(Product.status == ProductStatus.ACTIVE)
    elif params.status is not None:
        stmt = stmt.where(Product.status == ProductStatus(params.status))
    if params.q:
        pattern = f"%{params.q.strip()}%"
        stmt = stmt.where(
            or_(Product.name.ilike(pattern), Product.description.ilike(pattern), Product.sku.ilike(pattern))
        )
    if params.category_id is not None:
        stmt = stmt.where(Product.category_id == params.category_id)
    if params.min_price is not None:
        stmt = stmt.where(Product.price >= params.min_price)
    if params.max_price is not None:
        stmt = stmt.where(Product.price <= params.max_price)
    if params.in_stock is True:
        stmt = stmt.where(
            or_(
                Product.track_inventory.is_(False),
                Product.allow_backorder.is_(True),
                Product.stock_quantity > 0,
            )
        )
    elif params.in_stock is False:
        stmt = stmt.where(Product.track_inventory.is_(True), Product.stock_quantity <= 0)

    column = PRODUCT_SORT_FIELDS.get(params.sort_by, Product.created_at)
    if params.sort_order == "asc":
        stmt = stmt.order_by(column.asc(), Product.id.asc())
    else:
        stmt = stmt.order_by(column.desc(), Product.id.desc())

    limit = max(1, min(params.limit, MAX_PAGE_SIZE))
    page = max(1, params.page)
    offset = (page - 1) * limit

    if params.tags:
        wanted = {tag.lower() for tag in params.tags}
        candidates = (await session.execute(stmt)).scalars().all()
        matched = [p for p in candidates if wanted & {t.lower() for t in (p.tags or [])}]
        total = len(matched)
        products = matched[offset:offset + limit]
    else:
        total = (await session.execute(select(func.count()).select_from(stmt.subquery()))).scalar_one()
        products = (await session.execute(stmt.offset(offset).limit(limit))).scalars().all()

    return {"products": list(products), "pagination": _pagination(page, limit, total)}


async def get_product(
    session: AsyncSession, tenant_id: int, product_id: int, active_only: bool = False
) -> Product:
    product = await require_owned(session, Product, product_id, tenant_id)
    if not product or (active_only and not product.is_active):
        raise ApiError.not_found("Product")
    return product


async def get_category(session: AsyncSession, tenant_id: int, category_id: int) -> Category:
    category = await require_owned(session, Category, category_id, tenant_id)
    if not category:
        raise ApiError.not_found("Category")
    return category


# ============================================================================
# ADMIN PRODUCT WRITES
# ============================================================================

async def create_product(
    session: AsyncSession,
    tenant: Tenant,
    data: ProductCreate,
    actor: str,
) -> Product:
    values = data.model_dump()
    raise_for_result(await validate_product_creation(session, tenant, values))

    initial_stock = values.pop("stock_quantity")
    values["slug"] = await ensure_unique_slug(
        session, Product, slugify(data.slug or data.name, fallback="product"), tenant_id=tenant.id
    )
    product = Product(tenant_id=tenant.id, stock_quantity=0, **values)
    session.add(product)
    await session.flush()

    if product.track_inventory and initial_stock > 0:
        await inventory.record_stock_movement(
            session,
            tenant.id,
            product.id,
            MovementType.IN,
            initial_stock,
            reason="Initial stock",
            created_by=actor,
        )
    elif not product.track_inventory:
        product.stock_quantity = initial_stock

    await log_audit(
        session,
        actor_user_id=actor,
        action=AUDIT_PRODUCT_CREATED,
        tenant_id=tenant.id,
        target_type="product",
        target_id=str(product.id),
        metadata={"name": product.name, "sku": product.sku},
    )
    logger.info(f"Created product {product.id} ({product.slug}) for tenant {tenant.id}")
    return product


async def update_product(
    session: AsyncSession,
    tenant_id: int,
    product_id: int,
    updates: ProductUpdate,
    actor: str,
) -> Product:
    product = await get_product(session, tenant_id, product_id)
    changes = updates.model_dump(exclude_unset=True)
    raise_for_result(await validate_product_update(session, product, changes))

    new_stock = changes.pop("stock_quantity", None)
    if changes.get("slug"):
        changes["slug"] = await ensure_unique_slug(
            session, Product, slugify(changes["slug"], fallback="product"), tenant_id=tenant_id, exclude_id=product.id
        )
    else:
        changes.pop("slug", None)

    for name, value in changes.items():
        setattr(product, name, value)
    await session.flush()

    if new_stock is not None and new_stock != product.stock_quantity:
        if product.track_inventory:
            await inventory.record_stock_movement(
                session,
                tenant_id,
                product.id,
                MovementType.ADJUSTMENT,
                new_stock,
                reason="Manual stock update",
                created_by=actor,
            )
        else:
            product.stock_quantity = new_stock
            await session.flush()

    await log_audit(
        session,
        actor_user_id=actor,
        action=AUDIT_PRODUCT_UPDATED,
        tenant_id=tenant_id,
        target_type="product",
        target_id=str(product.id),
        metadata={"fields": sorted(updates.model_dump(exclude_unset=True))},
    )
    return product


async def archive_product(session: AsyncSession, tenant_id: int, product_id: int, actor: str) -> Product:
    """Products referenced by orders and movements are archived rather than deleted."""
    product = await get_product(session, tenant_id, product_id)
    product.status = ProductStatus.ARCHIVED
    await session.flush()
    await log_audit(
        session,
        actor_user_id=actor,
        action=AUDIT_PRODUCT_DELETED,
        tenant_id=tenant_id,
        target_type="product",
        target_id=str(product.id),
    )
    logger.info(f"Archived product {product.id} for tenant {tenant_id}")
    return product


# ============================================================================
# ADMIN CATEGORY WRITES
# ============================================================================

async def create_category(
    session: AsyncSession,
    tenant: Tenant,
    data: CategoryCreate,
    actor: str,
) -> Category:
    await enforce_tenant_limit(session, tenant, "categories")

    values = data.model_dump()
    if data.slug:
        values["slug"] = slugify(data.slug, fallback="category")
    raise_for_result(await validate_category(session, tenant.id, values))
    if not data.slug:
        values["slug"] = await ensure_unique_slug(
            session, Category, slugify(data.name, fallback="category"), tenant_id=tenant.id
        )

    category = Category(tenant_id=tenant.id, **values)
    session.add(category)
    await session.flush()
    await log_audit(
        session,
        actor_user_id=actor,
        action=AUDIT_CATEGORY_CREATED,
        tenant_id=tenant.id,
        target_type="category",
        target_id=str(category.id),
        metadata={"slug": category.slug},
    )
    return category


async def update_category(
    session: AsyncSession,
    tenant_id: int,
    category_id: int,
    updates: CategoryUpdate,
    actor: str,
) -> Category:
    category = await get_category(session, tenant_id, category_id)
    changes = updates.model_dump(exclude_unset=True)
    if changes.get("slug"):
        changes["slug"] = slugify(changes["slug"], fallback="category")
    elif "slug" in changes:
        changes.pop("slug")

    raise_for_result(await validate_category(session, tenant_id, changes, category_id=category.id))

    for name, value in changes.items():
        setattr(category, name, value)
    await session.flush()
    await log_audit(
        session,
        actor_user_id=actor,
        action=AUDIT_CATEGORY_UPDATED,
        tenant_id=tenant_id,
        target_type="category",
        target_id=str(category.id),
        metadata={"fields": sorted(changes)},
    )
    return category


async def delete_category(session: AsyncSession, tenant_id: int, category_id: int, actor: str) -> None:
    category = await get_category(session, tenant_id, category_id)
    raise_for_result(await validate_category_deletion(session, tenant_id, category.id))

    await session.delete(category)
    await session.flush()
    await log_audit(
        session,
        actor_user_id=actor,
        action=AUDIT_CATEGORY_DELETED,
        tenant_id=tenant_id,
        target_type="category",
        target_id=str(category_id),
    )


async def list_categories_with_counts(
    session: AsyncSession, tenant_id: int, active_only: bool = False
) -> list[dict]:
    """Categories with the number of active products in each."""
    counts = dict(
        (
            await session.execute(
                select(Product.category_id, func.count(Product.id))
                .where(
                    Product.tenant_id == tenant_id,
                    Product.status == ProductStatus.ACTIVE,
                    Product.category_id.is_not(None),
                )
                .group_by(Product.category_id)
            )
        ).all()
    )
    categories = await list_categories(session, tenant_id, active_only=active_only)
    return [{**category_to_dict(c), "product_count": counts.get(c.id, 0)} for c in categories]


async def get_search_filters(session: AsyncSession, tenant_id: int) -> dict:
    """
    Facets for the storefront filter panel.

    Returns active categories (with product counts), the price range of
    active products and every tag used on them. A store with no active
    products reports the range 0 to ``DEFAULT_MAX_PRICE``.
    """
    categories = await list_categories_with_counts(session, tenant_id, active_only=True)

    low, high = (
        await session.execute(
            select(func.min(Product.price), func.max(Product.price)).where(
                Product.tenant_id == tenant_id, Product.status == ProductStatus.ACTIVE
            )
        )
    ).one()

    tag_lists = (
        await session.execute(
            select(Product.tags).where(
                Product.tenant_id == tenant_id, Product.status == ProductStatus.ACTIVE
            )
        )
    ).scalars().all()
    tags = sorted({tag for tag_list in tag_lists for tag in (tag_list or [])})

    return {
        "categories": categories,
        "price_range": {
            "min": float(low) if low is not None else 0.0,
            "max": float(high) if high is not None else float(DEFAULT_MAX_PRICE),
        },
        "tags": tags,
    }


# ============================================================================
# SERIALIZATION
# ============================================================================

def product_to_dict(product: Product, include_inventory: bool = True) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": product.id,
        "name": product.name,
        "slug": product.slug,
        "sku": product.sku,
        "description": product.description,
        "price": float(product.price),
        "compare_at_price": float(product.compare_at_price) if product.compare_at_price is not None else None,
        "category_id": product.category_id,
        "status": ProductStatus(product.status).value,
        "tags": list(product.tags or []),
        "in_stock": not product.track_inventory or product.allow_backorder or product.stock_quantity > 0,
        "created_at": ensure_aware(product.created_at).isoformat(),
    }
    if include_inventory:
        data.update({
            "track_inventory": product.track_inventory,
            "allow_backorder": product.allow_backorder,
            "stock_quantity": product.stock_quantity,
            "low_stock_threshold": product.low_stock_threshold,
        })
    return data


def category_to_dict(category: Category) -> dict[str, Any]:
    return {
        "id": category.id,
        "name": category.name,
        "slug": category.slug,
        "description": category.description,
        "parent_id": category.parent_id,
        "is_active": category.is_active,
    }

