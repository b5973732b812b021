"""
Catalog business rules for products and categories.

The pure checks take plain values; the async ``validate_*`` functions load
whatever tenant data the checks need and run them in a fixed order, returning
the first failure.
"""

from typing import Any, Mapping, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..currency import to_decimal
from ..limits import check_limit
from ..models import Category, Product, Tenant, TenantPlan
from .types import BusinessRuleResult


# ────────────────────────────────────────────────────────────────
# Pure checks
# ────────────────────────────────────────────────────────────────

def check_product_limit(plan: TenantPlan | str, current_count: int) -> BusinessRuleResult:
    check = check_limit(plan, "products", current_count)
    if not check.allowed:
        return BusinessRuleResult.fail(
            "PRODUCT_LIMIT_EXCEEDED",
            f"Product limit reached for {TenantPlan(plan).value} plan ({check.limit} products)",
            current_count=current_count,
            max_products=check.limit,
            plan=TenantPlan(plan).value,
        )
    return BusinessRuleResult.ok()


def validate_product_fields(data: Mapping[str, Any], current: Optional[Any] = None) -> BusinessRuleResult:
    """
    Validate price and inventory fields.

    On update ``current`` supplies values that are not part of ``data``, so a
    new compare-at price is still compared against the stored price.
    """
    def pick(name: str):
        if name in data:
            return data[name]
        return getattr(current, name, None) if current is not None else None

    price = pick("price")
    if "price" in data or current is None:
        if price is None or to_decimal(price) <= 0:
            return BusinessRuleResult.fail(
                "INVALID_PRICE", "Product price must be greater than 0", price=price
            )

    compare_at_price = pick("compare_at_price")
    if compare_at_price is not None and ("compare_at_price" in data or "price" in data):
        if price is not None and to_decimal(compare_at_price) <= to_decimal(price):
            return BusinessRuleResult.fail(
                "INVALID_COMPARE_PRICE",
                "Compare at price must be greater than regular price",
                price=price,
                compare_at_price=compare_at_price,
            )

    for name in ("stock_quantity", "low_stock_threshold"):
        value = data.get(name)
        if value is not None and value < 0:
            return BusinessRuleResult.fail(
                "INVALID_INVENTORY", f"{name} cannot be negative", field=name, value=value
            )

    return BusinessRuleResult.ok()


def creates_category_cycle(
    category_id: Optional[int],
    parent_id: Optional[int],
    parents: Mapping[int, Optional[int]],
) -> bool:
    """
    Walk up from ``parent_id`` and report whether ``category_id`` is reached.

    ``parents`` maps every category id in the tenant to its parent id. A loop
    already present in the data also counts as a cycle.
    """
    if parent_id is None:
        return False
    if category_id is not None and parent_id == category_id:
        return True

    visited: set[int] = set()
    current: Optional[int] = parent_id
    while current is not None:
        if current == category_id or current in visited:
            return True
        visited.add(current)
        current = parents.get(current)
    return False


# ────────────────────────────────────────────────────────────────
# Products
# ────────────────────────────────────────────────────────────────

async def _sku_taken(
    session: AsyncSession, tenant_id: int, sku: str, exclude_id: Optional[int] = None
) -> bool:
    stmt = select(Product.id).where(Product.tenant_id == tenant_id, Product.sku == sku)
    if exclude_id is not None:
        stmt = stmt.where(Product.id != exclude_id)
    return (await session.execute(stmt)).first() is not None


async def _category_in_tenant(session: AsyncSession, tenant_id: int, category_id: int) -> bool:
    result = await session.execute(
        select(Category.id).where(Category.id == category_id, Category.tenant_id == tenant_id)
    )
    return result.first() is not None


async def validate_product_creation(
    session: AsyncSession,
    tenant: Tenant,
    data: Mapping[str, Any],
) -> BusinessRuleResult:
    count = (
        await session.execute(
            select(func.count()).select_from(Product).where(Product.tenant_id == tenant.id)
        )
    ).scalar_one()
    result = check_product_limit(tenant.plan, count)
    if not result:
        return result

    sku = data.get("sku")
    if sku and await _sku_taken(session, tenant.id, sku):
        return BusinessRuleResult.fail(
            "DUPLICATE_SKU", f"Product with SKU '{sku}' already exists", sku=sku
        )

    result = validate_product_fields(data)
    if not result:
        return result

    category_id = data.get("category_id")
    if category_id is not None and not await _category_in_tenant(session, tenant.id, category_id):
        return BusinessRuleResult.fail(
            "INVALID_CATEGORY", "Category not found for this store", category_id=category_id
        )

    return BusinessRuleResult.ok()


async def validate_product_update(
    session: AsyncSession,
    product: Product,
    data: Mapping[str, Any],
) -> BusinessRuleResult:
    sku = data.get("sku")
    if sku and sku != product.sku and await _sku_taken(session, product.tenant_id, sku, exclude_id=product.id):
        return BusinessRuleResult.fail(
            "DUPLICATE_SKU", f"Product with SKU '{sku}' already exists", sku=sku
        )

    result = validate_product_fields(data, current=product)
    if not result:
        return result

    category_id = data.get("category_id")
    if category_id is not None and not await _category_in_tenant(session, product.tenant_id, category_id):
        return BusinessRuleResult.fail(
            "INVALID_CATEGORY", "Category not found for this store", category_id=category_id
        )

    return BusinessRuleResult.ok()


# ────────────────────────────────────────────────────────────────
# Categories
# ────────────────────────────────────────────────────────────────

async def _category_parents(session: AsyncSession, tenant_id: int) -> dict[int, Optional[int]]:
    result = await session.execute(
        select(Category.id, Category.parent_id).where(Category.tenant_id == tenant_id)
    )
    return {row.id: row.parent_id for row in result}


async def validate_category(
    session: AsyncSession,
    tenant_id: int,
    data: Mapping[str, Any],
    category_id: Optional[int] = None,
) -> BusinessRuleResult:
    """Shared checks for category creation (``category_id`` None) and update."""
    slug = data.get("slug")
    if slug:
        stmt = select(Category.id).where(Category.tenant_id == tenant_id, Category.slug == slug)
        if category_id is not None:
            stmt = stmt.where(Category.id != category_id)
        if (await session.execute(stmt)).first() is not None:
            return BusinessRuleResult.fail(
                "DUPLICATE_SLUG", f"Category with slug '{slug}' already exists", slug=slug
            )

    if "parent_id" in data and data["parent_id"] is not None:
        parent_id = data["parent_id"]
        parents = await _category_parents(session, tenant_id)
        if parent_id not in parents:
            return BusinessRuleResult.fail(
                "PARENT_CATEGORY_NOT_FOUND", "Parent category not found", parent_id=parent_id
            )
        if creates_category_cycle(category_id, parent_id, parents):
            return BusinessRuleResult.fail(
                "CIRCULAR_REFERENCE",
                "Category cannot be its own ancestor",
                category_id=category_id,
                parent_id=parent_id,
            )

    return BusinessRuleResult.ok()


async def validate_category_deletion(
    session: AsyncSession, tenant_id: int, category_id: int
) -> BusinessRuleResult:
    children = (
        await session.execute(
            select(func.count()).select_from(Category).where(
                Category.tenant_id == tenant_id, Category.parent_id == category_id
            )
        )
    ).scalar_one()
    if children:
        return BusinessRuleResult.fail(
            "HAS_CHILD_CATEGORIES",
            "Cannot delete category with child categories",
            child_count=children,
        )

    products = (
        await session.execute(
            select(func.count()).select_from(Product).where(
                Product.tenant_id == tenant_id, Product.category_id == category_id
            )
        )
    ).scalar_one()
    if products:
        return BusinessRuleResult.fail(
            "HAS_PRODUCTS",
            "Cannot delete category with assigned products",
            product_count=products,
        )

    return BusinessRuleResult.ok()
