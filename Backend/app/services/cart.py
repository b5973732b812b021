"""
Cookie-backed shopping cart.

The cart is a list of ``{product_id, quantity}`` lines stored as JSON in a
per-store cookie (``cart_{slug}``). Prices are never stored in the cookie;
they are joined from the current product rows whenever the cart is read.
"""

import json
import logging
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Mapping, Optional, Sequence

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ..currency import round_money, to_decimal
from ..models import Product
from ..tenancy import get_products_by_ids

logger = logging.getLogger(__name__)

MIN_QUANTITY = 1
MAX_QUANTITY = 99
COOKIE_MAX_AGE = 60 * 60 * 24 * 30


@dataclass(frozen=True)
class CartLine:
    product_id: int
    quantity: int


class CartItemRequest(BaseModel):
    product_id: int
    quantity: int = Field(default=1, ge=0)


class CartRemoveRequest(BaseModel):
    product_id: int


def cart_cookie_name(slug: str) -> str:
    return f"cart_{slug}"


def clamp_quantity(quantity: int) -> int:
    return max(MIN_QUANTITY, min(MAX_QUANTITY, int(quantity)))


# ============================================================================
# COOKIE ENCODING
# ============================================================================

def parse_cart(raw: Optional[str]) -> list[CartLine]:
    """Parse the cookie value; anything malformed reads as an empty cart."""
    if not raw:
        return []
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        logger.debug("Ignoring malformed cart cookie")
        return []
    if not isinstance(data, list):
        return []

    lines: dict[int, int] = {}
    for entry in data:
        if not isinstance(entry, dict):
            continue
        try:
            product_id = int(entry["product_id"])
            quantity = int(entry["quantity"])
        except (KeyError, TypeError, ValueError):
            continue
        if product_id <= 0 or quantity <= 0:
            continue
        lines[product_id] = clamp_quantity(lines.get(product_id, 0) + quantity)
    return [CartLine(product_id, quantity) for product_id, quantity in lines.items()]


def serialize_cart(lines: Sequence[CartLine]) -> str:
    return json.dumps([asdict(line) for line in lines], separators=(",", ":"))


# ============================================================================
# MUTATIONS (pure; return a new list)
# ============================================================================

def add_item(lines: Sequence[CartLine], product_id: int, quantity: int = 1) -> list[CartLine]:
    """Add to the cart, merging with an existing line for the same product."""
    result = []
    merged = False
    for line in lines:
        if line.product_id == product_id:
            result.append(CartLine(product_id, clamp_quantity(line.quantity + quantity)))
            merged = True
        else:
            result.append(line)
    if not merged:
        result.append(CartLine(product_id, clamp_quantity(quantity)))
    return result


def update_item(lines: Sequence[CartLine], product_id: int, quantity: int) -> list[CartLine]:
    """Set a line's quantity; zero or less removes it."""
    if quantity <= 0:
        return remove_item(lines, product_id)
    return [
        CartLine(line.product_id, clamp_quantity(quantity)) if line.product_id == product_id else line
        for line in lines
    ]


def remove_item(lines: Sequence[CartLine], product_id: int) -> list[CartLine]:
    return [line for line in lines if line.product_id != product_id]


def cart_item_count(lines: Sequence[CartLine]) -> int:
    return sum(line.quantity for line in lines)


def cart_subtotal(lines: Sequence[CartLine], products: Mapping[int, Product]) -> Decimal:
    """Sum of price x quantity for lines whose product is known and active."""
    total = Decimal("0")
    for line in lines:
        product = products.get(line.product_id)
        if product is not None and product.is_active:
            total += to_decimal(product.price) * line.quantity
    return total


# ============================================================================
# PRICED VIEW
# ============================================================================

async def load_cart_products(
    session: AsyncSession, tenant_id: int, lines: Sequence[CartLine]
) -> dict[int, Product]:
    return await get_products_by_ids(session, tenant_id, [line.product_id for line in lines])


async def price_cart(
    session: AsyncSession,
    tenant_id: int,
    currency: str,
    lines: Sequence[CartLine],
) -> dict:
    """
    Join cart lines with the tenant's active products.

    Lines for products that were removed or deactivated are dropped.
    """
    products = await load_cart_products(session, tenant_id, lines)
    items = []
    live_lines = []
    for line in lines:
        product = products.get(line.product_id)
        if product is None or not product.is_active:
            continue
        live_lines.append(line)
        items.append({
            "product_id": product.id,
            "name": product.name,
            "slug": product.slug,
            "sku": product.sku,
            "price": float(product.price),
            "quantity": line.quantity,
            "line_total": float(round_money(to_decimal(product.price) * line.quantity, currency)),
            "in_stock": not product.track_inventory or product.allow_backorder or product.stock_quantity >= line.quantity,
        })

    return {
        "items": items,
        "item_count": cart_item_count(live_lines),
        "subtotal": float(round_money(cart_subtotal(live_lines, products), currency)),
        "currency": currency,
    }
