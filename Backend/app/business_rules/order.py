"""
Order business rules: totals, pricing consistency, status transitions,
modification guards and order numbers.

All amounts are Decimal. The checks operate on any object exposing the
attribute names used below, so both ``OrderDraft`` and the ``Order`` ORM row
can be validated.

Usage:
    totals = calculate_totals(lines, tax_rate=Decimal("0.05"), shipping_cost=Decimal("2"))
    draft = OrderDraft(tenant_id=tenant.id, customer_id=customer.id, items=lines, shipping_address=addr, **totals.as_fields())
    raise_for_result(validate_order_creation(draft, products_by_id))
"""

import secrets
import time
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional, Sequence

from ..currency import Number, quantize_places, to_decimal
from ..models import OrderStatus
from .types import BusinessRuleResult

PRICE_TOLERANCE = Decimal("0.01")

VALID_TRANSITIONS: dict[OrderStatus, tuple[OrderStatus, ...]] = {
    OrderStatus.PENDING: (OrderStatus.PAID, OrderStatus.CANCELLED),
    OrderStatus.PAID: (OrderStatus.PROCESSING, OrderStatus.CANCELLED, OrderStatus.REFUNDED),
    OrderStatus.PROCESSING: (OrderStatus.SHIPPED, OrderStatus.CANCELLED),
    OrderStatus.SHIPPED: (OrderStatus.DELIVERED, OrderStatus.CANCELLED),
    OrderStatus.DELIVERED: (OrderStatus.REFUNDED,),
    OrderStatus.CANCELLED: (),
    OrderStatus.REFUNDED: (),
}

IMMUTABLE_STATUSES = (OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.REFUNDED)

SHIPPED_EDITABLE_FIELDS = ("status", "tracking_number", "carrier", "notes", "internal_notes")

REQUIRED_ADDRESS_FIELDS = (
    "first_name",
    "last_name",
    "address1",
    "city",
    "state",
    "postal_code",
    "country",
)

PRICING_FIELDS = ("subtotal", "tax_amount", "shipping_cost", "discount_amount", "total")


# ────────────────────────────────────────────────────────────────
# Value objects
# ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class OrderLine:
    product_id: Optional[int]
    quantity: int
    price: Decimal
    name: str = ""
    sku: Optional[str] = None

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    tax_amount: Decimal
    shipping_cost: Decimal
    discount_amount: Decimal
    total: Decimal

    def as_fields(self) -> dict[str, Decimal]:
        return {name: getattr(self, name) for name in PRICING_FIELDS}

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {name: float(getattr(self, name)) for name in PRICING_FIELDS}


@dataclass(frozen=True)
class OrderDraft:
    tenant_id: Optional[int]
    customer_id: Optional[int]
    items: Sequence[OrderLine]
    subtotal: Decimal
    tax_amount: Decimal = Decimal("0")
    shipping_cost: Decimal = Decimal("0")
    discount_amount: Decimal = Decimal("0")
    total: Decimal = Decimal("0")
    shipping_address: Mapping[str, Any] = field(default_factory=dict)
    status: OrderStatus = OrderStatus.PENDING


# ────────────────────────────────────────────────────────────────
# Arithmetic
# ────────────────────────────────────────────────────────────────

def items_subtotal(items: Iterable[Any]) -> Decimal:
    return sum((to_decimal(item.price) * item.quantity for item in items), Decimal("0"))


def calculate_totals(
    items: Iterable[Any],
    tax_rate: Number = 0,
    shipping_cost: Number = 0,
    discount_amount: Number = 0,
    places: int = 2,
) -> OrderTotals:
    """
    Compute order totals.

    Each component is rounded half-up to ``places`` first and the total is the
    sum of the rounded components, so the result always passes
    ``validate_pricing``.
    """
    raw_subtotal = items_subtotal(items)
    subtotal = quantize_places(raw_subtotal, places)
    tax = quantize_places(raw_subtotal * to_decimal(tax_rate), places)
    shipping = quantize_places(shipping_cost, places)
    discount = quantize_places(discount_amount, places)
    return OrderTotals(
        subtotal=subtotal,
        tax_amount=tax,
        shipping_cost=shipping,
        discount_amount=discount,
        total=subtotal + tax + shipping - discount,
    )


def _amount(order: Any, name: str) -> Decimal:
    value = getattr(order, name, None)
    return to_decimal(value) if value is not None else Decimal("0")


# ────────────────────────────────────────────────────────────────
# Individual rules
# ────────────────────────────────────────────────────────────────

def validate_pricing(order: Any) -> BusinessRuleResult:
    """Subtotal and total must match their components; no amount may be negative."""
    subtotal = _amount(order, "subtotal")
    tax_amount = _amount(order, "tax_amount")
    shipping_cost = _amount(order, "shipping_cost")
    discount_amount = _amount(order, "discount_amount")
    total = _amount(order, "total")

    expected_subtotal = items_subtotal(order.items)
    if abs(subtotal - expected_subtotal) > PRICE_TOLERANCE:
        return BusinessRuleResult.fail(
            "PRICING_ERROR",
            "Subtotal calculation mismatch",
            expected=expected_subtotal,
            provided=subtotal,
            items=[
                {
                    "name": getattr(item, "name", ""),
                    "price": to_decimal(item.price),
                    "quantity": item.quantity,
                    "total": to_decimal(item.price) * item.quantity,
                }
                for item in order.items
            ],
        )

    expected_total = subtotal + tax_amount + shipping_cost - discount_amount
    if abs(total - expected_total) > PRICE_TOLERANCE:
        return BusinessRuleResult.fail(
            "PRICING_ERROR",
            "Total calculation mismatch",
            expected=expected_total,
            provided=total,
            breakdown={
                "subtotal": subtotal,
                "tax_amount": tax_amount,
                "shipping_cost": shipping_cost,
                "discount_amount": discount_amount,
            },
        )

    amounts = {
        "subtotal": subtotal,
        "tax_amount": tax_amount,
        "shipping_cost": shipping_cost,
        "discount_amount": discount_amount,
        "total": total,
    }
    if any(value < 0 for value in amounts.values()):
        return BusinessRuleResult.fail(
            "NEGATIVE_PRICING", "Pricing values must be non-negative", **amounts
        )

    return BusinessRuleResult.ok()


def validate_status_transition(from_status: OrderStatus | str, to_status: OrderStatus | str) -> BusinessRuleResult:
    try:
        current = OrderStatus(from_status)
        target = OrderStatus(to_status)
    except ValueError:
        return BusinessRuleResult.fail(
            "INVALID_STATUS_TRANSITION",
            f"Invalid status transition from {from_status} to {to_status}",
            from_status=str(from_status),
            to_status=str(to_status),
            allowed_transitions=[],
        )

    allowed = VALID_TRANSITIONS[current]
    if target not in allowed:
        return BusinessRuleResult.fail(
            "INVALID_STATUS_TRANSITION",
            f"Invalid status transition from {current.value} to {target.value}",
            from_status=current.value,
            to_status=target.value,
            allowed_transitions=[s.value for s in allowed],
        )
    return BusinessRuleResult.ok()


def validate_order_modification(current_order: Any, updates: Mapping[str, Any]) -> BusinessRuleResult:
    current_status = OrderStatus(current_order.status)

    if current_status in IMMUTABLE_STATUSES:
        return BusinessRuleResult.fail(
            "IMMUTABLE_ORDER",
            f"Cannot modify order with status: {current_status.value}",
            current_status=current_status.value,
            immutable_statuses=[s.value for s in IMMUTABLE_STATUSES],
        )

    if current_status == OrderStatus.SHIPPED:
        disallowed = [name for name in updates if name not in SHIPPED_EDITABLE_FIELDS]
        if disallowed:
            return BusinessRuleResult.fail(
                "RESTRICTED_MODIFICATION",
                "Cannot modify certain fields for shipped orders",
                disallowed_fields=disallowed,
                allowed_fields=list(SHIPPED_EDITABLE_FIELDS),
                current_status=current_status.value,
            )

    return BusinessRuleResult.ok()


def validate_customer(customer_id: Optional[int], tenant_id: Optional[int]) -> BusinessRuleResult:
    if not customer_id or not tenant_id:
        return BusinessRuleResult.fail(
            "INVALID_CUSTOMER",
            "Customer ID and Tenant ID are required",
            customer_id=customer_id,
            tenant_id=tenant_id,
        )
    return BusinessRuleResult.ok()


def validate_items(items: Sequence[Any]) -> BusinessRuleResult:
    if not items:
        return BusinessRuleResult.fail("INVALID_ITEM", "Order must contain at least one item")
    for item in items:
        if not item.product_id or not item.quantity or item.quantity <= 0:
            return BusinessRuleResult.fail(
                "INVALID_ITEM",
                "Invalid item data",
                product_id=item.product_id,
                quantity=item.quantity,
            )
    return BusinessRuleResult.ok()


def validate_stock(items: Sequence[Any], products: Mapping[int, Any]) -> BusinessRuleResult:
    """Every line must reference an active product with enough tracked stock."""
    requested: dict[int, int] = {}
    for item in items:
        requested[item.product_id] = requested.get(item.product_id, 0) + item.quantity

    for product_id, quantity in requested.items():
        product = products.get(product_id)
        if product is None or not product.is_active:
            return BusinessRuleResult.fail(
                "INVALID_PRODUCT",
                f"Product {product_id} is not available",
                product_id=product_id,
            )
        if product.track_inventory and not product.allow_backorder and product.stock_quantity < quantity:
            return BusinessRuleResult.fail(
                "INSUFFICIENT_STOCK",
                f"Insufficient stock for product {product.name}",
                product_id=product_id,
                requested=quantity,
                available=product.stock_quantity,
            )
    return BusinessRuleResult.ok()


def validate_shipping_address(address: Optional[Mapping[str, Any]]) -> BusinessRuleResult:
    address = address or {}
    for name in REQUIRED_ADDRESS_FIELDS:
        value = address.get(name)
        if value is None or not str(value).strip():
            return BusinessRuleResult.fail(
                "INVALID_ADDRESS",
                f"Missing required field: {name}",
                field=name,
            )
    return BusinessRuleResult.ok()


# ────────────────────────────────────────────────────────────────
# Composite checks
# ────────────────────────────────────────────────────────────────

def validate_order_creation(order: OrderDraft, products: Mapping[int, Any]) -> BusinessRuleResult:
    for check in (
        lambda: validate_customer(order.customer_id, order.tenant_id),
        lambda: validate_items(order.items),
        lambda: validate_stock(order.items, products),
        lambda: validate_pricing(order),
        lambda: validate_shipping_address(order.shipping_address),
    ):
        result = check()
        if not result:
            return result
    return BusinessRuleResult.ok()


def validate_order_update(
    updates: Mapping[str, Any],
    current_order: Any,
    products: Optional[Mapping[int, Any]] = None,
) -> BusinessRuleResult:
    result = validate_order_modification(current_order, updates)
    if not result:
        return result

    new_status = updates.get("status")
    if new_status is not None and OrderStatus(new_status) != OrderStatus(current_order.status):
        result = validate_status_transition(current_order.status, new_status)
        if not result:
            return result

    if "items" in updates:
        result = validate_items(updates["items"])
        if not result:
            return result
        if products is not None:
            result = validate_stock(updates["items"], products)
            if not result:
                return result

    if "items" in updates or any(name in updates for name in PRICING_FIELDS):
        merged = OrderDraft(
            tenant_id=current_order.tenant_id,
            customer_id=current_order.customer_id,
            items=list(current_order.items),
            subtotal=to_decimal(current_order.subtotal),
            tax_amount=to_decimal(current_order.tax_amount),
            shipping_cost=to_decimal(current_order.shipping_cost),
            discount_amount=to_decimal(current_order.discount_amount),
            total=to_decimal(current_order.total),
        )
        merged = replace(
            merged,
            **{name: updates[name] for name in ("items",) + PRICING_FIELDS if name in updates},
        )
        result = validate_pricing(merged)
        if not result:
            return result

    return BusinessRuleResult.ok()


# ────────────────────────────────────────────────────────────────
# Order numbers
# ────────────────────────────────────────────────────────────────

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_order_number(tenant_key: str, now_ms: Optional[int] = None) -> str:
    """
    Build a human-friendly order number: PFX-<time base36>-<6 random chars>.

    Example:
        generate_order_number("acme-store") -> "ACM-LZ3K9Q1C-4F7XQ2"
    """
    timestamp = to_base36(now_ms if now_ms is not None else int(time.time() * 1000))
    random_part = "".join(secrets.choice(_BASE36) for _ in range(6))
    prefix = (tenant_key or "ORD")[:3]
    return f"{prefix}-{timestamp}-{random_part}".upper()
