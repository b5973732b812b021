from typing import Any, Optional

from .types import BusinessRuleResult

MAX_LINE_QUANTITY = 100


def validate_cart_item(product: Optional[Any], quantity: int) -> BusinessRuleResult:
    """Check a single cart line against the current product record."""
    if product is None or not product.is_active:
        return BusinessRuleResult.fail(
            "INVALID_PRODUCT",
            "Product not found or inactive",
            product_id=getattr(product, "id", None),
        )

    if quantity <= 0:
        return BusinessRuleResult.fail(
            "INVALID_QUANTITY", "Quantity must be greater than 0", quantity=quantity
        )

    if quantity > MAX_LINE_QUANTITY:
        return BusinessRuleResult.fail(
            "QUANTITY_EXCEEDED",
            f"Maximum quantity per item is {MAX_LINE_QUANTITY}",
            quantity=quantity,
            max_quantity=MAX_LINE_QUANTITY,
        )

    if product.track_inventory and not product.allow_backorder and product.stock_quantity < quantity:
        return BusinessRuleResult.fail(
            "INSUFFICIENT_INVENTORY",
            f"Only {product.stock_quantity} units of {product.name} available",
            product_id=product.id,
            requested=quantity,
            available=product.stock_quantity,
        )

    return BusinessRuleResult.ok()
