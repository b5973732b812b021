"""
Storefront checkout.

Turns a cookie cart into a pending order through the same creation path the
admin API uses, so pricing, stock and coupon rules are enforced once.
"""

import logging
from typing import Any, Optional, Sequence

from fastapi import status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ..business_rules import raise_for_result
from ..business_rules.cart import validate_cart_item
from ..core.responses import ApiError
from ..models import Order, Tenant
from ..tenancy import get_customer_by_email, get_order_by_number
from .cart import CartLine, load_cart_products
from .orders import CustomerInput, OrderCreate, OrderItemInput, create_order, get_or_create_customer

logger = logging.getLogger(__name__)


class CheckoutRequest(BaseModel):
    customer: CustomerInput
    shipping_address: dict[str, Any]
    coupon_code: Optional[str] = Field(default=None, max_length=20)
    notes: Optional[str] = Field(default=None, max_length=2000)


async def checkout(
    session: AsyncSession,
    tenant: Tenant,
    lines: Sequence[CartLine],
    request: CheckoutRequest,
) -> Order:
    """
    Place an order for the cart.

    Raises:
        ApiError 400: Empty cart or a cart line that no longer passes the cart rules
    """
    if not lines:
        raise ApiError(status.HTTP_400_BAD_REQUEST, "EMPTY_CART", "Cart is empty")

    products = await load_cart_products(session, tenant.id, lines)
    for line in lines:
        raise_for_result(validate_cart_item(products.get(line.product_id), line.quantity))

    customer = await get_or_create_customer(session, tenant.id, request.customer)

    order = await create_order(
        session,
        tenant,
        OrderCreate(
            customer_id=customer.id,
            items=[OrderItemInput(product_id=line.product_id, quantity=line.quantity) for line in lines],
            shipping_address=request.shipping_address,
            coupon_code=request.coupon_code,
            notes=request.notes,
        ),
        actor=f"customer:{customer.id}",
    )
    logger.info(f"Checkout completed for tenant {tenant.slug}: order {order.order_number}")
    return order


async def lookup_order(
    session: AsyncSession,
    tenant_id: int,
    order_number: str,
    email: str,
) -> Order:
    """Customers look up orders by number plus the email used at checkout."""
    order = await get_order_by_number(session, tenant_id, order_number)
    customer = await get_customer_by_email(session, tenant_id, email)
    if not order or not customer or order.customer_id != customer.id:
        raise ApiError.not_found("Order")
    return order
