"""
Public storefront API.

Pattern: /api/storefront/{slug}/endpoint

Usage:
    GET  /api/storefront/acme-store/products          -> Search products
    GET  /api/storefront/acme-store/products/12       -> Product detail
    GET  /api/storefront/acme-store/categories        -> Category list
    GET  /api/storefront/acme-store/search/filters    -> Categories, price range and tags
    GET  /api/storefront/acme-store/cart              -> Priced cart from cookie
    POST /api/storefront/acme-store/cart/add          -> Add to cart
    POST /api/storefront/acme-store/cart/update       -> Change quantity (0 removes)
    POST /api/storefront/acme-store/cart/remove       -> Remove line
    POST /api/storefront/acme-store/coupons/validate  -> Check a coupon code
    POST /api/storefront/acme-store/checkout          -> Place order from cart
    GET  /api/storefront/acme-store/orders/ACM-...?email=  -> Order lookup

No authentication. Suspended stores return 404.
"""

import logging
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from .business_rules import raise_for_result
from .business_rules.cart import validate_cart_item
from .core.db import get_session
from .core.responses import success_response
from .rate_limiter import rate_limit
from .services import cart as cart_service
from .services.catalog import (
    ProductSearch,
    get_product,
    get_search_filters,
    list_categories_with_counts,
    product_to_dict,
    search_products,
)
from .services.checkout import CheckoutRequest, checkout, lookup_order
from .services.coupons import CouponValidateRequest, validate_coupon
from .services.orders import order_to_dict
from .tenancy import TenantContext, get_active_storefront_tenant, get_tenant_by_id

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/storefront/{slug}",
    tags=["storefront"],
    dependencies=[Depends(rate_limit("public"))],
)


# ────────────────────────────────────────────────────────────────
# Cart cookie helpers
# ────────────────────────────────────────────────────────────────

def _read_cart(request: Request, tenant: TenantContext) -> list[cart_service.CartLine]:
    return cart_service.parse_cart(request.cookies.get(cart_service.cart_cookie_name(tenant.slug)))


def _write_cart(response: Response, tenant: TenantContext, lines: list[cart_service.CartLine]) -> None:
    response.set_cookie(
        cart_service.cart_cookie_name(tenant.slug),
        cart_service.serialize_cart(lines),
        max_age=cart_service.COOKIE_MAX_AGE,
        httponly=True,
        samesite="lax",
    )


# ────────────────────────────────────────────────────────────────
# Catalog
# ────────────────────────────────────────────────────────────────

@router.get("/products")
async def list_products(
    q: Optional[str] = Query(default=None, max_length=200),
    category_id: Optional[int] = None,
    min_price: Optional[Decimal] = Query(default=None, ge=0),
    max_price: Optional[Decimal] = Query(default=None, ge=0),
    in_stock: Optional[bool] = None,
    tags: Optional[str] = Query(default=None, description="Comma-separated tags"),
    sort_by: str = Query(default="created_at", pattern="^(name|price|created_at)$"),
    sort_order: str = Query(default="desc", pattern="^(asc|desc)$"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    tenant: TenantContext = Depends(get_active_storefront_tenant),
    session: AsyncSession = Depends(get_session),
):
    params = ProductSearch(
        q=q,
        category_id=category_id,
        min_price=min_price,
        max_price=max_price,
        in_stock=in_stock,
        tags=[t.strip() for t in (tags or "").split(",") if t.strip()],
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit,
    )
    result = await search_products(session, tenant.tenant_id, params)
    return success_response({
        "products": [product_to_dict(p, include_inventory=False) for p in result["products"]],
        "pagination": result["pagination"],
        "currency": tenant.currency,
    })


@router.get("/products/{product_id}")
async def product_detail(
    product_id: int,
    tenant: TenantContext = Depends(get_active_storefront_tenant),
    session: AsyncSession = Depends(get_session),
):
    product = await get_product(session, tenant.tenant_id, product_id, active_only=True)
    return success_response(product_to_dict(product, include_inventory=False))


@router.get("/categories")
async def categories(
    tenant: TenantContext = Depends(get_active_storefront_tenant),
    session: AsyncSession = Depends(get_session),
):
    return success_response(await list_categories_with_counts(session, tenant.tenant_id, active_only=True))


@router.get("/search/filters")
async def search_filters(
    tenant: TenantContext = Depends(get_active_storefront_tenant),
    session: AsyncSession = Depends(get_session),
):
    filters = await get_search_filters(session, tenant.tenant_id)
    return success_response({**filters, "currency": tenant.currency})


# ────────────────────────────────────────────────────────────────
# Cart
# ────────────────────────────────────────────────────────────────

@router.get("/cart")
async def get_cart(
    request: Request,
    tenant: TenantContext = Depends(get_active_storefront_tenant),
    session: AsyncSession = Depends(get_session),
):
    lines = _read_cart(request, tenant)
    return success_response(await cart_service.price_cart(session, tenant.tenant_id, tenant.currency, lines))


@router.post("/cart/add")
async def add_to_cart(
    body: cart_service.CartItemRequest,
    request: Request,
    response: Response,
    tenant: TenantContext = Depends(get_active_storefront_tenant),
    session: AsyncSession = Depends(get_session),
):
    lines = _read_cart(request, tenant)
    products = await cart_service.load_cart_products(
        session, tenant.tenant_id, [cart_service.CartLine(body.product_id, 1)]
    )
    product = products.get(body.product_id)
    raise_for_result(validate_cart_item(product, body.quantity))

    lines = cart_service.add_item(lines, body.product_id, body.quantity)
    merged = next(line.quantity for line in lines if line.product_id == body.product_id)
    raise_for_result(validate_cart_item(product, merged))

    _write_cart(response, tenant, lines)
    return success_response(await cart_service.price_cart(session, tenant.tenant_id, tenant.currency, lines))


@router.post("/cart/update")
async def update_cart(
    body: cart_service.CartItemRequest,
    request: Request,
    response: Response,
    tenant: TenantContext = Depends(get_active_storefront_tenant),
    session: AsyncSession = Depends(get_session),
):
    lines = _read_cart(request, tenant)
    if body.quantity > 0:
        products = await cart_service.load_cart_products(
            session, tenant.tenant_id, [cart_service.CartLine(body.product_id, body.quantity)]
        )
        raise_for_result(validate_cart_item(products.get(body.product_id), body.quantity))

    lines = cart_service.update_item(lines, body.product_id, body.quantity)
    _write_cart(response, tenant, lines)
    return success_response(await cart_service.price_cart(session, tenant.tenant_id, tenant.currency, lines))


@router.post("/cart/remove")
async def remove_from_cart(
    body: cart_service.CartRemoveRequest,
    request: Request,
    response: Response,
    tenant: TenantContext = Depends(get_active_storefront_tenant),
    session: AsyncSession = Depends(get_session),
):
    lines = cart_service.remove_item(_read_cart(request, tenant), body.product_id)
    _write_cart(response, tenant, lines)
    return success_response(await cart_service.price_cart(session, tenant.tenant_id, tenant.currency, lines))


# ────────────────────────────────────────────────────────────────
# Coupons and checkout
# ────────────────────────────────────────────────────────────────

@router.post("/coupons/validate", dependencies=[Depends(rate_limit("sensitive"))])
async def validate_coupon_code(
    body: CouponValidateRequest,
    tenant: TenantContext = Depends(get_active_storefront_tenant),
    session: AsyncSession = Depends(get_session),
):
    validation = await validate_coupon(
        session,
        tenant.tenant_id,
        body.code,
        body.subtotal,
        customer_id=body.customer_id,
        product_ids=body.product_ids,
        category_ids=body.category_ids,
        currency=tenant.currency,
    )
    return success_response(validation.to_dict())


@router.post(
    "/checkout",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("sensitive"))],
)
async def place_order(
    body: CheckoutRequest,
    request: Request,
    response: Response,
    tenant: TenantContext = Depends(get_active_storefront_tenant),
    session: AsyncSession = Depends(get_session),
):
    tenant_row = await get_tenant_by_id(session, tenant.tenant_id)
    order = await checkout(session, tenant_row, _read_cart(request, tenant), body)
    await session.commit()

    response.delete_cookie(cart_service.cart_cookie_name(tenant.slug))
    return success_response(order_to_dict(order))


@router.get("/orders/{order_number}")
async def order_lookup(
    order_number: str,
    email: str = Query(..., min_length=3, max_length=255),
    tenant: TenantContext = Depends(get_active_storefront_tenant),
    session: AsyncSession = Depends(get_session),
):
    order = await lookup_order(session, tenant.tenant_id, order_number, email)
    return success_response(order_to_dict(order))
