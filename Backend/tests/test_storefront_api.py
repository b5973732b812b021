"""
Public storefront API: catalog, cookie cart, checkout and order lookup.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from app.models import Category, CouponType, ProductStatus, TenantStatus
from app.services.coupons import CouponCreate, create_coupon

ADDRESS = {
    "first_name": "Maha",
    "last_name": "Al-Mutairi",
    "address1": "Block 1, Street 2",
    "city": "Jabriya",
    "state": "Hawalli",
    "postal_code": "46300",
    "country": "KW",
}


@pytest.fixture
async def shop(tenant_factory):
    return await tenant_factory("scent-shop", shipping_flat_rate=Decimal("1.000"))


class TestCatalog:
    @pytest.mark.asyncio
    async def test_only_active_products_are_listed(self, client, shop, product_factory):
        await product_factory(shop, name="Visible")
        await product_factory(shop, name="Hidden", status=ProductStatus.DRAFT)
        response = await client.get("/api/storefront/scent-shop/products")
        assert response.status_code == 200
        data = response.json()["data"]
        assert [p["name"] for p in data["products"]] == ["Visible"]
        assert data["currency"] == "KWD"
        assert "stock_quantity" not in data["products"][0]

    @pytest.mark.asyncio
    async def test_search_and_price_filter(self, client, shop, product_factory):
        await product_factory(shop, name="Rose Oud", price=Decimal("20.000"))
        await product_factory(shop, name="Rose Water", price=Decimal("3.000"))
        await product_factory(shop, name="Musk", price=Decimal("25.000"))
        response = await client.get(
            "/api/storefront/scent-shop/products",
            params={"q": "rose", "min_price": "10", "sort_by": "price", "sort_order": "asc"},
        )
        assert [p["name"] for p in response.json()["data"]["products"]] == ["Rose Oud"]

    @pytest.mark.asyncio
    async def test_tag_filter(self, client, shop, product_factory):
        await product_factory(shop, name="Gift Set", tags=["gift", "eid"])
        await product_factory(shop, name="Sample", tags=["sample"])
        response = await client.get("/api/storefront/scent-shop/products", params={"tags": "eid"})
        assert [p["name"] for p in response.json()["data"]["products"]] == ["Gift Set"]

    @pytest.mark.asyncio
    async def test_draft_product_detail_is_hidden(self, client, shop, product_factory):
        draft = await product_factory(shop, status=ProductStatus.DRAFT)
        response = await client.get(f"/api/storefront/scent-shop/products/{draft.id}")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_categories(self, client, shop, async_session):
        async_session.add_all([
            Category(tenant_id=shop.id, name="Oud", slug="oud"),
            Category(tenant_id=shop.id, name="Retired", slug="retired", is_active=False),
        ])
        await async_session.flush()
        response = await client.get("/api/storefront/scent-shop/categories")
        assert [c["slug"] for c in response.json()["data"]] == ["oud"]

    @pytest.mark.asyncio
    async def test_search_filters(self, client, shop, product_factory, tenant_factory, async_session):
        oud = Category(tenant_id=shop.id, name="Oud", slug="oud")
        async_session.add_all([oud, Category(tenant_id=shop.id, name="Retired", slug="retired", is_active=False)])
        await async_session.flush()
        await product_factory(shop, name="Rose Oud", price=Decimal("20.000"), tags=["oud", "gift"], category_id=oud.id)
        await product_factory(shop, name="Musk", price=Decimal("4.500"), tags=["gift"])
        await product_factory(shop, name="Prototype", price=Decimal("99.000"), tags=["secret"], status=ProductStatus.DRAFT)
        other = await tenant_factory("other-shop")
        await product_factory(other, name="Elsewhere", price=Decimal("1.000"), tags=["foreign"])

        response = await client.get("/api/storefront/scent-shop/search/filters")
        assert response.status_code == 200
        data = response.json()["data"]
        assert [(c["slug"], c["product_count"]) for c in data["categories"]] == [("oud", 1)]
        assert data["price_range"] == {"min": 4.5, "max": 20.0}
        assert data["tags"] == ["gift", "oud"]
        assert data["currency"] == "KWD"

    @pytest.mark.asyncio
    async def test_search_filters_for_empty_store(self, client, shop):
        response = await client.get("/api/storefront/scent-shop/search/filters")
        data = response.json()["data"]
        assert data["categories"] == []
        assert data["price_range"] == {"min": 0.0, "max": 1000.0}
        assert data["tags"] == []

    @pytest.mark.asyncio
    async def test_suspended_store_is_not_found(self, client, tenant_factory):
        await tenant_factory("closed-shop", status=TenantStatus.SUSPENDED)
        response = await client.get("/api/storefront/closed-shop/products")
        assert response.status_code == 404
        assert response.json()["code"] == "TENANT_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_unknown_store(self, client):
        response = await client.get("/api/storefront/ghost-shop/products")
        assert response.status_code == 404


class TestCart:
    @pytest.mark.asyncio
    async def test_add_update_remove(self, client, shop, product_factory):
        product = await product_factory(shop, price=Decimal("2.250"))

        response = await client.post("/api/storefront/scent-shop/cart/add", json={"product_id": product.id, "quantity": 2})
        assert response.status_code == 200
        assert "cart_scent-shop" in response.cookies
        cart = response.json()["data"]
        assert cart["item_count"] == 2
        assert cart["subtotal"] == 4.5

        response = await client.post("/api/storefront/scent-shop/cart/add", json={"product_id": product.id, "quantity": 1})
        assert response.json()["data"]["item_count"] == 3

        response = await client.post("/api/storefront/scent-shop/cart/update", json={"product_id": product.id, "quantity": 5})
        assert response.json()["data"]["items"][0]["quantity"] == 5

        response = await client.get("/api/storefront/scent-shop/cart")
        assert response.json()["data"]["subtotal"] == 11.25

        response = await client.post("/api/storefront/scent-shop/cart/remove", json={"product_id": product.id})
        assert response.json()["data"]["items"] == []

    @pytest.mark.asyncio
    async def test_cannot_add_more_than_stock(self, client, shop, product_factory):
        product = await product_factory(shop, stock_quantity=2)
        await client.post("/api/storefront/scent-shop/cart/add", json={"product_id": product.id, "quantity": 2})
        response = await client.post("/api/storefront/scent-shop/cart/add", json={"product_id": product.id, "quantity": 1})
        assert response.status_code == 400
        assert response.json()["code"] == "INSUFFICIENT_INVENTORY"

    @pytest.mark.asyncio
    async def test_cannot_add_other_store_product(self, client, shop, tenant_factory, product_factory):
        other = await tenant_factory("other-scents")
        foreign = await product_factory(other)
        response = await client.post("/api/storefront/scent-shop/cart/add", json={"product_id": foreign.id})
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_PRODUCT"

    @pytest.mark.asyncio
    async def test_malformed_cookie_is_empty_cart(self, client, shop):
        client.cookies.set("cart_scent-shop", "garbage")
        response = await client.get("/api/storefront/scent-shop/cart")
        assert response.json()["data"]["items"] == []


class TestCheckout:
    @pytest.mark.asyncio
    async def test_checkout_flow(self, client, shop, product_factory, async_session):
        product = await product_factory(shop, price=Decimal("7.000"), stock_quantity=5)
        await create_coupon(
            async_session,
            shop.id,
            CouponCreate(
                code="EID",
                name="Eid",
                type=CouponType.FIXED_AMOUNT,
                value=Decimal("2"),
                valid_from=datetime.now(timezone.utc) - timedelta(hours=1),
            ),
        )
        await async_session.commit()

        await client.post("/api/storefront/scent-shop/cart/add", json={"product_id": product.id, "quantity": 2})
        response = await client.post(
            "/api/storefront/scent-shop/checkout",
            json={
                "customer": {"email": "Maha@Example.com", "first_name": "Maha"},
                "shipping_address": ADDRESS,
                "coupon_code": "eid",
            },
        )
        assert response.status_code == 201, response.text
        order = response.json()["data"]
        assert order["status"] == "pending"
        assert order["subtotal"] == 14.0
        assert order["shipping_cost"] == 1.0
        assert order["discount_amount"] == 2.0
        assert order["total"] == 13.0
        assert order["coupon_code"] == "EID"
        assert "internal_notes" not in order
        assert product.stock_quantity == 3

        cart = await client.get("/api/storefront/scent-shop/cart")
        assert cart.json()["data"]["items"] == []

        lookup = await client.get(
            f"/api/storefront/scent-shop/orders/{order['order_number']}", params={"email": "maha@example.com"}
        )
        assert lookup.status_code == 200
        assert lookup.json()["data"]["id"] == order["id"]

        wrong = await client.get(
            f"/api/storefront/scent-shop/orders/{order['order_number']}", params={"email": "someone@example.com"}
        )
        assert wrong.status_code == 404

    @pytest.mark.asyncio
    async def test_empty_cart(self, client, shop):
        response = await client.post(
            "/api/storefront/scent-shop/checkout",
            json={"customer": {"email": "a@b.com"}, "shipping_address": ADDRESS},
        )
        assert response.status_code == 400
        assert response.json() == {"ok": False, "error": "Cart is empty", "code": "EMPTY_CART"}

    @pytest.mark.asyncio
    async def test_coupon_validation_endpoint(self, client, shop, async_session):
        await create_coupon(
            async_session,
            shop.id,
            CouponCreate(
                code="TEN",
                name="Ten",
                type=CouponType.PERCENTAGE,
                value=Decimal("10"),
                minimum_order_amount=Decimal("20"),
                valid_from=datetime.now(timezone.utc) - timedelta(hours=1),
            ),
        )
        await async_session.commit()

        low = await client.post("/api/storefront/scent-shop/coupons/validate", json={"code": "ten", "subtotal": "15"})
        assert low.json()["data"] == {
            "valid": False,
            "error": "Minimum order amount of 20.000 KWD required",
            "code": "MINIMUM_ORDER_NOT_MET",
        }

        ok = await client.post("/api/storefront/scent-shop/coupons/validate", json={"code": "ten", "subtotal": "25.5"})
        data = ok.json()["data"]
        assert data["valid"] is True
        assert data["discount_amount"] == 2.55
