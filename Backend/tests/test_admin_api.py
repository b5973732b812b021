"""
Merchant admin API: authentication, RBAC and tenant isolation.

Every request goes through the real FastAPI app with the test database
session injected (see conftest.py).
"""

from decimal import Decimal

import pytest

from app.jwt_auth import create_access_token
from app.models import TenantPlan, TenantRole


@pytest.fixture
async def shop(tenant_factory, member_factory):
    tenant = await tenant_factory("acme-store")
    await member_factory(tenant, "owner_1", TenantRole.OWNER)
    await member_factory(tenant, "admin_1", TenantRole.ADMIN)
    await member_factory(tenant, "staff_1", TenantRole.STAFF)
    return tenant


@pytest.fixture
async def rival(tenant_factory, member_factory):
    tenant = await tenant_factory("rival-store")
    await member_factory(tenant, "rival_owner", TenantRole.OWNER)
    return tenant


PRODUCT = {"name": "Amber Oud", "sku": "AMB-1", "price": "12.500", "stock_quantity": 8}


class TestAuthentication:
    @pytest.mark.asyncio
    async def test_missing_token(self, client, shop):
        response = await client.get("/api/admin/acme-store/products")
        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"
        assert response.json() == {
            "ok": False,
            "error": "Authentication required. Please sign in.",
            "code": "AUTHENTICATION_REQUIRED",
        }

    @pytest.mark.asyncio
    async def test_bad_token(self, client, shop):
        response = await client.get(
            "/api/admin/acme-store/products", headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert response.status_code == 401
        assert response.json()["code"] == "INVALID_TOKEN"

    @pytest.mark.asyncio
    async def test_expired_token(self, client, shop):
        token = create_access_token("owner_1", expires_in=-60)
        response = await client.get(
            "/api/admin/acme-store/products", headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 401
        assert response.json()["error"] == "Token has expired"

    @pytest.mark.asyncio
    async def test_dev_header_ignored_when_checks_enabled(self, client, shop):
        response = await client.get("/api/admin/acme-store/products", headers={"X-User-Id": "owner_1"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_unknown_store(self, client, shop, auth_headers):
        response = await client.get("/api/admin/no-such-store/products", headers=auth_headers("owner_1"))
        assert response.status_code == 404
        assert response.json()["code"] == "TENANT_NOT_FOUND"


class TestRoles:
    @pytest.mark.asyncio
    async def test_staff_can_read(self, client, shop, auth_headers):
        response = await client.get("/api/admin/acme-store/products", headers=auth_headers("staff_1"))
        assert response.status_code == 200
        assert response.json()["ok"] is True

    @pytest.mark.asyncio
    async def test_staff_cannot_create_products(self, client, shop, auth_headers):
        response = await client.post("/api/admin/acme-store/products", json=PRODUCT, headers=auth_headers("staff_1"))
        assert response.status_code == 403
        assert response.json()["code"] == "AUTHORIZATION_DENIED"

    @pytest.mark.asyncio
    async def test_admin_creates_product(self, client, shop, auth_headers):
        response = await client.post("/api/admin/acme-store/products", json=PRODUCT, headers=auth_headers("admin_1"))
        assert response.status_code == 201
        data = response.json()["data"]
        assert data["slug"] == "amber-oud"
        assert data["price"] == 12.5
        assert data["stock_quantity"] == 8

        movements = await client.get("/api/admin/acme-store/inventory/movements", headers=auth_headers("staff_1"))
        [movement] = movements.json()["data"]
        assert movement["type"] == "in"
        assert movement["reason"] == "Initial stock"
        assert movement["created_by"] == "admin_1"

    @pytest.mark.asyncio
    async def test_non_member_is_denied(self, client, shop, rival, auth_headers):
        response = await client.get("/api/admin/acme-store/products", headers=auth_headers("rival_owner"))
        assert response.status_code == 403
        assert response.json()["code"] == "NOT_TENANT_MEMBER"

    @pytest.mark.asyncio
    async def test_super_admin_reaches_every_store(self, client, shop, platform_user_factory, auth_headers):
        await platform_user_factory("root", "SUPER_ADMIN")
        response = await client.post("/api/admin/acme-store/products", json=PRODUCT, headers=auth_headers("root"))
        assert response.status_code == 201

    @pytest.mark.asyncio
    async def test_support_role_is_not_a_member(self, client, shop, platform_user_factory, auth_headers):
        await platform_user_factory("helpdesk", "SUPPORT")
        response = await client.get("/api/admin/acme-store/products", headers=auth_headers("helpdesk"))
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_only_owner_manages_domains(self, client, shop, auth_headers):
        body = {"hostname": "shop.acme.com"}
        response = await client.post("/api/admin/acme-store/domains", json=body, headers=auth_headers("admin_1"))
        assert response.status_code == 403

        response = await client.post("/api/admin/acme-store/domains", json=body, headers=auth_headers("owner_1"))
        assert response.status_code == 201
        assert response.json()["data"]["verified"] is False


class TestTenantIsolation:
    @pytest.mark.asyncio
    async def test_cannot_read_other_store_product(self, client, shop, rival, product_factory, auth_headers):
        foreign = await product_factory(rival, name="Rival Musk")
        response = await client.get(f"/api/admin/acme-store/products/{foreign.id}", headers=auth_headers("owner_1"))
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_cannot_update_other_store_product(self, client, shop, rival, product_factory, auth_headers):
        foreign = await product_factory(rival, name="Rival Musk")
        response = await client.patch(
            f"/api/admin/acme-store/products/{foreign.id}", json={"price": "1.000"}, headers=auth_headers("owner_1")
        )
        assert response.status_code == 404
        assert foreign.price == Decimal("10.000")

    @pytest.mark.asyncio
    async def test_listing_only_shows_own_products(self, client, shop, rival, product_factory, auth_headers):
        await product_factory(shop, name="Mine")
        await product_factory(rival, name="Theirs")
        response = await client.get("/api/admin/acme-store/products", headers=auth_headers("owner_1"))
        assert [p["name"] for p in response.json()["data"]["products"]] == ["Mine"]

    @pytest.mark.asyncio
    async def test_stock_movement_on_foreign_product(self, client, shop, rival, product_factory, auth_headers):
        foreign = await product_factory(rival, name="Rival Musk", stock_quantity=5)
        response = await client.post(
            "/api/admin/acme-store/inventory/movements",
            json={"product_id": foreign.id, "type": "out", "quantity": 5, "reason": "theft"},
            headers=auth_headers("staff_1"),
        )
        assert response.status_code == 404
        assert foreign.stock_quantity == 5

    @pytest.mark.asyncio
    async def test_same_sku_allowed_in_other_store(self, client, shop, rival, auth_headers):
        first = await client.post("/api/admin/acme-store/products", json=PRODUCT, headers=auth_headers("owner_1"))
        second = await client.post("/api/admin/rival-store/products", json=PRODUCT, headers=auth_headers("rival_owner"))
        assert (first.status_code, second.status_code) == (201, 201)


class TestCatalogRules:
    @pytest.mark.asyncio
    async def test_duplicate_sku(self, client, shop, auth_headers):
        await client.post("/api/admin/acme-store/products", json=PRODUCT, headers=auth_headers("owner_1"))
        response = await client.post(
            "/api/admin/acme-store/products", json={**PRODUCT, "name": "Other"}, headers=auth_headers("owner_1")
        )
        assert response.status_code == 409
        assert response.json()["code"] == "DUPLICATE_SKU"
        assert response.json()["details"] == {"sku": "AMB-1"}

    @pytest.mark.asyncio
    async def test_free_plan_product_limit(self, client, tenant_factory, member_factory, product_factory, auth_headers):
        tenant = await tenant_factory("tiny-store", plan=TenantPlan.FREE)
        await member_factory(tenant, "tiny_owner", TenantRole.OWNER)
        for i in range(10):
            await product_factory(tenant, name=f"Item {i}")

        response = await client.post("/api/admin/tiny-store/products", json=PRODUCT, headers=auth_headers("tiny_owner"))
        assert response.status_code == 403
        assert response.json()["code"] == "PRODUCT_LIMIT_EXCEEDED"

    @pytest.mark.asyncio
    async def test_compare_price(self, client, shop, auth_headers):
        response = await client.post(
            "/api/admin/acme-store/products",
            json={**PRODUCT, "compare_at_price": "10.000"},
            headers=auth_headers("owner_1"),
        )
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_COMPARE_PRICE"

    @pytest.mark.asyncio
    async def test_delete_archives(self, client, shop, product_factory, auth_headers):
        product = await product_factory(shop)
        response = await client.delete(f"/api/admin/acme-store/products/{product.id}", headers=auth_headers("owner_1"))
        assert response.json()["data"] == {"id": product.id, "status": "archived"}

    @pytest.mark.asyncio
    async def test_request_validation_envelope(self, client, shop, auth_headers):
        response = await client.post(
            "/api/admin/acme-store/products", json={"name": "No price"}, headers=auth_headers("owner_1")
        )
        assert response.status_code == 422
        payload = response.json()
        assert payload["ok"] is False
        assert payload["code"] == "VALIDATION_ERROR"
        assert payload["details"]["errors"]


class TestOrdersApi:
    ADDRESS = {
        "first_name": "Fahad",
        "last_name": "Al-Ali",
        "address1": "Street 5",
        "city": "Kuwait City",
        "state": "Capital",
        "postal_code": "13001",
        "country": "KW",
    }

    async def create_order(self, client, product_id, auth_headers, quantity=2):
        response = await client.post(
            "/api/admin/acme-store/orders",
            json={
                "customer": {"email": "fahad@example.com"},
                "items": [{"product_id": product_id, "quantity": quantity}],
                "shipping_address": self.ADDRESS,
            },
            headers=auth_headers("admin_1"),
        )
        assert response.status_code == 201, response.text
        return response.json()["data"]

    @pytest.mark.asyncio
    async def test_lifecycle_and_restock(self, client, shop, product_factory, auth_headers):
        product = await product_factory(shop, stock_quantity=10)
        order = await self.create_order(client, product.id, auth_headers, quantity=3)
        assert order["status"] == "pending"
        assert product.stock_quantity == 7

        response = await client.post(
            f"/api/admin/acme-store/orders/{order['id']}/status",
            json={"status": "paid"},
            headers=auth_headers("staff_1"),
        )
        assert response.json()["data"]["status"] == "paid"

        response = await client.post(
            f"/api/admin/acme-store/orders/{order['id']}/status",
            json={"status": "cancelled"},
            headers=auth_headers("staff_1"),
        )
        assert response.json()["data"]["status"] == "cancelled"
        assert product.stock_quantity == 10

    @pytest.mark.asyncio
    async def test_invalid_transition(self, client, shop, product_factory, auth_headers):
        product = await product_factory(shop)
        order = await self.create_order(client, product.id, auth_headers)
        response = await client.post(
            f"/api/admin/acme-store/orders/{order['id']}/status",
            json={"status": "delivered"},
            headers=auth_headers("staff_1"),
        )
        assert response.status_code == 422
        body = response.json()
        assert body["code"] == "INVALID_STATUS_TRANSITION"
        assert body["details"]["allowed_transitions"] == ["paid", "cancelled"]

    @pytest.mark.asyncio
    async def test_order_listing_filters(self, client, shop, product_factory, auth_headers):
        product = await product_factory(shop)
        order = await self.create_order(client, product.id, auth_headers)
        response = await client.get(
            "/api/admin/acme-store/orders", params={"status": "pending"}, headers=auth_headers("staff_1")
        )
        data = response.json()["data"]
        assert [o["id"] for o in data["orders"]] == [order["id"]]
        assert data["pagination"]["total"] == 1

    @pytest.mark.asyncio
    async def test_dashboard_stats(self, client, shop, product_factory, auth_headers):
        product = await product_factory(shop, price=Decimal("5.000"), stock_quantity=3)
        await self.create_order(client, product.id, auth_headers, quantity=1)
        response = await client.get("/api/admin/acme-store/dashboard/stats", headers=auth_headers("staff_1"))
        stats = response.json()["data"]
        assert stats["total_orders"] == 1
        assert stats["pending_orders"] == 1
        assert stats["total_customers"] == 1
        assert stats["low_stock_count"] == 1
        assert stats["currency"] == "KWD"

    @pytest.mark.asyncio
    async def test_amounts_cannot_be_cleared(self, client, shop, product_factory, auth_headers):
        product = await product_factory(shop)
        order = await self.create_order(client, product.id, auth_headers)
        response = await client.patch(
            f"/api/admin/acme-store/orders/{order['id']}",
            json={"tax_amount": None},
            headers=auth_headers("admin_1"),
        )
        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"

        response = await client.get(f"/api/admin/acme-store/orders/{order['id']}", headers=auth_headers("staff_1"))
        assert response.json()["data"]["tax_amount"] == 0


class TestNullUpdates:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("field", ["name", "price", "status", "stock_quantity", "tags"])
    async def test_product_fields(self, client, shop, product_factory, auth_headers, field):
        product = await product_factory(shop)
        response = await client.patch(
            f"/api/admin/acme-store/products/{product.id}", json={field: None}, headers=auth_headers("owner_1")
        )
        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_optional_product_field_can_be_cleared(self, client, shop, product_factory, auth_headers):
        product = await product_factory(shop, description="Smoky")
        response = await client.patch(
            f"/api/admin/acme-store/products/{product.id}", json={"description": None}, headers=auth_headers("owner_1")
        )
        assert response.status_code == 200
        assert response.json()["data"]["description"] is None

    @pytest.mark.asyncio
    async def test_category_name(self, client, shop, auth_headers):
        created = await client.post("/api/admin/acme-store/categories", json={"name": "Oud"}, headers=auth_headers("owner_1"))
        category_id = created.json()["data"]["id"]
        response = await client.patch(
            f"/api/admin/acme-store/categories/{category_id}", json={"name": None}, headers=auth_headers("owner_1")
        )
        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"


class TestCategoriesApi:
    async def create(self, client, auth_headers, user="owner_1", store="acme-store", **body):
        return await client.post(f"/api/admin/{store}/categories", json=body, headers=auth_headers(user))

    @pytest.mark.asyncio
    async def test_create_and_list(self, client, shop, product_factory, auth_headers):
        response = await self.create(client, auth_headers, name="Men's Oud")
        assert response.status_code == 201
        category = response.json()["data"]
        assert category["slug"] == "men-s-oud"
        assert category["parent_id"] is None

        await product_factory(shop, category_id=category["id"])
        listing = await client.get("/api/admin/acme-store/categories", headers=auth_headers("staff_1"))
        [row] = listing.json()["data"]
        assert row["id"] == category["id"]
        assert row["product_count"] == 1

    @pytest.mark.asyncio
    async def test_staff_cannot_create(self, client, shop, auth_headers):
        response = await self.create(client, auth_headers, user="staff_1", name="Oud")
        assert response.status_code == 403
        assert response.json()["code"] == "AUTHORIZATION_DENIED"

    @pytest.mark.asyncio
    async def test_duplicate_slug(self, client, shop, auth_headers):
        await self.create(client, auth_headers, name="Oud", slug="oud")
        response = await self.create(client, auth_headers, name="Oud Again", slug="oud")
        assert response.status_code == 409
        assert response.json()["code"] == "DUPLICATE_SLUG"
        assert response.json()["details"] == {"slug": "oud"}

    @pytest.mark.asyncio
    async def test_generated_slugs_stay_unique(self, client, shop, auth_headers):
        first = await self.create(client, auth_headers, name="Oud")
        second = await self.create(client, auth_headers, name="Oud")
        assert first.json()["data"]["slug"] == "oud"
        assert second.status_code == 201
        assert second.json()["data"]["slug"] != "oud"

    @pytest.mark.asyncio
    async def test_missing_parent(self, client, shop, auth_headers):
        response = await self.create(client, auth_headers, name="Orphan", parent_id=999)
        assert response.status_code == 400
        assert response.json()["code"] == "PARENT_CATEGORY_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_parent_from_other_store(self, client, shop, rival, auth_headers):
        foreign = await self.create(client, auth_headers, user="rival_owner", store="rival-store", name="Theirs")
        response = await self.create(client, auth_headers, name="Mine", parent_id=foreign.json()["data"]["id"])
        assert response.status_code == 400
        assert response.json()["code"] == "PARENT_CATEGORY_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_circular_reference(self, client, shop, auth_headers):
        parent = (await self.create(client, auth_headers, name="Perfume")).json()["data"]
        child = (await self.create(client, auth_headers, name="Oud", parent_id=parent["id"])).json()["data"]

        response = await client.patch(
            f"/api/admin/acme-store/categories/{parent['id']}",
            json={"parent_id": child["id"]},
            headers=auth_headers("owner_1"),
        )
        assert response.status_code == 400
        assert response.json()["code"] == "CIRCULAR_REFERENCE"

        response = await client.patch(
            f"/api/admin/acme-store/categories/{parent['id']}",
            json={"parent_id": parent["id"]},
            headers=auth_headers("owner_1"),
        )
        assert response.json()["code"] == "CIRCULAR_REFERENCE"

    @pytest.mark.asyncio
    async def test_delete_blocked_by_children(self, client, shop, auth_headers):
        parent = (await self.create(client, auth_headers, name="Perfume")).json()["data"]
        await self.create(client, auth_headers, name="Oud", parent_id=parent["id"])
        response = await client.delete(f"/api/admin/acme-store/categories/{parent['id']}", headers=auth_headers("owner_1"))
        assert response.status_code == 409
        assert response.json()["code"] == "HAS_CHILD_CATEGORIES"
        assert response.json()["details"] == {"child_count": 1}

    @pytest.mark.asyncio
    async def test_delete_blocked_by_products(self, client, shop, product_factory, auth_headers):
        category = (await self.create(client, auth_headers, name="Oud")).json()["data"]
        await product_factory(shop, category_id=category["id"])
        response = await client.delete(f"/api/admin/acme-store/categories/{category['id']}", headers=auth_headers("owner_1"))
        assert response.status_code == 409
        assert response.json()["code"] == "HAS_PRODUCTS"

    @pytest.mark.asyncio
    async def test_delete(self, client, shop, auth_headers):
        category = (await self.create(client, auth_headers, name="Oud")).json()["data"]
        response = await client.delete(f"/api/admin/acme-store/categories/{category['id']}", headers=auth_headers("admin_1"))
        assert response.json()["data"] == {"id": category["id"], "deleted": True}

        listing = await client.get("/api/admin/acme-store/categories", headers=auth_headers("staff_1"))
        assert listing.json()["data"] == []

    @pytest.mark.asyncio
    async def test_free_plan_category_limit(self, client, tenant_factory, member_factory, auth_headers):
        tenant = await tenant_factory("tiny-store", plan=TenantPlan.FREE)
        await member_factory(tenant, "tiny_owner", TenantRole.OWNER)
        for i in range(5):
            response = await self.create(client, auth_headers, user="tiny_owner", store="tiny-store", name=f"Shelf {i}")
            assert response.status_code == 201

        response = await self.create(client, auth_headers, user="tiny_owner", store="tiny-store", name="One Too Many")
        assert response.status_code == 403
        body = response.json()
        assert body["code"] == "PLAN_LIMIT_EXCEEDED"
        assert body["details"] == {"resource": "categories", "current": 5, "limit": 5}


class TestCustomersApi:
    CUSTOMER = {"email": "Layla@Example.com", "first_name": "Layla", "last_name": "Hassan", "phone": "+96550001111"}

    async def create(self, client, auth_headers, user="admin_1", **overrides):
        return await client.post(
            "/api/admin/acme-store/customers", json={**self.CUSTOMER, **overrides}, headers=auth_headers(user)
        )

    async def place_order(self, client, product_id, auth_headers, email):
        response = await client.post(
            "/api/admin/acme-store/orders",
            json={
                "customer": {"email": email},
                "items": [{"product_id": product_id, "quantity": 2}],
                "shipping_address": TestOrdersApi.ADDRESS,
            },
            headers=auth_headers("admin_1"),
        )
        assert response.status_code == 201, response.text
        return response.json()["data"]

    @pytest.mark.asyncio
    async def test_create_and_get(self, client, shop, auth_headers):
        response = await self.create(client, auth_headers)
        assert response.status_code == 201
        customer = response.json()["data"]
        assert customer["email"] == "layla@example.com"
        assert customer["order_count"] == 0
        assert customer["total_spent"] == 0

        response = await client.get(f"/api/admin/acme-store/customers/{customer['id']}", headers=auth_headers("staff_1"))
        assert response.status_code == 200
        assert response.json()["data"]["last_name"] == "Hassan"

    @pytest.mark.asyncio
    async def test_duplicate_email_ignores_case(self, client, shop, auth_headers):
        await self.create(client, auth_headers)
        response = await self.create(client, auth_headers, email="  LAYLA@example.COM ")
        assert response.status_code == 409
        assert response.json()["code"] == "DUPLICATE_EMAIL"
        assert response.json()["details"] == {"email": "layla@example.com"}

    @pytest.mark.asyncio
    async def test_invalid_email(self, client, shop, auth_headers):
        response = await self.create(client, auth_headers, email="not-an-email")
        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_staff_reads_but_cannot_write(self, client, shop, auth_headers):
        response = await self.create(client, auth_headers, user="staff_1")
        assert response.status_code == 403
        assert response.json()["code"] == "AUTHORIZATION_DENIED"

        response = await client.get("/api/admin/acme-store/customers", headers=auth_headers("staff_1"))
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_search_and_pagination(self, client, shop, auth_headers):
        await self.create(client, auth_headers)
        await self.create(client, auth_headers, email="omar@example.com", first_name="Omar", last_name="Saleh")
        await self.create(client, auth_headers, email="noura@example.com", first_name="Noura", last_name="Saleh")

        response = await client.get(
            "/api/admin/acme-store/customers", params={"search": "hass"}, headers=auth_headers("staff_1")
        )
        assert [c["email"] for c in response.json()["data"]["customers"]] == ["layla@example.com"]

        response = await client.get(
            "/api/admin/acme-store/customers", params={"search": "saleh", "limit": 1}, headers=auth_headers("staff_1")
        )
        data = response.json()["data"]
        assert [c["email"] for c in data["customers"]] == ["noura@example.com"]
        assert data["pagination"] == {
            "page": 1,
            "limit": 1,
            "total": 2,
            "total_pages": 2,
            "has_next": True,
            "has_prev": False,
        }

        response = await client.get(
            "/api/admin/acme-store/customers",
            params={"search": "saleh", "limit": 1, "page": 2},
            headers=auth_headers("staff_1"),
        )
        assert [c["email"] for c in response.json()["data"]["customers"]] == ["omar@example.com"]

    @pytest.mark.asyncio
    async def test_order_stats(self, client, shop, product_factory, auth_headers):
        product = await product_factory(shop, price=Decimal("10.000"))
        await self.place_order(client, product.id, auth_headers, "fahad@example.com")
        await self.place_order(client, product.id, auth_headers, "fahad@example.com")
        await self.create(client, auth_headers)

        response = await client.get("/api/admin/acme-store/customers", headers=auth_headers("staff_1"))
        rows = {c["email"]: c for c in response.json()["data"]["customers"]}
        assert rows["fahad@example.com"]["order_count"] == 2
        assert rows["fahad@example.com"]["total_spent"] == 40.0
        assert rows["layla@example.com"]["order_count"] == 0

        response = await client.get(
            f"/api/admin/acme-store/customers/{rows['fahad@example.com']['id']}", headers=auth_headers("staff_1")
        )
        assert response.json()["data"]["total_spent"] == 40.0

    @pytest.mark.asyncio
    async def test_update(self, client, shop, auth_headers):
        customer = (await self.create(client, auth_headers)).json()["data"]
        await self.create(client, auth_headers, email="omar@example.com")

        response = await client.patch(
            f"/api/admin/acme-store/customers/{customer['id']}",
            json={"phone": "+96599998888", "email": "LAYLA.H@example.com"},
            headers=auth_headers("owner_1"),
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["phone"] == "+96599998888"
        assert data["email"] == "layla.h@example.com"

        response = await client.patch(
            f"/api/admin/acme-store/customers/{customer['id']}",
            json={"email": "omar@example.com"},
            headers=auth_headers("owner_1"),
        )
        assert response.status_code == 409
        assert response.json()["code"] == "DUPLICATE_EMAIL"

        response = await client.patch(
            f"/api/admin/acme-store/customers/{customer['id']}", json={"email": None}, headers=auth_headers("owner_1")
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_delete(self, client, shop, auth_headers):
        customer = (await self.create(client, auth_headers)).json()["data"]
        response = await client.delete(f"/api/admin/acme-store/customers/{customer['id']}", headers=auth_headers("admin_1"))
        assert response.json()["data"] == {"id": customer["id"], "deleted": True}

        response = await client.get(f"/api/admin/acme-store/customers/{customer['id']}", headers=auth_headers("staff_1"))
        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_delete_blocked_by_orders(self, client, shop, product_factory, auth_headers):
        product = await product_factory(shop)
        order = await self.place_order(client, product.id, auth_headers, "fahad@example.com")
        response = await client.delete(
            f"/api/admin/acme-store/customers/{order['customer_id']}", headers=auth_headers("owner_1")
        )
        assert response.status_code == 409
        assert response.json()["code"] == "HAS_ORDERS"
        assert response.json()["details"] == {"order_count": 1}

    @pytest.mark.asyncio
    async def test_other_store_customers_are_hidden(self, client, shop, rival, auth_headers):
        response = await client.post(
            "/api/admin/rival-store/customers", json=self.CUSTOMER, headers=auth_headers("rival_owner")
        )
        foreign_id = response.json()["data"]["id"]

        response = await client.get(f"/api/admin/acme-store/customers/{foreign_id}", headers=auth_headers("owner_1"))
        assert response.status_code == 404
        response = await client.delete(f"/api/admin/acme-store/customers/{foreign_id}", headers=auth_headers("owner_1"))
        assert response.status_code == 404

        listing = await client.get("/api/admin/acme-store/customers", headers=auth_headers("owner_1"))
        assert listing.json()["data"]["customers"] == []

        # same email is free in another store
        response = await self.create(client, auth_headers)
        assert response.status_code == 201


class TestRequestId:
    @pytest.mark.asyncio
    async def test_incoming_id_is_echoed(self, client):
        response = await client.get("/health", headers={"X-Request-ID": "req-abc-123"})
        assert response.headers["X-Request-ID"] == "req-abc-123"

    @pytest.mark.asyncio
    async def test_id_generated_when_missing(self, client, shop):
        response = await client.get("/api/admin/acme-store/products")
        assert response.status_code == 401
        request_id = response.headers["X-Request-ID"]
        assert len(request_id) == 16
        int(request_id, 16)
