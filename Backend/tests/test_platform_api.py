"""
Platform administration API and custom domain resolution.
"""

import pytest
from sqlalchemy import select

from app.models import AuditLog, Domain, TenantPlan, TenantRole, TenantStatus, TenantUser


@pytest.fixture
async def operators(platform_user_factory):
    await platform_user_factory("root", "SUPER_ADMIN")
    await platform_user_factory("helpdesk", "SUPPORT")
    await platform_user_factory("finance", "BILLING")


class TestTenants:
    @pytest.mark.asyncio
    async def test_create_tenant(self, client, operators, auth_headers, async_session):
        response = await client.post(
            "/api/platform/tenants",
            json={"slug": "New-Shop", "name": " New Shop ", "owner_user_id": "merchant_1", "plan": "basic"},
            headers=auth_headers("root"),
        )
        assert response.status_code == 201, response.text
        data = response.json()["data"]
        assert data["slug"] == "new-shop"
        assert data["name"] == "New Shop"
        assert data["status"] == "ACTIVE"
        assert data["plan"] == "basic"
        assert data["currency"] == "KWD"
        assert data["member_count"] == 1

        member = (
            await async_session.execute(select(TenantUser).where(TenantUser.tenant_id == data["id"]))
        ).scalar_one()
        assert (member.user_id, member.role) == ("merchant_1", TenantRole.OWNER.value)

        audit = (await async_session.execute(select(AuditLog).where(AuditLog.action == "tenant.created"))).scalar_one()
        assert audit.actor_user_id == "root"

    @pytest.mark.asyncio
    async def test_new_owner_can_use_admin_api(self, client, operators, auth_headers):
        await client.post(
            "/api/platform/tenants",
            json={"slug": "fresh-shop", "name": "Fresh", "owner_user_id": "merchant_2"},
            headers=auth_headers("root"),
        )
        response = await client.get("/api/admin/fresh-shop/products", headers=auth_headers("merchant_2"))
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_duplicate_slug(self, client, operators, tenant_factory, auth_headers):
        await tenant_factory("taken-shop")
        response = await client.post(
            "/api/platform/tenants",
            json={"slug": "taken-shop", "name": "Again", "owner_user_id": "m"},
            headers=auth_headers("root"),
        )
        assert response.status_code == 409
        assert response.json()["code"] == "DUPLICATE_SLUG"

    @pytest.mark.parametrize("slug,code", [("admin", "RESERVED_SLUG"), ("x_y", "INVALID_SLUG")])
    @pytest.mark.asyncio
    async def test_rejected_slugs(self, client, operators, auth_headers, slug, code):
        response = await client.post(
            "/api/platform/tenants",
            json={"slug": slug, "name": "Nope", "owner_user_id": "m"},
            headers=auth_headers("root"),
        )
        assert response.status_code == 400
        assert response.json()["code"] == code

    @pytest.mark.asyncio
    async def test_billing_cannot_create(self, client, operators, auth_headers):
        response = await client.post(
            "/api/platform/tenants",
            json={"slug": "billing-shop", "name": "B", "owner_user_id": "m"},
            headers=auth_headers("finance"),
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_merchants_are_not_operators(self, client, tenant_factory, member_factory, auth_headers):
        tenant = await tenant_factory("merchant-shop")
        await member_factory(tenant, "owner_x", TenantRole.OWNER)
        response = await client.get("/api/platform/tenants", headers=auth_headers("owner_x"))
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_list_with_status_filter(self, client, operators, tenant_factory, member_factory, auth_headers):
        active = await tenant_factory("open-shop")
        await member_factory(active, "owner_a")
        await tenant_factory("shut-shop", status=TenantStatus.SUSPENDED)

        response = await client.get("/api/platform/tenants", params={"status": "SUSPENDED"}, headers=auth_headers("finance"))
        assert [t["slug"] for t in response.json()["data"]] == ["shut-shop"]

        response = await client.get("/api/platform/tenants", headers=auth_headers("helpdesk"))
        counts = {t["slug"]: t["member_count"] for t in response.json()["data"]}
        assert counts == {"open-shop": 1, "shut-shop": 0}

    @pytest.mark.asyncio
    async def test_suspend_hides_storefront(self, client, operators, tenant_factory, auth_headers):
        await tenant_factory("soon-closed")
        response = await client.patch(
            "/api/platform/tenants/soon-closed/status",
            json={"status": "SUSPENDED", "reason": "chargebacks"},
            headers=auth_headers("helpdesk"),
        )
        assert response.json()["data"]["status"] == "SUSPENDED"

        storefront = await client.get("/api/storefront/soon-closed/products")
        assert storefront.status_code == 404

    @pytest.mark.asyncio
    async def test_plan_upgrade_only(self, client, operators, tenant_factory, auth_headers):
        await tenant_factory("growing-shop", plan=TenantPlan.BASIC)
        up = await client.patch(
            "/api/platform/tenants/growing-shop/plan", json={"plan": "premium"}, headers=auth_headers("finance")
        )
        assert up.json()["data"]["plan"] == "premium"

        down = await client.patch(
            "/api/platform/tenants/growing-shop/plan", json={"plan": "free"}, headers=auth_headers("finance")
        )
        assert down.status_code == 403
        assert down.json()["code"] == "PLAN_DOWNGRADE_NOT_ALLOWED"

    @pytest.mark.asyncio
    async def test_support_cannot_change_plan(self, client, operators, tenant_factory, auth_headers):
        await tenant_factory("plan-shop")
        response = await client.patch(
            "/api/platform/tenants/plan-shop/plan", json={"plan": "premium"}, headers=auth_headers("helpdesk")
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_unknown_tenant(self, client, operators, auth_headers):
        response = await client.patch(
            "/api/platform/tenants/missing-shop/plan", json={"plan": "premium"}, headers=auth_headers("root")
        )
        assert response.status_code == 404
        assert response.json()["code"] == "TENANT_NOT_FOUND"


class TestDomains:
    async def add_domain(self, client, auth_headers, hostname="shop.example.com"):
        return await client.post(
            "/api/admin/dom-shop/domains", json={"hostname": hostname}, headers=auth_headers("dom_owner")
        )

    @pytest.fixture
    async def dom_shop(self, tenant_factory, member_factory):
        tenant = await tenant_factory("dom-shop", plan=TenantPlan.BASIC)
        await member_factory(tenant, "dom_owner", TenantRole.OWNER)
        return tenant

    @pytest.mark.asyncio
    async def test_verify_and_resolve(self, client, operators, dom_shop, auth_headers):
        added = await self.add_domain(client, auth_headers, "Shop.Example.com:443")
        assert added.status_code == 201
        domain = added.json()["data"]
        assert domain["hostname"] == "shop.example.com"

        unverified = await client.get("/api/domains/resolve", params={"host": "shop.example.com"})
        assert unverified.status_code == 404

        verified = await client.post(f"/api/platform/domains/{domain['id']}/verify", headers=auth_headers("helpdesk"))
        assert verified.json()["data"]["verified"] is True

        resolved = await client.get("/api/domains/resolve", params={"host": "SHOP.example.com:8080"})
        assert resolved.json()["data"] == {
            "tenant_id": dom_shop.id,
            "slug": "dom-shop",
            "name": "Dom Shop",
            "source": "domain",
        }

    @pytest.mark.asyncio
    async def test_resolve_from_host_header(self, client, operators, dom_shop, auth_headers, async_session):
        async_session.add(Domain(tenant_id=dom_shop.id, hostname="scents.example.net", verified=True))
        await async_session.flush()
        response = await client.get("/api/domains/resolve", headers={"Host": "scents.example.net"})
        assert response.json()["data"]["source"] == "header"

    @pytest.mark.asyncio
    async def test_plan_limit(self, client, dom_shop, auth_headers):
        assert (await self.add_domain(client, auth_headers, "one.example.com")).status_code == 201
        response = await self.add_domain(client, auth_headers, "two.example.com")
        assert response.status_code == 403
        assert response.json()["code"] == "PLAN_LIMIT_EXCEEDED"

    @pytest.mark.asyncio
    async def test_free_plan_has_no_domains(self, client, tenant_factory, member_factory, auth_headers):
        tenant = await tenant_factory("free-dom", plan=TenantPlan.FREE)
        await member_factory(tenant, "free_owner", TenantRole.OWNER)
        response = await client.post(
            "/api/admin/free-dom/domains", json={"hostname": "free.example.com"}, headers=auth_headers("free_owner")
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_hostname_taken_by_other_store(self, client, dom_shop, tenant_factory, async_session, auth_headers):
        other = await tenant_factory("dom-rival")
        async_session.add(Domain(tenant_id=other.id, hostname="shop.example.com", verified=True))
        await async_session.flush()
        response = await self.add_domain(client, auth_headers)
        assert response.status_code == 409

    @pytest.mark.parametrize("hostname", ["localhost", "no spaces.com", "-bad.example.com"])
    @pytest.mark.asyncio
    async def test_invalid_hostname(self, client, dom_shop, auth_headers, hostname):
        response = await self.add_domain(client, auth_headers, hostname)
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_remove_domain(self, client, dom_shop, auth_headers):
        domain = (await self.add_domain(client, auth_headers)).json()["data"]
        response = await client.delete(f"/api/admin/dom-shop/domains/{domain['id']}", headers=auth_headers("dom_owner"))
        assert response.json()["data"] == {"id": domain["id"], "deleted": True}

        listing = await client.get("/api/admin/dom-shop/domains", headers=auth_headers("dom_owner"))
        assert listing.json()["data"] == []

    @pytest.mark.asyncio
    async def test_verify_requires_operator(self, client, dom_shop, auth_headers):
        domain = (await self.add_domain(client, auth_headers)).json()["data"]
        response = await client.post(f"/api/platform/domains/{domain['id']}/verify", headers=auth_headers("dom_owner"))
        assert response.status_code == 403
