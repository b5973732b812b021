"""
Currency, slug, plan-limit and tenant-context helpers.
"""

from decimal import Decimal

import pytest

from app.core.responses import ApiError
from app.currency import (
    currency_decimals,
    format_currency,
    from_minor_units,
    round_money,
    to_minor_units,
)
from app.limits import check_limit, enforce_limit, get_plan_limits
from app.models import Category, TenantPlan, TenantStatus
from app.slug import ensure_unique_slug, slugify
from app.tenancy import TenantContext, TenantResolutionSource, extract_slug_from_path, normalize_host


class TestCurrency:
    """Decimal places per currency and half-up rounding."""

    @pytest.mark.parametrize("code,places", [("KWD", 3), ("bhd", 3), ("OMR", 3), ("USD", 2), ("AED", 2), ("XYZ", 2)])
    def test_decimals(self, code, places):
        assert currency_decimals(code) == places

    def test_round_money(self):
        assert round_money(Decimal("12.3455"), "KWD") == Decimal("12.346")
        assert round_money(Decimal("12.345"), "USD") == Decimal("12.35")

    def test_round_float_input(self):
        """Floats are converted through str to avoid binary noise."""
        assert round_money(2.675, "USD") == Decimal("2.68")

    def test_minor_units(self):
        assert to_minor_units(Decimal("12.346"), "KWD") == 12346
        assert to_minor_units(Decimal("9.99"), "USD") == 999
        assert from_minor_units(12346, "KWD") == Decimal("12.346")
        assert from_minor_units(999, "USD") == Decimal("9.99")

    def test_format(self):
        assert format_currency(Decimal("12.5"), "KWD") == "12.500 KWD"
        assert format_currency(3, "usd") == "3.00 USD"


class TestSlugify:
    """URL slugs for products, categories and stores."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("Oud Royal 50ml", "oud-royal-50ml"),
            ("Café Beauté", "cafe-beaute"),
            ("Hair & Nails!!!", "hair-nails"),
            ("  --Gift Box--  ", "gift-box"),
            ("عطور", "atwr"),
        ],
    )
    def test_slugify(self, text, expected):
        assert slugify(text) == expected

    def test_fallback(self):
        assert slugify("") == "item"
        assert slugify("!!!") == "item"

    def test_max_length(self):
        slug = slugify("word " * 60)
        assert len(slug) <= 100
        assert not slug.endswith("-")

    @pytest.mark.asyncio
    async def test_ensure_unique_slug(self, async_session, tenant_factory):
        tenant = await tenant_factory("slug-shop")
        other = await tenant_factory("other-shop")
        async_session.add_all([
            Category(tenant_id=tenant.id, name="Perfumes", slug="perfumes"),
            Category(tenant_id=tenant.id, name="Perfumes", slug="perfumes-2"),
        ])
        await async_session.flush()

        assert await ensure_unique_slug(async_session, Category, "perfumes", tenant.id) == "perfumes-3"
        assert await ensure_unique_slug(async_session, Category, "perfumes", other.id) == "perfumes"


class TestPlanLimits:
    """Resource limits per plan."""

    def test_free_plan(self):
        limits = get_plan_limits(TenantPlan.FREE)
        assert (limits.max_products, limits.max_categories, limits.max_domains, limits.max_storage_mb) == (10, 5, 0, 100)

    def test_unknown_plan_falls_back_to_free(self):
        assert get_plan_limits("gold") == get_plan_limits(TenantPlan.FREE)

    def test_check_limit(self):
        check = check_limit(TenantPlan.BASIC, "categories", 24)
        assert check.allowed
        assert check.limit == 25
        assert check.remaining == 1
        assert not check_limit(TenantPlan.BASIC, "categories", 25).allowed

    def test_unknown_resource(self):
        with pytest.raises(ValueError):
            check_limit(TenantPlan.FREE, "widgets", 0)

    def test_enforce_limit(self):
        with pytest.raises(ApiError) as exc_info:
            enforce_limit(TenantPlan.FREE, "domains", 0)
        assert exc_info.value.status_code == 403
        assert exc_info.value.code == "PLAN_LIMIT_EXCEEDED"
        assert exc_info.value.details["limit"] == 0


class TestTenantContext:
    """TenantContext validation and path parsing."""

    def test_requires_positive_id(self):
        with pytest.raises(ValueError, match="tenant_id must be positive"):
            TenantContext(tenant_id=0, slug="x", name="X")

    def test_is_frozen(self):
        ctx = TenantContext(tenant_id=1, slug="acme", name="Acme")
        with pytest.raises(Exception):  # FrozenInstanceError
            ctx.tenant_id = 2

    def test_defaults(self):
        ctx = TenantContext(tenant_id=1, slug="acme", name="Acme")
        assert ctx.is_active
        assert ctx.currency == "KWD"
        assert ctx.source == TenantResolutionSource.URL_SLUG

    def test_suspended(self):
        ctx = TenantContext(tenant_id=1, slug="acme", name="Acme", status=TenantStatus.SUSPENDED)
        assert not ctx.is_active

    @pytest.mark.parametrize(
        "path,slug",
        [
            ("/api/storefront/acme-store/cart", "acme-store"),
            ("/api/admin/acme-store/orders/4", "acme-store"),
            ("/api/admin/acme-store", "acme-store"),
            ("/api/platform/tenants", None),
            ("/health", None),
            ("", None),
        ],
    )
    def test_extract_slug(self, path, slug):
        assert extract_slug_from_path(path) == slug

    def test_normalize_host(self):
        assert normalize_host("Shop.Example.com:8443") == "shop.example.com"
        assert normalize_host("") == ""
