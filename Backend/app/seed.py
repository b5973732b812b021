from datetime import timedelta
from decimal import Decimal

from sqlalchemy import select

from .core.config import get_settings
from .models import CouponType, Tenant, TenantPlan, TenantRole, TenantStatus, TenantUser, utc_now
from .services import catalog, coupons

DEMO_SLUG = "demo-store"
DEMO_OWNER = "demo-owner"
SEED_ACTOR = "seed"


async def seed_demo_data(session) -> Tenant:
    """Create a demo store with a small catalog and a welcome coupon. Safe to run repeatedly."""
    settings = get_settings()

    result = await session.execute(select(Tenant).where(Tenant.slug == DEMO_SLUG))
    tenant = result.scalar_one_or_none()
    if tenant:
        return tenant

    tenant = Tenant(
        slug=DEMO_SLUG,
        name="Demo Store",
        status=TenantStatus.ACTIVE,
        plan=TenantPlan.BASIC,
        currency=settings.default_currency,
        tax_rate=settings.default_tax_rate,
        shipping_flat_rate=Decimal("1.500"),
    )
    session.add(tenant)
    await session.flush()
    session.add(TenantUser(tenant_id=tenant.id, user_id=DEMO_OWNER, role=TenantRole.OWNER.value))

    perfumes = await catalog.create_category(
        session, tenant, catalog.CategoryCreate(name="Perfumes"), SEED_ACTOR
    )
    gifts = await catalog.create_category(
        session, tenant, catalog.CategoryCreate(name="Gift Sets"), SEED_ACTOR
    )

    for data in (
        catalog.ProductCreate(
            name="Oud Royal 50ml",
            sku="OUD-50",
            price=Decimal("24.500"),
            compare_at_price=Decimal("29.000"),
            category_id=perfumes.id,
            stock_quantity=40,
            tags=["oud", "bestseller"],
        ),
        catalog.ProductCreate(
            name="Rose Musk 100ml",
            sku="ROSE-100",
            price=Decimal("18.750"),
            category_id=perfumes.id,
            stock_quantity=3,
            low_stock_threshold=5,
            tags=["rose"],
        ),
        catalog.ProductCreate(
            name="Eid Gift Box",
            sku="GIFT-EID",
            price=Decimal("35.000"),
            category_id=gifts.id,
            stock_quantity=12,
            tags=["gift"],
        ),
    ):
        await catalog.create_product(session, tenant, data, SEED_ACTOR)

    await coupons.create_coupon(
        session,
        tenant.id,
        coupons.CouponCreate(
            code="WELCOME10",
            name="Welcome 10%",
            type=CouponType.PERCENTAGE,
            value=Decimal("10"),
            maximum_discount_amount=Decimal("5"),
            valid_from=utc_now() - timedelta(days=1),
        ),
        created_by=SEED_ACTOR,
    )

    await session.commit()
    return tenant
