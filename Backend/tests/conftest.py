"""
Pytest configuration and fixtures for async database testing.

Tests run against an in-memory SQLite database (aiosqlite). The schema is
created per test, so every test starts from an empty store.
"""
import os

# Settings are read once at import time; set them before any app import.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["JWT_SECRET"] = "test-secret-0123456789-abcdefghijklmnop"
os.environ["JWT_ISSUER"] = ""
os.environ["JWT_JWKS_URL"] = ""
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["DISABLE_AUTH_CHECKS"] = "false"
os.environ["CREATE_TABLES_ON_STARTUP"] = "false"
os.environ["SEED_DEMO_DATA"] = "false"

from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app import models  # noqa: F401  registers tables on Base.metadata
from app.core.db import Base
from app.jwt_auth import create_access_token
from app.models import (
    PlatformUser,
    Product,
    ProductStatus,
    Tenant,
    TenantPlan,
    TenantRole,
    TenantStatus,
    TenantUser,
)


@pytest.fixture(scope="function")
async def async_engine():
    """
    One in-memory database per test.

    StaticPool keeps a single connection so every session sees the same schema.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture(scope="function")
async def async_session(async_engine):
    session_maker = async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_maker() as session:
        yield session


@pytest.fixture(scope="function")
async def client(async_session):
    """
    FastAPI AsyncClient sharing the test session with the app.

    Routes commit on this session; nothing is rolled back because the whole
    database is thrown away with the engine.
    """
    from app.core.db import get_session
    from app.main import app

    async def override_get_session():
        yield async_session

    app.dependency_overrides[get_session] = override_get_session

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ────────────────────────────────────────────────────────────────
# Data factories
# ────────────────────────────────────────────────────────────────

@pytest.fixture
def tenant_factory(async_session):
    async def create(
        slug: str,
        plan: TenantPlan = TenantPlan.BASIC,
        status: TenantStatus = TenantStatus.ACTIVE,
        **kwargs,
    ) -> Tenant:
        data = {
            "name": slug.replace("-", " ").title(),
            "currency": "KWD",
            "tax_rate": Decimal("0"),
            "shipping_flat_rate": Decimal("0"),
        }
        data.update(kwargs)
        tenant = Tenant(slug=slug, plan=plan, status=status, **data)
        async_session.add(tenant)
        await async_session.flush()
        return tenant

    return create


@pytest.fixture
def member_factory(async_session):
    async def create(tenant: Tenant, user_id: str, role: TenantRole = TenantRole.OWNER) -> TenantUser:
        member = TenantUser(tenant_id=tenant.id, user_id=user_id, role=role.value)
        async_session.add(member)
        await async_session.flush()
        return member

    return create


@pytest.fixture
def platform_user_factory(async_session):
    async def create(user_id: str, role: str = "SUPER_ADMIN") -> PlatformUser:
        user = PlatformUser(user_id=user_id, role=role)
        async_session.add(user)
        await async_session.flush()
        return user

    return create


@pytest.fixture
def product_factory(async_session):
    async def create(tenant: Tenant, **kwargs) -> Product:
        name = kwargs.pop("name", "Oud Royal")
        data = {
            "slug": kwargs.pop("slug", name.lower().replace(" ", "-")),
            "price": Decimal("10.000"),
            "status": ProductStatus.ACTIVE,
            "track_inventory": True,
            "allow_backorder": False,
            "stock_quantity": 20,
            "tags": [],
        }
        data.update(kwargs)
        product = Product(tenant_id=tenant.id, name=name, **data)
        async_session.add(product)
        await async_session.flush()
        return product

    return create


@pytest.fixture
def auth_headers():
    def build(user_id: str) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user_id)}"}

    return build
