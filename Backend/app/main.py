import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config import get_settings
from .core.db import AsyncSessionLocal, Base, engine
from .core.logging_config import configure_logging
from .core.responses import register_exception_handlers
from .rate_limiter import RateLimitHeadersMiddleware
from .request_logging import RequestLoggingMiddleware
from .routes_admin import router as admin_router
from .routes_platform import domains_router, router as platform_router
from .routes_storefront import router as storefront_router
from .seed import seed_demo_data


settings = get_settings()
configure_logging(settings.log_level)

app = FastAPI(title="Souq Commerce Backend")
logger = logging.getLogger(__name__)

app.add_middleware(RateLimitHeadersMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(storefront_router)
app.include_router(admin_router)
app.include_router(platform_router)
app.include_router(domains_router)


@app.on_event("startup")
async def on_startup():
    if settings.create_tables_on_startup:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables ensured")

    if settings.seed_demo_data:
        async with AsyncSessionLocal() as session:
            tenant = await seed_demo_data(session)
        logger.info(f"Demo store available at /api/storefront/{tenant.slug}")


@app.get("/health")
async def healthcheck():
    return {"ok": True}
