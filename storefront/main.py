"""FastAPI application entrypoint.

All routes prefixed /v1. The tenant is resolved from the Host header:
``<store>.<domain>`` addresses a store, the bare domain and ``www`` are the
main application.

The TenantConnectionRegistry, VerificationGateway (provider chosen once from
configured credentials) and SessionTokenIssuer are created once during the
lifespan and stored on app.state for injection via Depends(). When
tenant_health_check_minutes is set, APScheduler periodically evicts tenant
connections that no longer answer a ping.
"""

from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import storefront.models  # noqa: F401  (registers every tenant table)
from storefront.api.v1.auth import router as auth_router
from storefront.api.v1.health import router as health_router
from storefront.api.v1.store import router as store_router
from storefront.core.config import settings
from storefront.core.exceptions import ConnectivityError, StorefrontError
from storefront.db.postgres import close_postgres
from storefront.db.redis import close_redis, get_redis
from storefront.db.tenant import TenantConnectionRegistry, make_engine_opener
from storefront.services.session_tokens import SessionTokenIssuer
from storefront.services.verification.gateway import build_verification_gateway


def _configure_logging() -> None:
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


_configure_logging()

logger = structlog.get_logger(__name__)


def build_registry() -> TenantConnectionRegistry:
    return TenantConnectionRegistry(
        url_template=settings.tenant_database_url_template,
        opener=make_engine_opener(
            create_schema=settings.tenant_auto_create_schema,
            connect_timeout=settings.tenant_connect_timeout_seconds,
            pool_size=settings.tenant_pool_size,
        ),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup and shutdown lifecycle."""
    # --- Startup ---
    logger.info("app_startup", env=settings.app_env)

    registry = build_registry()
    app.state.tenant_registry = registry
    app.state.verification_gateway = build_verification_gateway(
        settings, redis=await get_redis()
    )
    app.state.token_issuer = SessionTokenIssuer.from_settings(settings)

    scheduler = None
    if settings.tenant_health_check_minutes > 0:
        scheduler = AsyncIOScheduler()
        scheduler.add_job(
            registry.evict_unhealthy,
            "interval",
            minutes=settings.tenant_health_check_minutes,
            id="tenant_connection_health_check",
        )
        scheduler.start()
    app.state.scheduler = scheduler

    logger.info(
        "app_providers_ready",
        verification_provider=app.state.verification_gateway.provider_name,
    )
    yield

    # --- Shutdown ---
    logger.info("app_shutdown")

    if scheduler is not None:
        scheduler.shutdown(wait=False)

    await registry.close_all()
    await close_redis()
    await close_postgres()


app = FastAPI(
    title="Storefront — Multi-tenant Customer API",
    description="Subdomain-routed storefront backend with per-store customer identity.",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if not settings.is_production else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError) -> JSONResponse:
    """Structured error response for all storefront exceptions."""
    if isinstance(exc, ConnectivityError):
        # Full detail is logged where the error was raised.
        logger.warning("request_service_unavailable", path=request.url.path)
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
    )


app.include_router(health_router, prefix="/v1")
app.include_router(store_router, prefix="/v1")
app.include_router(auth_router, prefix="/v1")
