"""
FastAPI Application - Identity Core
Credential verification, token issuance and tenant resolution service
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from identity_core.api.middleware import (
    RateLimitMiddleware,
    RequestContextMiddleware,
    TenantResolutionMiddleware,
)
from identity_core.config import settings
from identity_core.core.container import build_services, sql_stores
from identity_core.core.database import AsyncSessionLocal, engine
from identity_core.core.logging import configure_logging, get_logger
from identity_core.core.redis import create_redis_client
from identity_core.services.token_issuer import TokenIssuer
from identity_core.tasks.queue import close_queue

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Lifespan context manager for startup and shutdown events"""
    # Startup
    configure_logging()
    # Fail fast: a service that cannot sign tokens must not accept traffic
    TokenIssuer.from_settings(settings)

    redis_client = None
    if getattr(app.state, "services", None) is None:
        if settings.STATE_BACKEND == "redis":
            redis_client = create_redis_client()
        app.state.services = build_services(
            settings, sql_stores(settings, AsyncSessionLocal, redis_client)
        )

    logger.info(
        "identity_core_starting",
        environment=settings.ENVIRONMENT,
        state_backend=settings.STATE_BACKEND,
        database=settings.DATABASE_URL.split("@")[-1],
    )
    yield
    # Shutdown
    await close_queue()
    if redis_client is not None:
        await redis_client.aclose()
    await engine.dispose()
    logger.info("identity_core_shutdown")


def create_app() -> FastAPI:
    application = FastAPI(
        title=settings.PROJECT_NAME,
        description="Identity and session service: login, tokens, password lifecycle, tenants",
        version=settings.VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Starlette runs the last added middleware first
    application.add_middleware(TenantResolutionMiddleware)
    application.add_middleware(RateLimitMiddleware)
    application.add_middleware(RequestContextMiddleware)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @application.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint - API information"""
        return {
            "name": settings.PROJECT_NAME,
            "version": settings.VERSION,
            "status": "running",
            "docs": "/docs",
        }

    @application.get("/health")
    async def health() -> dict[str, str]:
        """Health check endpoint"""
        return {"status": "healthy"}

    from identity_core.api.v1 import router as api_v1_router

    application.include_router(api_v1_router, prefix=settings.API_V1_STR)
    return application


app = create_app()
