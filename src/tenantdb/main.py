"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.exceptions import RedisError

from tenantdb.api import api_router
from tenantdb.config import settings
from tenantdb.core.constants import ORGANIZATION_ID_HEADER, USER_ID_HEADER
from tenantdb.core.context import OrganizationContextMiddleware, RequestIdMiddleware
from tenantdb.core.database import build_engine, build_session_factory
from tenantdb.core.errors import register_exception_handlers
from tenantdb.core.jobs.registry import close_arq_pool, init_arq_pool
from tenantdb.core.logging import RequestLoggingMiddleware, configure_logging
from tenantdb.tenancy.manager import TenantDatabaseManager


logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler.

    Builds the catalog engine and the tenant manager on startup; drains
    every tenant connection and disposes the engine on shutdown.
    """
    logger.info(
        "application_startup",
        app_name=settings.app_name,
        environment=settings.environment,
    )

    engine = build_engine()
    session_factory = build_session_factory(engine)
    app.state.catalog_engine = engine
    app.state.catalog_session_factory = session_factory
    app.state.tenant_manager = TenantDatabaseManager.from_session_factory(
        session_factory
    )

    # Async provisioning needs the queue; sync mode and routing do not
    try:
        await init_arq_pool()
        logger.info("arq_pool_initialized")
    except (OSError, RedisError) as e:
        logger.warning("arq_pool_init_failed", error=str(e))

    yield

    logger.info("application_shutdown")

    await app.state.tenant_manager.close()
    logger.info("tenant_connections_closed")

    await close_arq_pool()
    logger.info("arq_pool_closed")

    await engine.dispose()
    logger.info("catalog_engine_disposed")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance.
    """
    configure_logging()

    app = FastAPI(
        title=settings.app_name,
        description="Database-per-tenant routing and lifecycle service",
        version="0.1.0",
        debug=settings.debug,
        lifespan=lifespan,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
        openapi_url="/openapi.json" if not settings.is_production else None,
    )

    cors_origins = settings.cors_origins
    if settings.is_development and not cors_origins:
        cors_origins = ["http://localhost:3000", "http://localhost:5173"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=[
            "Content-Type",
            "X-Request-ID",
            ORGANIZATION_ID_HEADER,
            USER_ID_HEADER,
        ],
    )

    # Added last runs first: request id, then organization, then logging
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(OrganizationContextMiddleware)
    app.add_middleware(RequestIdMiddleware)

    register_exception_handlers(app)

    app.include_router(api_router)

    return app
