"""Root API router: probes, service info and the versioned tenant API."""

from typing import Any

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from tenantdb import __version__
from tenantdb.api.dependencies import DBSession
from tenantdb.config import settings
from tenantdb.core.jobs.registry import ArqPoolHolder
from tenantdb.modules import discover_modules


class HealthResponse(BaseModel):
    status: str


class ReadinessResponse(BaseModel):
    """Readiness payload.

    Only the catalog decides readiness: routing and sync provisioning
    work without the queue, so a queue outage is reported, not fatal.
    """

    status: str
    checks: dict[str, str]
    tenant_connections: dict[str, Any] | None = None


api_router = APIRouter()
health_router = APIRouter(tags=["health"])


async def _queue_check() -> str:
    pool = ArqPoolHolder.pool
    if pool is None:
        return "not_configured"
    try:
        await pool.ping()
    except (OSError, RedisError) as e:
        return str(e)
    return "ok"


@health_router.get(
    "/health/live",
    response_model=HealthResponse,
    summary="Liveness probe",
)
async def liveness() -> HealthResponse:
    return HealthResponse(status="alive")


@health_router.get(
    "/health/ready",
    response_model=ReadinessResponse,
    summary="Readiness probe",
    description="Checks the catalog database; reports queue and connection cache state.",
)
async def readiness(request: Request, db: DBSession) -> JSONResponse:
    checks: dict[str, str] = {}
    try:
        await db.execute(text("SELECT 1"))
        checks["catalog_database"] = "ok"
    except SQLAlchemyError as e:
        checks["catalog_database"] = str(e)
    checks["queue"] = await _queue_check()

    ready = checks["catalog_database"] == "ok"
    manager = getattr(request.app.state, "tenant_manager", None)
    body = ReadinessResponse(
        status="ready" if ready else "degraded",
        checks=checks,
        tenant_connections=manager.cache.stats() if manager else None,
    )
    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=body.model_dump(),
    )


@health_router.get("/info", summary="Service info")
async def info() -> dict[str, Any]:
    return {
        "app": settings.app_name,
        "version": __version__,
        "environment": settings.environment,
        "provisioning": {
            "timeout_seconds": settings.provision_timeout_seconds,
            "max_attempts": settings.provision_max_attempts,
        },
    }


v1_router = APIRouter(prefix="/api/v1")
for module_router in discover_modules():
    v1_router.include_router(module_router)

api_router.include_router(health_router)
api_router.include_router(v1_router)
