"""ARQ worker configuration.

Defines the worker settings including registered jobs,
cron schedules, and startup/shutdown hooks.
"""

from typing import Any, ClassVar

import structlog
from arq import cron

from tenantdb.config import settings
from tenantdb.core.database import build_engine, build_session_factory
from tenantdb.core.jobs.tasks.cleanup import purge_expired_tenants
from tenantdb.core.jobs.tasks.provisioning import provision_tenant
from tenantdb.core.jobs.utils import get_redis_settings
from tenantdb.core.logging import configure_logging
from tenantdb.tenancy.manager import TenantDatabaseManager


async def startup(ctx: dict[str, Any]) -> None:
    """Build the catalog engine and the tenant manager shared by all jobs.

    Args:
        ctx: Worker context dict (shared across all jobs)
    """
    configure_logging()
    log = structlog.get_logger()
    log.info("worker_startup", environment=settings.environment)

    engine = build_engine(pool_size=5, max_overflow=10)
    session_factory = build_session_factory(engine)

    ctx["db_engine"] = engine
    ctx["db_session_factory"] = session_factory
    ctx["tenant_manager"] = TenantDatabaseManager.from_session_factory(
        session_factory,
        enqueue=ctx["redis"].enqueue_job,
    )

    log.info("worker_startup_complete")


async def shutdown(ctx: dict[str, Any]) -> None:
    log = structlog.get_logger()
    log.info("worker_shutdown")

    manager: TenantDatabaseManager | None = ctx.get("tenant_manager")
    if manager:
        await manager.close()

    engine = ctx.get("db_engine")
    if engine:
        await engine.dispose()
        log.info("database_engine_disposed")

    log.info("worker_shutdown_complete")


class WorkerSettings:
    """ARQ worker settings.

    Run the worker with:
        arq tenantdb.core.jobs.worker.WorkerSettings
    """

    functions: ClassVar[list[Any]] = [
        provision_tenant,
        purge_expired_tenants,
    ]

    cron_jobs: ClassVar[list[Any]] = [
        # Drop databases of tenants deleted longer ago than the retention window
        cron(purge_expired_tenants, hour=4, minute=0),
    ]

    on_startup = startup
    on_shutdown = shutdown

    redis_settings = get_redis_settings()

    max_jobs = 10
    job_timeout = int(settings.provision_timeout_seconds) + 60
    keep_result = 3600
    retry_jobs = True
    max_tries = settings.provision_max_attempts
