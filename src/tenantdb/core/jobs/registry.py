"""Job registry and enqueueing utilities.

Provides a centralized way to enqueue background jobs from
anywhere in the application.
"""

from datetime import timedelta
from typing import Any

import structlog
from arq import ArqRedis, create_pool

from tenantdb.core.jobs.utils import get_redis_settings


logger = structlog.get_logger()


class ArqPoolHolder:
    """Holder for the ARQ connection pool.

    Uses a class attribute to manage module-level state without
    global statements.
    """

    pool: ArqRedis | None = None


async def init_arq_pool() -> ArqRedis:
    """Initialize the ARQ connection pool during application startup."""
    if ArqPoolHolder.pool is None:
        ArqPoolHolder.pool = await create_pool(get_redis_settings())
    return ArqPoolHolder.pool


async def get_arq_pool() -> ArqRedis:
    """Get the ARQ connection pool.

    Raises:
        RuntimeError: If pool not initialized
    """
    if ArqPoolHolder.pool is None:
        raise RuntimeError(
            "ARQ pool not initialized. Call init_arq_pool() during startup."
        )
    return ArqPoolHolder.pool


async def close_arq_pool() -> None:
    if ArqPoolHolder.pool is not None:
        await ArqPoolHolder.pool.close()
        ArqPoolHolder.pool = None


async def enqueue(
    job_name: str,
    *args: Any,
    _defer_by: timedelta | None = None,
    _job_id: str | None = None,
    **kwargs: Any,
) -> Any:
    """Enqueue a background job.

    Args:
        job_name: Name of the job function to run
        *args: Positional arguments for the job
        _defer_by: Delay execution by this duration
        _job_id: Custom job ID; a job with the same id is only queued once
        **kwargs: Keyword arguments for the job

    Returns:
        arq Job, or None when a job with the same id already exists

    Example:
        await enqueue("provision_tenant", organization_id="org_1", slug="acme",
                      _job_id="provision-tenant:org_1:0")
    """
    pool = await get_arq_pool()
    job = await pool.enqueue_job(
        job_name,
        *args,
        _defer_by=_defer_by,
        _job_id=_job_id,
        **kwargs,
    )
    if job is None:
        logger.info("job_already_queued", job_name=job_name, job_id=_job_id)
    return job
