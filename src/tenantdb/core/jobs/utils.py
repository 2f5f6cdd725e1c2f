"""Shared helpers for the job queue."""

from arq.connections import RedisSettings

from tenantdb.config import settings


def get_redis_settings() -> RedisSettings:
    """Build arq RedisSettings from the configured redis URL."""
    return RedisSettings.from_dsn(str(settings.redis_url))


def provisioning_backoff(job_try: int, base_seconds: float | None = None) -> float:
    """Seconds to wait before re-running a failed provisioning attempt.

    Doubles with every attempt: base, 2*base, 4*base, ...
    """
    base = settings.provision_backoff_seconds if base_seconds is None else base_seconds
    return base * 2 ** max(job_try - 1, 0)
