"""Background job processing with ARQ.

Provisioning jobs and the daily purge of expired tenants run on
Redis-backed arq workers.
"""

from tenantdb.core.jobs.registry import (
    close_arq_pool,
    enqueue,
    get_arq_pool,
    init_arq_pool,
)


__all__ = [
    "close_arq_pool",
    "enqueue",
    "get_arq_pool",
    "init_arq_pool",
]
