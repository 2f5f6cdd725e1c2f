"""Cleanup tasks for deleted tenants.

Soft-deleted tenants keep their database for the retention window.
This job drops the ones whose window has passed.
"""

from typing import Any

import structlog

from tenantdb.tenancy.manager import TenantDatabaseManager


log = structlog.get_logger()


async def purge_expired_tenants(ctx: dict[str, Any]) -> dict[str, Any]:
    """Purge deleted tenants past retention.

    Scheduled daily. A tenant that cannot be purged is logged and
    picked up again on the next run.

    Args:
        ctx: Worker context holding ``tenant_manager``

    Returns:
        Dict with the purged organization ids
    """
    manager: TenantDatabaseManager = ctx["tenant_manager"]
    purged = await manager.purge_expired()

    log.info("purge_expired_tenants_complete", purged_count=len(purged))

    return {"purged": purged, "purged_count": len(purged)}
