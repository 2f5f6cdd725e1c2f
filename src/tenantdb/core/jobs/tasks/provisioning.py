"""Tenant provisioning job.

Runs the physical setup of a tenant registered as pending. Every run
re-reads the tenant first, so duplicate deliveries and redeliveries
after a worker crash are harmless.
"""

from typing import Any

import structlog
from arq import Retry

from tenantdb.config import settings
from tenantdb.core.errors import ProvisioningFailedError
from tenantdb.core.jobs.utils import provisioning_backoff
from tenantdb.tenancy.manager import TenantDatabaseManager


log = structlog.get_logger()


async def provision_tenant(
    ctx: dict[str, Any],
    organization_id: str,
    slug: str,
    requested_by: str | None = None,
    requested_at: str | None = None,
) -> dict[str, Any]:
    """Provision one tenant database.

    A failed attempt is retried with exponential backoff while attempts
    remain, leaving the tenant in ``provisioning``. The last failed
    attempt marks the tenant failed and alerts operators.

    Args:
        ctx: Worker context holding ``tenant_manager``
        organization_id: Tenant to provision
        slug: Tenant slug, for logs
        requested_by: User who becomes the owner agent
        requested_at: ISO timestamp of the original request

    Returns:
        Dict with the organization id and resulting status
    """
    manager: TenantDatabaseManager = ctx["tenant_manager"]
    job_try: int = ctx.get("job_try", 1)
    max_attempts: int = ctx.get("provision_max_attempts", settings.provision_max_attempts)
    job_log = log.bind(
        organization_id=organization_id,
        slug=slug,
        job_id=ctx.get("job_id"),
        attempt=job_try,
    )
    job_log.info("tenant_provisioning_started", requested_at=requested_at)

    try:
        tenant = await manager.complete_provisioning(
            organization_id,
            requested_by=requested_by,
            resume=job_try > 1,
            attempt=job_try,
        )
    except Exception as exc:
        # Catalog errors outside the physical steps count as attempts too
        cause = exc.cause if isinstance(exc, ProvisioningFailedError) else exc
        if job_try < max_attempts:
            defer = provisioning_backoff(job_try)
            job_log.warning(
                "tenant_provisioning_retry",
                defer_seconds=defer,
                error=str(cause),
            )
            raise Retry(defer=defer) from exc
        await manager.fail_provisioning(organization_id, cause, attempt=job_try)
        raise

    status = tenant.status.value if tenant else None
    job_log.info("tenant_provisioning_finished", status=status)
    return {"organization_id": organization_id, "status": status}
