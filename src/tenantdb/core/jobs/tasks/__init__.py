"""Background job tasks."""

from tenantdb.core.jobs.tasks.cleanup import purge_expired_tenants
from tenantdb.core.jobs.tasks.provisioning import provision_tenant


__all__ = [
    "provision_tenant",
    "purge_expired_tenants",
]
