"""Database-per-tenant routing and lifecycle."""

from tenantdb.tenancy.cache import ConnectionCache
from tenantdb.tenancy.connection import TenantConnection, open_tenant_connection
from tenantdb.tenancy.manager import TenantDatabaseManager
from tenantdb.tenancy.models import Tenant, TenantActivityLog, TenantStatus
from tenantdb.tenancy.provisioner import PostgresProvisioner, TenantDatabaseProvisioner
from tenantdb.tenancy.registry import TenantRegistry
from tenantdb.tenancy.schemas import TenantRecord


__all__ = [
    "ConnectionCache",
    "PostgresProvisioner",
    "Tenant",
    "TenantActivityLog",
    "TenantConnection",
    "TenantDatabaseManager",
    "TenantDatabaseProvisioner",
    "TenantRecord",
    "TenantRegistry",
    "TenantStatus",
    "open_tenant_connection",
]
