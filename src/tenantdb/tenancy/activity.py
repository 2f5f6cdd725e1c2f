"""Activity log writer for tenant lifecycle events.

Entries are written in their own transaction so they survive the
rollback of the operation they describe. A failed write is logged and
dropped; it never fails the operation being recorded.
"""

from typing import Any
from uuid import UUID

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tenantdb.tenancy.models import TenantActivityLog


logger = structlog.get_logger()


class ActivityLogger:
    """Writes TenantActivityLog rows to the catalog database."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def log(
        self,
        organization_id: str,
        action: str,
        description: str,
        category: str = "tenant",
        severity: str = "info",
        tenant_id: UUID | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Persist one activity entry.

        Args:
            organization_id: Organization the event belongs to
            action: Dotted event name, e.g. ``tenant.provisioned``
            description: Human-readable summary
            category: tenant, migration or system
            severity: info, warning, error or critical
            tenant_id: Catalog row id, when the row still exists
            metadata: Extra JSON-serializable context
        """
        try:
            async with self.session_factory() as session:
                session.add(
                    TenantActivityLog(
                        tenant_id=tenant_id,
                        organization_id=organization_id,
                        action=action,
                        category=category,
                        severity=severity,
                        description=description,
                        metadata_=metadata,
                    )
                )
                await session.commit()
        except SQLAlchemyError as exc:
            logger.warning(
                "activity_log_write_failed",
                organization_id=organization_id,
                action=action,
                error=str(exc),
            )

    async def tenant_registered(
        self, tenant_id: UUID, organization_id: str, slug: str
    ) -> None:
        await self.log(
            organization_id,
            "tenant.registered",
            f"Tenant {slug} registered",
            tenant_id=tenant_id,
            metadata={"slug": slug},
        )

    async def tenant_provisioned(
        self,
        tenant_id: UUID,
        organization_id: str,
        database_name: str,
        duration_ms: float,
    ) -> None:
        await self.log(
            organization_id,
            "tenant.provisioned",
            f"Tenant database {database_name} provisioned",
            tenant_id=tenant_id,
            metadata={"database_name": database_name, "duration_ms": duration_ms},
        )

    async def provisioning_failed(
        self,
        organization_id: str,
        error: str,
        tenant_id: UUID | None = None,
        attempt: int | None = None,
    ) -> None:
        await self.log(
            organization_id,
            "tenant.provisioning_failed",
            f"Provisioning failed: {error}",
            severity="error",
            tenant_id=tenant_id,
            metadata={"error": error, "attempt": attempt},
        )

    async def rollback_failed(
        self, organization_id: str, cause: str, rollback_errors: list[str]
    ) -> None:
        await self.log(
            organization_id,
            "system.rollback_failed",
            "Rollback of a failed provisioning did not complete",
            category="system",
            severity="critical",
            metadata={"cause": cause, "rollback_errors": rollback_errors},
        )

    async def tenant_deleted(
        self,
        tenant_id: UUID,
        organization_id: str,
        slug: str,
        actor_user_id: str | None,
    ) -> None:
        await self.log(
            organization_id,
            "tenant.deleted",
            f"Tenant {slug} soft deleted",
            severity="warning",
            tenant_id=tenant_id,
            metadata={"actor_user_id": actor_user_id} if actor_user_id else None,
        )

    async def tenant_purged(self, organization_id: str, database_name: str) -> None:
        await self.log(
            organization_id,
            "tenant.purged",
            f"Tenant database {database_name} dropped",
            severity="warning",
            metadata={"database_name": database_name},
        )

    async def retry_requested(
        self, tenant_id: UUID, organization_id: str, requested_by: str | None
    ) -> None:
        await self.log(
            organization_id,
            "tenant.retry_requested",
            "Provisioning retry requested",
            tenant_id=tenant_id,
            metadata={"requested_by": requested_by},
        )

    async def migration_executed(
        self, tenant_id: UUID, organization_id: str, duration_ms: float
    ) -> None:
        await self.log(
            organization_id,
            "migration.executed",
            "Tenant schema migrated",
            category="migration",
            tenant_id=tenant_id,
            metadata={"duration_ms": duration_ms},
        )

    async def migration_failed(
        self, tenant_id: UUID, organization_id: str, error: str
    ) -> None:
        await self.log(
            organization_id,
            "migration.failed",
            f"Tenant schema migration failed: {error}",
            category="migration",
            severity="error",
            tenant_id=tenant_id,
            metadata={"error": error},
        )
