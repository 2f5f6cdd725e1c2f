"""Tenant registry backed by the catalog database.

Single source of truth for tenant existence and lifecycle status. Every
status change is applied as one conditional UPDATE filtered on the
expected source status, so two racing callers can never both succeed.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tenantdb.core.errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from tenantdb.core.utils.text import (
    generate_database_name,
    is_valid_database_name,
    is_valid_slug,
)
from tenantdb.tenancy.models import (
    ALLOWED_TRANSITIONS,
    UNPROVISIONED_STATUSES,
    Tenant,
    TenantStatus,
)
from tenantdb.tenancy.schemas import TenantRecord


logger = structlog.get_logger()


def _live(stmt: Any) -> Any:
    return stmt.where(Tenant.deleted_at.is_(None))


class TenantRegistry:
    """Reads and writes tenant rows in the catalog database.

    Each call runs in its own transaction and returns TenantRecord
    snapshots; ORM objects never leave this class.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def _live_by_organization(
        self, session: AsyncSession, organization_id: str
    ) -> Tenant | None:
        result = await session.execute(
            _live(select(Tenant).where(Tenant.organization_id == organization_id))
        )
        return result.scalar_one_or_none()

    async def _live_by_slug(self, session: AsyncSession, slug: str) -> Tenant | None:
        result = await session.execute(_live(select(Tenant).where(Tenant.slug == slug)))
        return result.scalar_one_or_none()

    async def get_by_slug(self, slug: str) -> TenantRecord | None:
        """Get the live tenant holding a slug.

        Args:
            slug: Tenant slug

        Returns:
            TenantRecord if a non-deleted tenant holds the slug, None otherwise
        """
        async with self.session_factory() as session:
            tenant = await self._live_by_slug(session, slug)
            return TenantRecord.model_validate(tenant) if tenant else None

    async def get_by_organization_id(
        self, organization_id: str, include_deleted: bool = False
    ) -> TenantRecord | None:
        """Get the tenant of an organization.

        Args:
            organization_id: External organization id
            include_deleted: Also return a soft-deleted row awaiting purge

        Returns:
            TenantRecord if found, None otherwise
        """
        async with self.session_factory() as session:
            stmt = select(Tenant).where(Tenant.organization_id == organization_id)
            if not include_deleted:
                stmt = _live(stmt)
            # Live row first, then the most recently deleted one
            stmt = stmt.order_by(
                Tenant.deleted_at.is_not(None), Tenant.deleted_at.desc()
            ).limit(1)
            result = await session.execute(stmt)
            tenant = result.scalar_one_or_none()
            return TenantRecord.model_validate(tenant) if tenant else None

    async def list_tenants(
        self,
        status: TenantStatus | None = None,
        include_deleted: bool = False,
    ) -> list[TenantRecord]:
        """List tenants ordered by creation time."""
        async with self.session_factory() as session:
            stmt = select(Tenant).order_by(Tenant.created_at, Tenant.slug)
            if status is not None:
                stmt = stmt.where(Tenant.status == status.value)
            if not include_deleted:
                stmt = _live(stmt)
            result = await session.execute(stmt)
            return [TenantRecord.model_validate(t) for t in result.scalars()]

    async def list_purgeable(
        self, retention: timedelta, now: datetime | None = None
    ) -> list[TenantRecord]:
        """List soft-deleted tenants whose retention window has elapsed."""
        cutoff = (now or datetime.now(UTC)) - retention
        async with self.session_factory() as session:
            result = await session.execute(
                select(Tenant)
                .where(Tenant.deleted_at.is_not(None), Tenant.deleted_at <= cutoff)
                .order_by(Tenant.deleted_at)
            )
            return [TenantRecord.model_validate(t) for t in result.scalars()]

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def register_tenant(
        self, organization_id: str, slug: str, name: str
    ) -> TenantRecord:
        """Insert a new tenant in ``pending`` status.

        Args:
            organization_id: External organization id
            slug: Unique (among live tenants) slug
            name: Display name

        Returns:
            The registered tenant

        Raises:
            ValidationError: If the slug or derived database name is malformed
            ConflictError: If the slug or the organization already has a live
                tenant, or the organization's database is still retained
        """
        if not is_valid_slug(slug):
            raise ValidationError(
                "Invalid slug",
                errors=[
                    {
                        "field": "slug",
                        "message": "Use lowercase letters, digits and single hyphens",
                    }
                ],
            )
        connection_ref = generate_database_name(organization_id)
        if not organization_id.strip() or not is_valid_database_name(connection_ref):
            raise ValidationError(
                "Invalid organization id",
                errors=[{"field": "organization_id", "message": "Malformed id"}],
            )

        async with self.session_factory() as session:
            await self._ensure_available(session, organization_id, slug, connection_ref)

            tenant = Tenant(
                organization_id=organization_id,
                slug=slug,
                name=name,
                connection_ref=connection_ref,
                status=TenantStatus.PENDING.value,
            )
            session.add(tenant)
            try:
                await session.flush()
                await session.refresh(tenant)
                record = TenantRecord.model_validate(tenant)
                await session.commit()
            except IntegrityError as exc:
                # Lost a race against a concurrent registration
                await session.rollback()
                raise ConflictError(
                    "Tenant slug or organization is already registered",
                    error_code="tenant_exists",
                    details={"slug": slug, "organization_id": organization_id},
                ) from exc

        logger.info(
            "tenant_registered",
            organization_id=organization_id,
            slug=slug,
            connection_ref=connection_ref,
        )
        return record

    async def _ensure_available(
        self,
        session: AsyncSession,
        organization_id: str,
        slug: str,
        connection_ref: str,
    ) -> None:
        if await self._live_by_slug(session, slug) is not None:
            raise ConflictError(
                "Name already taken",
                error_code="slug_taken",
                details={"slug": slug},
            )
        if await self._live_by_organization(session, organization_id) is not None:
            raise ConflictError(
                "Organization already has a tenant",
                error_code="organization_has_tenant",
                details={"organization_id": organization_id},
            )
        retained = await session.execute(
            select(Tenant.id).where(Tenant.connection_ref == connection_ref)
        )
        if retained.first() is not None:
            raise ConflictError(
                "Organization database is retained until purge",
                error_code="database_retained",
                details={
                    "organization_id": organization_id,
                    "connection_ref": connection_ref,
                },
            )

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    async def _transition(
        self,
        organization_id: str,
        target: TenantStatus,
        **values: Any,
    ) -> TenantRecord:
        """Move the live tenant to target if its status is an allowed source.

        Raises:
            NotFoundError: If the organization has no live tenant
            InvalidTransitionError: If the current status is not a valid source
        """
        sources = ALLOWED_TRANSITIONS[target]
        async with self.session_factory() as session:
            result = await session.execute(
                _live(update(Tenant))
                .where(
                    Tenant.organization_id == organization_id,
                    Tenant.status.in_([s.value for s in sources]),
                )
                .values(status=target.value, **values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                current = await self._live_by_organization(session, organization_id)
                # Rollback expires ORM state; keep the status as a plain value
                current_status = None if current is None else current.status
                await session.rollback()
                if current_status is None:
                    raise NotFoundError(
                        "Tenant not found",
                        resource="tenant",
                        resource_id=organization_id,
                    )
                raise InvalidTransitionError(
                    f"Cannot move tenant from {current_status} to {target.value}",
                    organization_id=organization_id,
                    current_status=current_status,
                    expected_status=sorted(s.value for s in sources),
                    target_status=target.value,
                )

            # One row per organization: connection_ref is unique across all rows
            updated = await session.execute(
                select(Tenant).where(Tenant.organization_id == organization_id)
            )
            record = TenantRecord.model_validate(updated.scalar_one())
            await session.commit()

        logger.info(
            "tenant_status_changed",
            organization_id=organization_id,
            status=target.value,
        )
        return record

    async def mark_provisioning(self, organization_id: str) -> TenantRecord:
        """pending -> provisioning."""
        return await self._transition(organization_id, TenantStatus.PROVISIONING)

    async def mark_active(self, organization_id: str) -> TenantRecord:
        """provisioning -> active."""
        return await self._transition(
            organization_id,
            TenantStatus.ACTIVE,
            provisioned_at=datetime.now(UTC),
            failure_reason=None,
        )

    async def mark_failed(self, organization_id: str, reason: str) -> TenantRecord:
        """pending/provisioning -> failed, recording the reason."""
        return await self._transition(
            organization_id,
            TenantStatus.FAILED,
            failure_reason=reason,
        )

    async def mark_pending(self, organization_id: str) -> TenantRecord:
        """failed -> pending (operator retry)."""
        return await self._transition(organization_id, TenantStatus.PENDING)

    async def soft_delete(
        self, organization_id: str, actor_user_id: str | None
    ) -> TenantRecord:
        """Mark the tenant deleted. Deleting an already deleted tenant is a no-op.

        Raises:
            NotFoundError: If the organization has no tenant at all
        """
        try:
            return await self._transition(
                organization_id,
                TenantStatus.DELETED,
                deleted_at=datetime.now(UTC),
                deleted_by=actor_user_id,
            )
        except NotFoundError:
            existing = await self.get_by_organization_id(
                organization_id, include_deleted=True
            )
            if existing is None:
                raise
            logger.info(
                "tenant_already_deleted",
                organization_id=organization_id,
            )
            return existing

    async def update_provisioning_details(
        self, organization_id: str, **details: Any
    ) -> TenantRecord | None:
        """Merge progress information into the live tenant's provisioning_details."""
        async with self.session_factory() as session:
            tenant = await self._live_by_organization(session, organization_id)
            if tenant is None:
                return None
            tenant.provisioning_details = {
                **(tenant.provisioning_details or {}),
                **details,
            }
            await session.flush()
            await session.refresh(tenant)
            record = TenantRecord.model_validate(tenant)
            await session.commit()
            return record

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------

    async def remove_unprovisioned(self, organization_id: str) -> bool:
        """Hard-delete a live tenant that never became active.

        Used to undo a failed synchronous provisioning.

        Returns:
            True if a row was removed, False if there was nothing to remove

        Raises:
            InvalidTransitionError: If the tenant is already active
        """
        async with self.session_factory() as session:
            result = await session.execute(
                _live(delete(Tenant)).where(
                    Tenant.organization_id == organization_id,
                    Tenant.status.in_([s.value for s in UNPROVISIONED_STATUSES]),
                )
            )
            if result.rowcount == 0:
                current = await self._live_by_organization(session, organization_id)
                current_status = None if current is None else current.status
                await session.rollback()
                if current_status is None:
                    return False
                raise InvalidTransitionError(
                    "Refusing to remove a provisioned tenant",
                    organization_id=organization_id,
                    current_status=current_status,
                    expected_status=sorted(s.value for s in UNPROVISIONED_STATUSES),
                )
            await session.commit()

        logger.info("tenant_registration_removed", organization_id=organization_id)
        return True

    async def purge(
        self,
        organization_id: str,
        retention: timedelta,
        now: datetime | None = None,
    ) -> TenantRecord:
        """Delete the catalog row of a soft-deleted tenant past its retention.

        Raises:
            NotFoundError: If the organization has no soft-deleted tenant
            InvalidTransitionError: If the retention window has not elapsed
        """
        cutoff = (now or datetime.now(UTC)) - retention
        async with self.session_factory() as session:
            result = await session.execute(
                select(Tenant).where(
                    Tenant.organization_id == organization_id,
                    Tenant.deleted_at.is_not(None),
                )
            )
            tenant = result.scalar_one_or_none()
            if tenant is None:
                raise NotFoundError(
                    "No deleted tenant to purge",
                    resource="tenant",
                    resource_id=organization_id,
                )
            record = TenantRecord.model_validate(tenant)
            if record.deleted_at is None or record.deleted_at > cutoff:
                raise InvalidTransitionError(
                    "Retention window has not elapsed",
                    organization_id=organization_id,
                    current_status=record.status.value,
                    details={
                        "deleted_at": record.deleted_at.isoformat()
                        if record.deleted_at
                        else None,
                        "retention_days": retention.days,
                    },
                )
            await session.delete(tenant)
            await session.commit()

        logger.info("tenant_row_purged", organization_id=organization_id)
        return record
