"""Tenant database manager.

The façade used by request handlers, the worker and the operator CLI.
It composes the registry (catalog rows), the connection cache (live
handles) and the provisioner (physical databases).
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tenantdb.config import settings
from tenantdb.core.constants import PROVISION_JOB_ID_PREFIX, PROVISION_TENANT_JOB
from tenantdb.core.errors import (
    InvalidTransitionError,
    NotFoundError,
    ProvisioningFailedError,
    RollbackFailedError,
    ServiceUnavailableError,
    TenantNotReadyError,
    TenantUnavailableError,
)
from tenantdb.core.logging import get_ops_logger
from tenantdb.tenancy.activity import ActivityLogger
from tenantdb.tenancy.cache import ConnectionCache
from tenantdb.tenancy.connection import ConnectionFactory, TenantConnection
from tenantdb.tenancy.models import NOT_READY_STATUSES, TenantStatus
from tenantdb.tenancy.provisioner import PostgresProvisioner, TenantDatabaseProvisioner
from tenantdb.tenancy.registry import TenantRegistry
from tenantdb.tenancy.saga import CompensationStack
from tenantdb.tenancy.schemas import (
    HealthCheckResult,
    MigrationResult,
    ProvisioningJob,
    TenantRecord,
)


logger = structlog.get_logger()

Enqueue = Callable[..., Awaitable[Any]]


def _describe(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}"


async def _default_enqueue(job_name: str, **kwargs: Any) -> Any:
    from tenantdb.core.jobs.registry import enqueue

    return await enqueue(job_name, **kwargs)


class TenantDatabaseManager:
    """Routes organizations to their databases and drives their lifecycle.

    Args:
        registry: Catalog access
        provisioner: Physical database operations
        cache: Connection cache, built from the registry when omitted
        activity: Activity log writer
        enqueue: Job enqueue callable (arq by default)
        provision_timeout: Seconds allowed for physical provisioning
        retention: Grace period before a deleted tenant may be purged
    """

    def __init__(
        self,
        registry: TenantRegistry,
        provisioner: TenantDatabaseProvisioner,
        cache: ConnectionCache | None = None,
        activity: ActivityLogger | None = None,
        enqueue: Enqueue | None = None,
        provision_timeout: float | None = None,
        retention: timedelta | None = None,
    ) -> None:
        self.registry = registry
        self.provisioner = provisioner
        self.cache = cache if cache is not None else ConnectionCache(registry)
        self.activity = (
            activity if activity is not None else ActivityLogger(registry.session_factory)
        )
        self.enqueue = enqueue if enqueue is not None else _default_enqueue
        self.provision_timeout = (
            settings.provision_timeout_seconds
            if provision_timeout is None
            else provision_timeout
        )
        self.retention = settings.tenant_retention if retention is None else retention
        self.ops = get_ops_logger(component="tenant_manager")

    @classmethod
    def from_session_factory(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        connection_factory: ConnectionFactory | None = None,
        **kwargs: Any,
    ) -> "TenantDatabaseManager":
        """Wire a manager against the configured PostgreSQL server."""
        registry = TenantRegistry(session_factory)
        cache_kwargs: dict[str, Any] = {}
        if connection_factory is not None:
            cache_kwargs["connection_factory"] = connection_factory
        return cls(
            registry=registry,
            provisioner=kwargs.pop("provisioner", None) or PostgresProvisioner(),
            cache=ConnectionCache(registry, **cache_kwargs),
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Lookups and routing
    # ------------------------------------------------------------------

    async def get_connection(self, organization_id: str) -> TenantConnection:
        """Return the pooled handle of an active tenant.

        Raises:
            NotFoundError, TenantNotReadyError, TenantUnavailableError
        """
        return await self.cache.get(organization_id)

    async def get_by_slug(self, slug: str) -> TenantRecord | None:
        return await self.registry.get_by_slug(slug)

    async def get_tenant_by_slug(self, slug: str) -> TenantRecord | None:
        """Name-availability lookup used outside the tenancy package."""
        return await self.registry.get_by_slug(slug)

    async def get_by_organization_id(
        self, organization_id: str, include_deleted: bool = False
    ) -> TenantRecord | None:
        return await self.registry.get_by_organization_id(
            organization_id, include_deleted=include_deleted
        )

    async def list_tenants(
        self, status: TenantStatus | None = None, include_deleted: bool = False
    ) -> list[TenantRecord]:
        return await self.registry.list_tenants(
            status=status, include_deleted=include_deleted
        )

    # ------------------------------------------------------------------
    # Synchronous provisioning
    # ------------------------------------------------------------------

    async def provision_tenant(
        self,
        organization_id: str,
        slug: str,
        name: str,
        owner_id: str | None = None,
    ) -> TenantRecord:
        """Register and fully provision a tenant in-process.

        On failure every completed step is undone in reverse order, so
        the tenant is either active or absent from the catalog.

        Raises:
            ConflictError, ValidationError: Registration refused, nothing to undo
            ProvisioningFailedError: Physical setup failed and was rolled back
            RollbackFailedError: Physical setup failed and the rollback too
        """
        started = time.perf_counter()
        tenant = await self.registry.get_by_organization_id(organization_id)
        if not (
            tenant is not None
            and tenant.status == TenantStatus.PENDING
            and tenant.slug == slug
        ):
            # Adopt a matching pending registration, otherwise register now
            tenant = await self.registry.register_tenant(organization_id, slug, name)
            await self.activity.tenant_registered(tenant.id, organization_id, slug)

        stack = CompensationStack()
        stack.push(
            "remove_registration",
            lambda: self.registry.remove_unprovisioned(organization_id),
        )
        database_name = tenant.connection_ref
        try:
            await self.registry.mark_provisioning(organization_id)
            async with asyncio.timeout(self.provision_timeout):
                if await self.provisioner.create_database(database_name):
                    stack.push(
                        "drop_database",
                        lambda: self.provisioner.drop_database(database_name),
                    )
                await self.provisioner.apply_schema(
                    database_name, owner_user_id=owner_id
                )
            tenant = await self.registry.mark_active(organization_id)
        except asyncio.CancelledError:
            # The caller went away; the undo runs in its own task and finishes
            await asyncio.shield(self._undo_cancelled(organization_id, stack))
            raise
        except Exception as exc:
            await self._roll_back(organization_id, stack, exc)
            raise  # _roll_back always raises

        stack.discard()
        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        await self.activity.tenant_provisioned(
            tenant.id, organization_id, database_name, duration_ms
        )
        logger.info(
            "tenant_provisioned",
            organization_id=organization_id,
            slug=slug,
            mode="sync",
            duration_ms=duration_ms,
        )
        return tenant

    async def _undo_cancelled(
        self, organization_id: str, stack: CompensationStack
    ) -> None:
        failures = await stack.unwind()
        if failures:
            rollback_errors = [str(f) for f in failures]
            self.ops.critical(
                "tenant_rollback_failed",
                organization_id=organization_id,
                cause="cancelled",
                rollback_errors=rollback_errors,
            )
            await self.activity.rollback_failed(
                organization_id, "cancelled", rollback_errors
            )
            return
        logger.warning("tenant_provisioning_cancelled", organization_id=organization_id)

    async def _roll_back(
        self, organization_id: str, stack: CompensationStack, exc: Exception
    ) -> None:
        failures = await stack.unwind()
        cause = _describe(exc)
        if failures:
            rollback_errors = [str(f) for f in failures]
            self.ops.critical(
                "tenant_rollback_failed",
                organization_id=organization_id,
                cause=cause,
                rollback_errors=rollback_errors,
            )
            await self.activity.rollback_failed(organization_id, cause, rollback_errors)
            raise RollbackFailedError(
                organization_id, exc, [f.error for f in failures]
            ) from exc

        self.ops.error(
            "tenant_provisioning_failed",
            organization_id=organization_id,
            mode="sync",
            error=cause,
        )
        await self.activity.provisioning_failed(organization_id, cause)
        raise ProvisioningFailedError(organization_id, exc) from exc

    # ------------------------------------------------------------------
    # Asynchronous provisioning
    # ------------------------------------------------------------------

    async def init_tenant(
        self, organization_id: str, slug: str, name: str
    ) -> TenantRecord:
        """Register a tenant as pending and return immediately."""
        tenant = await self.registry.register_tenant(organization_id, slug, name)
        await self.activity.tenant_registered(tenant.id, organization_id, slug)
        return tenant

    async def provision_tenant_async(
        self, organization_id: str, requested_by: str | None = None
    ) -> str:
        """Enqueue the provisioning job of a pending tenant.

        Returns:
            The queue job id

        Raises:
            NotFoundError: If the organization has no tenant
            InvalidTransitionError: If the tenant is not pending
        """
        tenant = await self.registry.get_by_organization_id(organization_id)
        if tenant is None:
            raise NotFoundError(
                "Tenant not found", resource="tenant", resource_id=organization_id
            )
        if tenant.status != TenantStatus.PENDING:
            raise InvalidTransitionError(
                "Only pending tenants can be queued for provisioning",
                organization_id=organization_id,
                current_status=tenant.status.value,
                expected_status=[TenantStatus.PENDING.value],
                target_status=TenantStatus.PROVISIONING.value,
            )

        retries = (tenant.provisioning_details or {}).get("retries", 0)
        job_id = f"{PROVISION_JOB_ID_PREFIX}{organization_id}:{retries}"
        job = ProvisioningJob(
            organization_id=organization_id,
            slug=tenant.slug,
            requested_by=requested_by,
        )
        try:
            await self.enqueue(PROVISION_TENANT_JOB, _job_id=job_id, **job.job_kwargs())
        except Exception as exc:
            await self._enqueue_failed(organization_id, job_id, exc)
            raise ServiceUnavailableError(
                "Provisioning queue is unavailable",
                error_code="provisioning_queue_unavailable",
            ) from exc
        await self.registry.update_provisioning_details(
            organization_id,
            job_id=job_id,
            current_step="queued",
            queued_at=job.requested_at.isoformat(),
        )
        logger.info(
            "tenant_provisioning_enqueued",
            organization_id=organization_id,
            job_id=job_id,
        )
        return job_id

    async def _enqueue_failed(
        self, organization_id: str, job_id: str, exc: Exception
    ) -> None:
        reason = f"enqueue failed: {_describe(exc)}"
        self.ops.error(
            "tenant_enqueue_failed",
            organization_id=organization_id,
            job_id=job_id,
            error=_describe(exc),
        )
        try:
            await self.registry.mark_failed(organization_id, reason)
        except (InvalidTransitionError, NotFoundError) as e:
            logger.warning(
                "provisioning_failure_not_recorded",
                organization_id=organization_id,
                error=e.message,
            )

    async def create_tenant_async(
        self,
        organization_id: str,
        slug: str,
        name: str,
        requested_by: str | None = None,
    ) -> TenantRecord:
        """Register a pending tenant and enqueue its provisioning."""
        await self.init_tenant(organization_id, slug, name)
        try:
            await self.provision_tenant_async(organization_id, requested_by=requested_by)
        except ServiceUnavailableError:
            # Nothing was queued; free the slug so the request can be repeated
            await self.registry.remove_unprovisioned(organization_id)
            raise
        tenant = await self.registry.get_by_organization_id(organization_id)
        if tenant is None:
            # Deleted between registration and this read
            raise NotFoundError(
                "Tenant not found", resource="tenant", resource_id=organization_id
            )
        return tenant

    async def complete_provisioning(
        self,
        organization_id: str,
        requested_by: str | None = None,
        resume: bool = False,
        attempt: int = 1,
    ) -> TenantRecord | None:
        """Run physical provisioning for a registered tenant.

        Safe to call repeatedly: the current status is re-read first and
        anything but a pending tenant (or a provisioning one when resuming
        a redelivered job) is left untouched.

        Args:
            organization_id: Tenant to provision
            requested_by: User who becomes the owner agent
            resume: Continue a tenant left in ``provisioning`` by an earlier attempt
            attempt: Delivery attempt number, recorded for operators

        Returns:
            The tenant after the call, None if it does not exist

        Raises:
            ProvisioningFailedError: Physical setup failed (status stays provisioning)
        """
        tenant = await self.registry.get_by_organization_id(organization_id)
        if tenant is None:
            logger.warning("provisioning_skipped_missing", organization_id=organization_id)
            return None
        if tenant.status == TenantStatus.ACTIVE:
            logger.info("provisioning_skipped_active", organization_id=organization_id)
            return tenant
        if tenant.status == TenantStatus.FAILED:
            logger.info("provisioning_skipped_failed", organization_id=organization_id)
            return tenant
        if tenant.status == TenantStatus.PROVISIONING and not resume:
            logger.info(
                "provisioning_skipped_in_progress", organization_id=organization_id
            )
            return tenant

        started = time.perf_counter()
        if tenant.status == TenantStatus.PENDING:
            try:
                tenant = await self.registry.mark_provisioning(organization_id)
            except InvalidTransitionError:
                # A duplicate delivery got there first
                logger.info("provisioning_lost_race", organization_id=organization_id)
                return await self.registry.get_by_organization_id(organization_id)

        # The tenant is now provisioning: every failure from here on must reach
        # the caller as ProvisioningFailedError so the job retries or fails it
        try:
            await self.registry.update_provisioning_details(
                organization_id,
                current_step="creating_database",
                attempt=attempt,
                started_at=datetime.now(UTC).isoformat(),
            )
            async with asyncio.timeout(self.provision_timeout):
                await self.provisioner.create_database(tenant.connection_ref)
                await self.registry.update_provisioning_details(
                    organization_id, current_step="applying_schema"
                )
                await self.provisioner.apply_schema(
                    tenant.connection_ref, owner_user_id=requested_by
                )
            try:
                tenant = await self.registry.mark_active(organization_id)
            except (InvalidTransitionError, NotFoundError):
                # Deleted while the database was being built; purge drops it later
                logger.warning(
                    "provisioning_finished_after_delete",
                    organization_id=organization_id,
                )
                return await self.registry.get_by_organization_id(
                    organization_id, include_deleted=True
                )
        except Exception as exc:
            raise ProvisioningFailedError(organization_id, exc) from exc

        tenant = await self.registry.update_provisioning_details(
            organization_id,
            current_step="completed",
            completed_at=datetime.now(UTC).isoformat(),
        ) or tenant
        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        await self.activity.tenant_provisioned(
            tenant.id, organization_id, tenant.connection_ref, duration_ms
        )
        logger.info(
            "tenant_provisioned",
            organization_id=organization_id,
            mode="async",
            attempt=attempt,
            duration_ms=duration_ms,
        )
        return tenant

    async def fail_provisioning(
        self, organization_id: str, error: BaseException, attempt: int | None = None
    ) -> TenantRecord | None:
        """Settle a tenant into ``failed`` after the last provisioning attempt."""
        reason = _describe(error)
        self.ops.error(
            "tenant_provisioning_failed",
            organization_id=organization_id,
            mode="async",
            attempt=attempt,
            error=reason,
        )
        tenant: TenantRecord | None = None
        try:
            tenant = await self.registry.mark_failed(organization_id, reason)
        except (InvalidTransitionError, NotFoundError) as exc:
            # Deleted or already settled meanwhile; keep the current status
            logger.warning(
                "provisioning_failure_not_recorded",
                organization_id=organization_id,
                error=exc.message,
            )
        await self.activity.provisioning_failed(
            organization_id,
            reason,
            tenant_id=tenant.id if tenant else None,
            attempt=attempt,
        )
        return tenant

    async def retry_provisioning(
        self, organization_id: str, requested_by: str | None = None
    ) -> str:
        """Move a failed tenant back to pending and enqueue it again.

        Returns:
            The new queue job id
        """
        tenant = await self.registry.mark_pending(organization_id)
        retries = (tenant.provisioning_details or {}).get("retries", 0) + 1
        await self.registry.update_provisioning_details(
            organization_id, retries=retries, current_step="retry_requested"
        )
        await self.activity.retry_requested(tenant.id, organization_id, requested_by)
        return await self.provision_tenant_async(
            organization_id, requested_by=requested_by
        )

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    async def delete_tenant(
        self, organization_id: str, actor_user_id: str | None = None
    ) -> TenantRecord:
        """Soft-delete a tenant and close its cached connection.

        The physical database is kept until purge_tenant.
        """
        tenant = await self.registry.soft_delete(organization_id, actor_user_id)
        await self.cache.invalidate(organization_id)
        await self.activity.tenant_deleted(
            tenant.id, organization_id, tenant.slug, actor_user_id
        )
        logger.info(
            "tenant_deleted",
            organization_id=organization_id,
            actor_user_id=actor_user_id,
        )
        return tenant

    async def purge_tenant(
        self,
        organization_id: str,
        retention: timedelta | None = None,
        now: datetime | None = None,
    ) -> TenantRecord:
        """Drop the physical database and catalog row of a deleted tenant.

        Raises:
            NotFoundError: If there is no soft-deleted tenant
            InvalidTransitionError: If the tenant is live or still retained
        """
        retention = self.retention if retention is None else retention
        now = now or datetime.now(UTC)
        tenant = await self.registry.get_by_organization_id(
            organization_id, include_deleted=True
        )
        if tenant is None:
            raise NotFoundError(
                "Tenant not found", resource="tenant", resource_id=organization_id
            )
        if tenant.deleted_at is None:
            raise InvalidTransitionError(
                "Tenant must be deleted before it can be purged",
                organization_id=organization_id,
                current_status=tenant.status.value,
                expected_status=[TenantStatus.DELETED.value],
            )
        if tenant.deleted_at > now - retention:
            raise InvalidTransitionError(
                "Retention window has not elapsed",
                organization_id=organization_id,
                current_status=tenant.status.value,
                details={"deleted_at": tenant.deleted_at.isoformat()},
            )

        await self.cache.invalidate(organization_id)
        await self.provisioner.drop_database(tenant.connection_ref)
        purged = await self.registry.purge(organization_id, retention, now=now)
        await self.activity.tenant_purged(organization_id, tenant.connection_ref)
        logger.warning(
            "tenant_purged",
            organization_id=organization_id,
            connection_ref=tenant.connection_ref,
        )
        return purged

    async def purge_expired(
        self, retention: timedelta | None = None, now: datetime | None = None
    ) -> list[str]:
        """Purge every deleted tenant past retention.

        Returns:
            Organization ids that were purged
        """
        retention = self.retention if retention is None else retention
        now = now or datetime.now(UTC)
        purged: list[str] = []
        for tenant in await self.registry.list_purgeable(retention, now=now):
            try:
                await self.purge_tenant(
                    tenant.organization_id, retention=retention, now=now
                )
            except Exception as exc:
                self.ops.error(
                    "tenant_purge_failed",
                    organization_id=tenant.organization_id,
                    error=_describe(exc),
                )
                continue
            purged.append(tenant.organization_id)
        return purged

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def migrate_tenant(self, organization_id: str) -> MigrationResult:
        """Bring an active tenant's schema up to date.

        Raises:
            NotFoundError, TenantNotReadyError, TenantUnavailableError
        """
        tenant = await self.registry.get_by_organization_id(organization_id)
        if tenant is None:
            raise NotFoundError(
                "Tenant not found", resource="tenant", resource_id=organization_id
            )
        if tenant.status in NOT_READY_STATUSES:
            raise TenantNotReadyError(organization_id, tenant.status.value)
        if tenant.status != TenantStatus.ACTIVE:
            raise TenantUnavailableError(organization_id, tenant.status.value)

        started = time.perf_counter()
        try:
            await self.provisioner.apply_schema(tenant.connection_ref)
        except Exception as exc:
            await self.activity.migration_failed(
                tenant.id, organization_id, _describe(exc)
            )
            raise
        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        await self.activity.migration_executed(tenant.id, organization_id, duration_ms)
        return MigrationResult(
            organization_id=organization_id,
            slug=tenant.slug,
            success=True,
            duration_ms=duration_ms,
        )

    async def migrate_all(
        self,
        parallel: bool = True,
        max_concurrency: int = 5,
        continue_on_error: bool = False,
    ) -> list[MigrationResult]:
        """Migrate every active tenant.

        Sequential runs stop at the first failure unless continue_on_error;
        parallel runs always report every tenant.
        """
        tenants = await self.registry.list_tenants(status=TenantStatus.ACTIVE)

        async def run(tenant: TenantRecord) -> MigrationResult:
            started = time.perf_counter()
            try:
                return await self.migrate_tenant(tenant.organization_id)
            except Exception as exc:
                if not parallel and not continue_on_error:
                    raise
                return MigrationResult(
                    organization_id=tenant.organization_id,
                    slug=tenant.slug,
                    success=False,
                    duration_ms=round((time.perf_counter() - started) * 1000, 2),
                    error=_describe(exc),
                )

        if not parallel:
            return [await run(tenant) for tenant in tenants]

        semaphore = asyncio.Semaphore(max_concurrency)

        async def bounded(tenant: TenantRecord) -> MigrationResult:
            async with semaphore:
                return await run(tenant)

        return list(await asyncio.gather(*(bounded(t) for t in tenants)))

    async def check_tenant_health(self, organization_id: str) -> HealthCheckResult:
        """Report whether the tenant database answers and which tables it has."""
        tenant = await self.registry.get_by_organization_id(organization_id)
        if tenant is None:
            return HealthCheckResult(
                organization_id=organization_id,
                slug="unknown",
                status="unhealthy",
                can_connect=False,
                error="Tenant not found",
            )
        try:
            tables = await self.provisioner.list_tables(tenant.connection_ref)
        except Exception as exc:
            return HealthCheckResult(
                organization_id=organization_id,
                slug=tenant.slug,
                status="unhealthy",
                can_connect=False,
                tenant_status=tenant.status,
                error=_describe(exc),
            )
        return HealthCheckResult(
            organization_id=organization_id,
            slug=tenant.slug,
            status="healthy",
            can_connect=True,
            tenant_status=tenant.status,
            tables=sorted(tables),
        )

    async def check_all_tenants_health(self) -> list[HealthCheckResult]:
        tenants = await self.registry.list_tenants()
        return list(
            await asyncio.gather(
                *(self.check_tenant_health(t.organization_id) for t in tenants)
            )
        )

    async def close(self) -> None:
        """Drain every cached tenant connection."""
        await self.cache.invalidate_all()
