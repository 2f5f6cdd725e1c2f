"""Unit tests for TenantDatabaseManager with a stub provisioner."""

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tenantdb.core.constants import PROVISION_TENANT_JOB
from tenantdb.core.errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ProvisioningFailedError,
    RollbackFailedError,
    ServiceUnavailableError,
    TenantNotReadyError,
    TenantUnavailableError,
)
from tenantdb.tenancy.manager import TenantDatabaseManager
from tenantdb.tenancy.models import TenantActivityLog, TenantStatus
from tests.factories.tenancy import CountingConnectionFactory, StubProvisioner


async def _activity(
    session_factory: async_sessionmaker[AsyncSession],
) -> list[TenantActivityLog]:
    async with session_factory() as session:
        result = await session.execute(select(TenantActivityLog))
        return list(result.scalars())


class TestSyncProvisioning:
    """Tests for provision_tenant."""

    @pytest.mark.asyncio
    async def test_provisions_active_tenant(
        self,
        manager: TenantDatabaseManager,
        provisioner: StubProvisioner,
        session_factory: async_sessionmaker[AsyncSession],
    ):
        tenant = await manager.provision_tenant(
            "org_1", "acme", "Acme Inc", owner_id="user_1"
        )

        assert tenant.status == TenantStatus.ACTIVE
        assert tenant.provisioned_at is not None
        assert "org_org_1" in provisioner.databases
        assert provisioner.owners["org_org_1"] == "user_1"
        actions = [a.action for a in await _activity(session_factory)]
        assert sorted(actions) == ["tenant.provisioned", "tenant.registered"]

    @pytest.mark.asyncio
    async def test_adopts_pending_registration(
        self, manager: TenantDatabaseManager, provisioner: StubProvisioner
    ):
        registered = await manager.init_tenant("org_1", "acme", "Acme Inc")

        tenant = await manager.provision_tenant("org_1", "acme", "Acme Inc")

        assert tenant.id == registered.id
        assert tenant.status == TenantStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_schema_failure_rolls_back_everything(
        self,
        manager: TenantDatabaseManager,
        provisioner: StubProvisioner,
        session_factory: async_sessionmaker[AsyncSession],
    ):
        boom = RuntimeError("migration crashed")
        provisioner.fail("apply_schema", boom)

        with pytest.raises(ProvisioningFailedError) as exc_info:
            await manager.provision_tenant("org_1", "acme", "Acme Inc")

        assert exc_info.value.__cause__ is boom
        assert exc_info.value.cause is boom
        assert not isinstance(exc_info.value, RollbackFailedError)
        assert await manager.get_by_slug("acme") is None
        assert await manager.get_by_organization_id("org_1") is None
        assert provisioner.databases == set()
        entries = {e.action: e for e in await _activity(session_factory)}
        assert entries["tenant.provisioning_failed"].severity == "error"

    @pytest.mark.asyncio
    async def test_slug_is_free_again_after_rollback(
        self, manager: TenantDatabaseManager, provisioner: StubProvisioner
    ):
        provisioner.fail("create_database", OSError("no space"))
        with pytest.raises(ProvisioningFailedError):
            await manager.provision_tenant("org_1", "acme", "Acme Inc")

        tenant = await manager.provision_tenant("org_1", "acme", "Acme Inc")

        assert tenant.status == TenantStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_timeout_is_a_provisioning_failure(
        self, manager: TenantDatabaseManager, provisioner: StubProvisioner
    ):
        provisioner.delay = 0.2
        manager.provision_timeout = 0.05

        with pytest.raises(ProvisioningFailedError) as exc_info:
            await manager.provision_tenant("org_1", "acme", "Acme Inc")

        assert isinstance(exc_info.value.cause, TimeoutError)
        assert await manager.get_by_organization_id("org_1") is None

    @pytest.mark.asyncio
    async def test_failed_rollback_is_escalated(
        self,
        manager: TenantDatabaseManager,
        provisioner: StubProvisioner,
        session_factory: async_sessionmaker[AsyncSession],
    ):
        boom = RuntimeError("migration crashed")
        provisioner.fail("apply_schema", boom)
        provisioner.fail("drop_database", OSError("permission denied"))
        manager.ops = MagicMock()

        with pytest.raises(RollbackFailedError) as exc_info:
            await manager.provision_tenant("org_1", "acme", "Acme Inc")

        assert exc_info.value.cause is boom
        assert isinstance(exc_info.value.rollback_errors[0], OSError)
        manager.ops.critical.assert_called_once()
        assert manager.ops.critical.call_args.args[0] == "tenant_rollback_failed"
        # The registration undo still ran after the drop failed
        assert await manager.get_by_organization_id("org_1") is None
        entries = {e.action: e for e in await _activity(session_factory)}
        assert entries["system.rollback_failed"].severity == "critical"

    @pytest.mark.asyncio
    async def test_cancelled_request_removes_registration(
        self, manager: TenantDatabaseManager, provisioner: StubProvisioner
    ):
        provisioner.delay = 0.5
        task = asyncio.create_task(manager.provision_tenant("org_1", "acme", "Acme Inc"))
        await asyncio.sleep(0.1)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert await manager.get_by_organization_id("org_1", include_deleted=True) is None
        assert provisioner.databases == set()
        tenant = await manager.provision_tenant("org_1", "acme", "Acme Inc")
        assert tenant.status == TenantStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_registration_conflict_propagates_unchanged(
        self, manager: TenantDatabaseManager, provisioner: StubProvisioner
    ):
        await manager.provision_tenant("org_1", "acme", "Acme Inc")

        with pytest.raises(ConflictError):
            await manager.provision_tenant("org_2", "acme", "Other Acme")

        assert provisioner.count("create_database") == 1


class TestAsyncProvisioning:
    """Tests for init/enqueue/complete/retry."""

    @pytest.mark.asyncio
    async def test_create_tenant_async_enqueues_job(
        self, manager: TenantDatabaseManager, enqueue: AsyncMock
    ):
        tenant = await manager.create_tenant_async(
            "org_1", "acme", "Acme Inc", requested_by="user_1"
        )

        assert tenant.status == TenantStatus.PENDING
        assert tenant.provisioning_details["job_id"] == "provision-tenant:org_1:0"
        enqueue.assert_awaited_once()
        args, kwargs = enqueue.await_args
        assert args == (PROVISION_TENANT_JOB,)
        assert kwargs["_job_id"] == "provision-tenant:org_1:0"
        assert kwargs["organization_id"] == "org_1"
        assert kwargs["requested_by"] == "user_1"

    @pytest.mark.asyncio
    async def test_only_pending_tenants_are_enqueued(
        self, manager: TenantDatabaseManager, enqueue: AsyncMock
    ):
        await manager.provision_tenant("org_1", "acme", "Acme Inc")

        with pytest.raises(InvalidTransitionError):
            await manager.provision_tenant_async("org_1")
        with pytest.raises(NotFoundError):
            await manager.provision_tenant_async("org_x")
        enqueue.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_complete_provisioning_is_idempotent(
        self, manager: TenantDatabaseManager, provisioner: StubProvisioner
    ):
        await manager.init_tenant("org_1", "acme", "Acme Inc")

        first = await manager.complete_provisioning("org_1", requested_by="user_1")
        second = await manager.complete_provisioning("org_1", requested_by="user_1")

        assert first.status == TenantStatus.ACTIVE
        assert second.status == TenantStatus.ACTIVE
        assert provisioner.count("apply_schema") == 1
        assert first.provisioning_details["current_step"] == "completed"

    @pytest.mark.asyncio
    async def test_provisioning_tenant_is_only_resumed_on_redelivery(
        self,
        manager: TenantDatabaseManager,
        provisioner: StubProvisioner,
        registry,
    ):
        await manager.init_tenant("org_1", "acme", "Acme Inc")
        await registry.mark_provisioning("org_1")

        untouched = await manager.complete_provisioning("org_1")
        resumed = await manager.complete_provisioning("org_1", resume=True, attempt=2)

        assert untouched.status == TenantStatus.PROVISIONING
        assert resumed.status == TenantStatus.ACTIVE
        assert provisioner.count("create_database") == 1

    @pytest.mark.asyncio
    async def test_failure_keeps_status_until_settled(
        self, manager: TenantDatabaseManager, provisioner: StubProvisioner
    ):
        await manager.init_tenant("org_1", "acme", "Acme Inc")
        provisioner.fail("apply_schema", RuntimeError("boom"))

        with pytest.raises(ProvisioningFailedError) as exc_info:
            await manager.complete_provisioning("org_1")
        in_flight = await manager.get_by_organization_id("org_1")
        failed = await manager.fail_provisioning("org_1", exc_info.value.cause, attempt=3)

        assert in_flight.status == TenantStatus.PROVISIONING
        assert failed.status == TenantStatus.FAILED
        assert "boom" in failed.failure_reason

    @pytest.mark.asyncio
    async def test_failed_tenant_is_not_provisioned_again_automatically(
        self, manager: TenantDatabaseManager, provisioner: StubProvisioner, registry
    ):
        await manager.init_tenant("org_1", "acme", "Acme Inc")
        await registry.mark_provisioning("org_1")
        await registry.mark_failed("org_1", "boom")

        tenant = await manager.complete_provisioning("org_1", resume=True, attempt=2)

        assert tenant.status == TenantStatus.FAILED
        assert provisioner.calls == []

    @pytest.mark.asyncio
    async def test_retry_moves_failed_tenant_back_to_pending(
        self, manager: TenantDatabaseManager, enqueue: AsyncMock, registry
    ):
        await manager.init_tenant("org_1", "acme", "Acme Inc")
        await registry.mark_provisioning("org_1")
        await registry.mark_failed("org_1", "boom")

        job_id = await manager.retry_provisioning("org_1", requested_by="ops")

        tenant = await manager.get_by_organization_id("org_1")
        assert tenant.status == TenantStatus.PENDING
        assert job_id == "provision-tenant:org_1:1"
        assert tenant.provisioning_details["retries"] == 1

    @pytest.mark.asyncio
    async def test_enqueue_failure_frees_the_slug(
        self, manager: TenantDatabaseManager, enqueue: AsyncMock
    ):
        enqueue.side_effect = ConnectionError("redis down")

        with pytest.raises(ServiceUnavailableError) as exc_info:
            await manager.create_tenant_async("org_1", "acme", "Acme Inc")

        assert exc_info.value.error_code == "provisioning_queue_unavailable"
        assert await manager.get_by_organization_id("org_1", include_deleted=True) is None

        enqueue.side_effect = None
        tenant = await manager.create_tenant_async("org_1", "acme", "Acme Inc")
        assert tenant.status == TenantStatus.PENDING

    @pytest.mark.asyncio
    async def test_enqueue_failure_on_retry_leaves_tenant_failed(
        self, manager: TenantDatabaseManager, enqueue: AsyncMock, registry
    ):
        await manager.init_tenant("org_1", "acme", "Acme Inc")
        await registry.mark_provisioning("org_1")
        await registry.mark_failed("org_1", "boom")
        enqueue.side_effect = ConnectionError("redis down")

        with pytest.raises(ServiceUnavailableError):
            await manager.retry_provisioning("org_1")

        tenant = await manager.get_by_organization_id("org_1")
        assert tenant.status == TenantStatus.FAILED
        assert "enqueue failed" in tenant.failure_reason
        enqueue.side_effect = None
        assert await manager.retry_provisioning("org_1") == "provision-tenant:org_1:2"

    @pytest.mark.asyncio
    async def test_catalog_error_after_start_is_a_provisioning_failure(
        self, manager: TenantDatabaseManager, registry, monkeypatch
    ):
        await manager.init_tenant("org_1", "acme", "Acme Inc")
        monkeypatch.setattr(
            registry,
            "update_provisioning_details",
            AsyncMock(side_effect=RuntimeError("catalog gone")),
        )

        with pytest.raises(ProvisioningFailedError) as exc_info:
            await manager.complete_provisioning("org_1")

        assert isinstance(exc_info.value.cause, RuntimeError)
        tenant = await manager.get_by_organization_id("org_1")
        assert tenant.status == TenantStatus.PROVISIONING

    @pytest.mark.asyncio
    async def test_catalog_error_on_activation_is_a_provisioning_failure(
        self, manager: TenantDatabaseManager, registry, monkeypatch
    ):
        await manager.init_tenant("org_1", "acme", "Acme Inc")
        monkeypatch.setattr(
            registry, "mark_active", AsyncMock(side_effect=OSError("connection reset"))
        )

        with pytest.raises(ProvisioningFailedError):
            await manager.complete_provisioning("org_1")

        failed = await manager.fail_provisioning("org_1", OSError("connection reset"))
        assert failed.status == TenantStatus.FAILED

    @pytest.mark.asyncio
    async def test_retry_of_active_tenant_is_rejected(
        self, manager: TenantDatabaseManager
    ):
        await manager.provision_tenant("org_1", "acme", "Acme Inc")

        with pytest.raises(InvalidTransitionError):
            await manager.retry_provisioning("org_1")


class TestRouting:
    """get_connection through the manager."""

    @pytest.mark.asyncio
    async def test_not_ready_until_provisioned(
        self,
        manager: TenantDatabaseManager,
        connection_factory: CountingConnectionFactory,
    ):
        await manager.init_tenant("org_1", "acme", "Acme Inc")

        with pytest.raises(TenantNotReadyError):
            await manager.get_connection("org_1")

        await manager.complete_provisioning("org_1")
        handle = await manager.get_connection("org_1")

        assert handle.connection_ref == "org_org_1"
        assert connection_factory.calls == 1

    @pytest.mark.asyncio
    async def test_uses_the_given_cache_even_when_empty(
        self,
        manager: TenantDatabaseManager,
        cache,
        connection_factory: CountingConnectionFactory,
    ):
        assert len(cache) == 0
        assert manager.cache is cache
        await manager.provision_tenant("org_1", "acme", "Acme Inc")

        handles = await asyncio.gather(
            *(manager.get_connection("org_1") for _ in range(10))
        )

        assert all(h is handles[0] for h in handles)
        assert connection_factory.calls == 1

    @pytest.mark.asyncio
    async def test_delete_invalidates_cached_handle(
        self,
        manager: TenantDatabaseManager,
        connection_factory: CountingConnectionFactory,
    ):
        await manager.provision_tenant("org_1", "acme", "Acme Inc")
        await manager.get_connection("org_1")

        deleted = await manager.delete_tenant("org_1", "user_9")

        assert deleted.status == TenantStatus.DELETED
        assert connection_factory.disposed() == 1
        with pytest.raises(TenantUnavailableError):
            await manager.get_connection("org_1")


class TestPurge:
    """Tests for purge_tenant and purge_expired."""

    @pytest.mark.asyncio
    async def test_live_tenant_cannot_be_purged(
        self, manager: TenantDatabaseManager, provisioner: StubProvisioner
    ):
        await manager.provision_tenant("org_1", "acme", "Acme Inc")

        with pytest.raises(InvalidTransitionError):
            await manager.purge_tenant("org_1")

        assert "org_org_1" in provisioner.databases

    @pytest.mark.asyncio
    async def test_purge_waits_for_retention(
        self, manager: TenantDatabaseManager, provisioner: StubProvisioner
    ):
        await manager.provision_tenant("org_1", "acme", "Acme Inc")
        await manager.delete_tenant("org_1", "user_9")

        with pytest.raises(InvalidTransitionError):
            await manager.purge_tenant("org_1")
        assert "org_org_1" in provisioner.databases

        purged = await manager.purge_tenant(
            "org_1", now=datetime.now(UTC) + timedelta(days=31)
        )

        assert purged.organization_id == "org_1"
        assert provisioner.databases == set()
        assert await manager.get_by_organization_id("org_1", include_deleted=True) is None

    @pytest.mark.asyncio
    async def test_purge_expired_skips_failures(
        self, manager: TenantDatabaseManager, provisioner: StubProvisioner
    ):
        for org, slug in [("org_1", "acme"), ("org_2", "globex")]:
            await manager.provision_tenant(org, slug, slug.title())
            await manager.delete_tenant(org, None)
        provisioner.fail("drop_database", OSError("busy"))

        purged = await manager.purge_expired(retention=timedelta(0))

        assert len(purged) == 1
        remaining = await manager.list_tenants(include_deleted=True)
        assert len(remaining) == 1


class TestMaintenance:
    """Tests for migrations and health checks."""

    @pytest.mark.asyncio
    async def test_migrate_all_reports_each_tenant(
        self, manager: TenantDatabaseManager, provisioner: StubProvisioner
    ):
        await manager.provision_tenant("org_1", "acme", "Acme Inc")
        await manager.provision_tenant("org_2", "globex", "Globex")
        provisioner.fail("apply_schema", RuntimeError("lock timeout"))

        results = await manager.migrate_all(parallel=True, max_concurrency=1)

        assert len(results) == 2
        assert sorted(r.success for r in results) == [False, True]
        failed = next(r for r in results if not r.success)
        assert "lock timeout" in failed.error

    @pytest.mark.asyncio
    async def test_sequential_migration_stops_at_first_failure(
        self, manager: TenantDatabaseManager, provisioner: StubProvisioner
    ):
        await manager.provision_tenant("org_1", "acme", "Acme Inc")
        await manager.provision_tenant("org_2", "globex", "Globex")
        provisioner.fail("apply_schema", RuntimeError("lock timeout"))

        with pytest.raises(RuntimeError):
            await manager.migrate_all(parallel=False)

    @pytest.mark.asyncio
    async def test_migrate_requires_active_tenant(self, manager: TenantDatabaseManager):
        await manager.init_tenant("org_1", "acme", "Acme Inc")

        with pytest.raises(TenantNotReadyError):
            await manager.migrate_tenant("org_1")

    @pytest.mark.asyncio
    async def test_health_reports_tables(self, manager: TenantDatabaseManager):
        await manager.provision_tenant("org_1", "acme", "Acme Inc")

        result = await manager.check_tenant_health("org_1")

        assert result.can_connect is True
        assert result.status == "healthy"
        assert "agents" in result.tables

    @pytest.mark.asyncio
    async def test_health_reports_unreachable_database(
        self, manager: TenantDatabaseManager, provisioner: StubProvisioner
    ):
        await manager.provision_tenant("org_1", "acme", "Acme Inc")
        provisioner.databases.clear()

        results = await manager.check_all_tenants_health()

        assert len(results) == 1
        assert results[0].can_connect is False
        assert results[0].error

    @pytest.mark.asyncio
    async def test_close_drains_connections(
        self,
        manager: TenantDatabaseManager,
        connection_factory: CountingConnectionFactory,
    ):
        await manager.provision_tenant("org_1", "acme", "Acme Inc")
        await asyncio.gather(*(manager.get_connection("org_1") for _ in range(3)))

        await manager.close()

        assert connection_factory.calls == 1
        assert connection_factory.disposed() == 1
