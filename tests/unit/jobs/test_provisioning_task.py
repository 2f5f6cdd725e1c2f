"""Unit tests for the provision_tenant and purge_expired_tenants jobs."""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from arq import Retry

from tenantdb.core.errors import ProvisioningFailedError
from tenantdb.core.jobs.tasks.cleanup import purge_expired_tenants
from tenantdb.core.jobs.tasks.provisioning import provision_tenant
from tenantdb.core.jobs.utils import provisioning_backoff
from tenantdb.tenancy.manager import TenantDatabaseManager
from tenantdb.tenancy.models import TenantStatus
from tests.factories.tenancy import StubProvisioner


def _ctx(manager: TenantDatabaseManager, job_try: int = 1, max_attempts: int = 3) -> dict:
    return {
        "tenant_manager": manager,
        "job_try": job_try,
        "job_id": "provision-tenant:org_1:0",
        "provision_max_attempts": max_attempts,
    }


class TestProvisionTenantJob:
    """Tests for the provision_tenant job body."""

    @pytest.mark.asyncio
    async def test_provisions_pending_tenant(
        self, manager: TenantDatabaseManager, provisioner: StubProvisioner
    ):
        await manager.init_tenant("org_1", "acme", "Acme Inc")

        result = await provision_tenant(
            _ctx(manager), organization_id="org_1", slug="acme", requested_by="user_1"
        )

        assert result == {"organization_id": "org_1", "status": "active"}
        assert provisioner.owners["org_org_1"] == "user_1"

    @pytest.mark.asyncio
    async def test_second_run_is_a_no_op(
        self, manager: TenantDatabaseManager, provisioner: StubProvisioner
    ):
        await manager.init_tenant("org_1", "acme", "Acme Inc")
        await provision_tenant(_ctx(manager), organization_id="org_1", slug="acme")

        result = await provision_tenant(
            _ctx(manager, job_try=2), organization_id="org_1", slug="acme"
        )

        assert result["status"] == "active"
        assert provisioner.count("create_database") == 1
        assert provisioner.count("apply_schema") == 1

    @pytest.mark.asyncio
    async def test_failure_with_tries_left_retries_with_backoff(
        self, manager: TenantDatabaseManager, provisioner: StubProvisioner
    ):
        await manager.init_tenant("org_1", "acme", "Acme Inc")
        provisioner.fail("apply_schema", RuntimeError("db restarting"))

        with pytest.raises(Retry) as exc_info:
            await provision_tenant(
                _ctx(manager, job_try=2), organization_id="org_1", slug="acme"
            )

        assert exc_info.value.defer_score == int(provisioning_backoff(2) * 1000)
        tenant = await manager.get_by_organization_id("org_1")
        assert tenant.status == TenantStatus.PROVISIONING

    @pytest.mark.asyncio
    async def test_redelivery_resumes_and_completes(
        self, manager: TenantDatabaseManager, provisioner: StubProvisioner
    ):
        await manager.init_tenant("org_1", "acme", "Acme Inc")
        provisioner.fail("apply_schema", RuntimeError("db restarting"))
        with pytest.raises(Retry):
            await provision_tenant(_ctx(manager), organization_id="org_1", slug="acme")

        result = await provision_tenant(
            _ctx(manager, job_try=2), organization_id="org_1", slug="acme"
        )

        assert result["status"] == "active"
        assert provisioner.count("create_database") == 2

    @pytest.mark.asyncio
    async def test_last_try_marks_tenant_failed(
        self, manager: TenantDatabaseManager, provisioner: StubProvisioner
    ):
        await manager.init_tenant("org_1", "acme", "Acme Inc")
        provisioner.fail("apply_schema", RuntimeError("schema error"), times=3)
        manager.ops = MagicMock()

        with pytest.raises(ProvisioningFailedError):
            await provision_tenant(
                _ctx(manager, job_try=3), organization_id="org_1", slug="acme"
            )

        tenant = await manager.get_by_organization_id("org_1")
        assert tenant.status == TenantStatus.FAILED
        assert "schema error" in tenant.failure_reason
        manager.ops.error.assert_called_once()
        assert manager.ops.error.call_args.args[0] == "tenant_provisioning_failed"

    @pytest.mark.asyncio
    async def test_catalog_error_with_tries_left_retries(
        self, manager: TenantDatabaseManager, registry, monkeypatch
    ):
        await manager.init_tenant("org_1", "acme", "Acme Inc")
        monkeypatch.setattr(
            registry, "mark_active", AsyncMock(side_effect=OSError("catalog gone"))
        )

        with pytest.raises(Retry):
            await provision_tenant(_ctx(manager), organization_id="org_1", slug="acme")

        tenant = await manager.get_by_organization_id("org_1")
        assert tenant.status == TenantStatus.PROVISIONING

    @pytest.mark.asyncio
    async def test_catalog_error_on_last_try_marks_tenant_failed(
        self, manager: TenantDatabaseManager, registry, monkeypatch
    ):
        await manager.init_tenant("org_1", "acme", "Acme Inc")
        monkeypatch.setattr(
            registry, "mark_active", AsyncMock(side_effect=OSError("catalog gone"))
        )

        with pytest.raises(ProvisioningFailedError):
            await provision_tenant(
                _ctx(manager, job_try=3), organization_id="org_1", slug="acme"
            )

        tenant = await manager.get_by_organization_id("org_1")
        assert tenant.status == TenantStatus.FAILED
        assert "catalog gone" in tenant.failure_reason

    @pytest.mark.asyncio
    async def test_unexpected_error_is_retried_then_settled(self):
        manager = MagicMock()
        manager.complete_provisioning = AsyncMock(side_effect=RuntimeError("lost"))
        manager.fail_provisioning = AsyncMock()

        with pytest.raises(Retry):
            await provision_tenant(_ctx(manager), organization_id="org_1", slug="acme")
        manager.fail_provisioning.assert_not_awaited()

        with pytest.raises(RuntimeError):
            await provision_tenant(
                _ctx(manager, job_try=3), organization_id="org_1", slug="acme"
            )
        manager.fail_provisioning.assert_awaited_once()
        assert isinstance(manager.fail_provisioning.await_args.args[1], RuntimeError)

    @pytest.mark.asyncio
    async def test_deleted_tenant_is_skipped(
        self, manager: TenantDatabaseManager, provisioner: StubProvisioner
    ):
        await manager.init_tenant("org_1", "acme", "Acme Inc")
        await manager.delete_tenant("org_1", "user_9")

        result = await provision_tenant(
            _ctx(manager), organization_id="org_1", slug="acme"
        )

        assert result["status"] is None
        assert provisioner.calls == []


class TestBackoff:
    """Tests for provisioning_backoff."""

    def test_doubles_per_attempt(self):
        assert provisioning_backoff(1, base_seconds=2.0) == 2.0
        assert provisioning_backoff(2, base_seconds=2.0) == 4.0
        assert provisioning_backoff(3, base_seconds=2.0) == 8.0


class TestPurgeExpiredTenantsJob:
    """Tests for the purge_expired_tenants cron job."""

    @pytest.mark.asyncio
    async def test_reports_purged_tenants(self):
        manager = MagicMock()
        manager.purge_expired = AsyncMock(return_value=["org_1", "org_2"])

        result = await purge_expired_tenants({"tenant_manager": manager})

        assert result == {"purged": ["org_1", "org_2"], "purged_count": 2}
        manager.purge_expired.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_purges_through_manager(
        self, manager: TenantDatabaseManager, provisioner: StubProvisioner
    ):
        await manager.provision_tenant("org_1", "acme", "Acme Inc")
        await manager.delete_tenant("org_1", None)
        manager.retention = timedelta(0)

        result = await purge_expired_tenants({"tenant_manager": manager})

        assert result["purged"] == ["org_1"]
        assert provisioner.databases == set()
