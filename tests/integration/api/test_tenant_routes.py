"""Integration tests for the tenant endpoints.

The app runs without its lifespan; the catalog is the SQLite test
database and tenant databases come from the stub provisioner.
"""

from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tenantdb.api.dependencies import get_tenant_db
from tenantdb.main import create_app
from tenantdb.tenancy.manager import TenantDatabaseManager
from tenantdb.tenancy.models import TenantStatus
from tests.factories.tenancy import StubProvisioner


pytestmark = pytest.mark.integration

ORG_HEADERS = {"X-Organization-Id": "org_1", "X-User-Id": "user_1"}


@pytest.fixture
def app(
    manager: TenantDatabaseManager,
    session_factory: async_sessionmaker[AsyncSession],
) -> FastAPI:
    application = create_app()
    application.state.tenant_manager = manager
    application.state.catalog_session_factory = session_factory
    return application


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


class TestHealth:
    async def test_liveness(self, client: AsyncClient):
        response = await client.get("/health/live")

        assert response.status_code == 200
        assert response.json() == {"status": "alive"}
        assert "X-Request-ID" in response.headers

    async def test_readiness_reports_catalog_and_cache(self, client: AsyncClient):
        response = await client.get("/health/ready")

        assert response.status_code == 200
        data = response.json()
        assert data["checks"]["catalog_database"] == "ok"
        assert data["tenant_connections"]["cached"] == 0


class TestCreateTenant:
    async def test_sync_create_returns_active_tenant(
        self, client: AsyncClient, provisioner: StubProvisioner
    ):
        response = await client.post(
            "/api/v1/tenants",
            params={"mode": "sync"},
            json={"name": "Acme Inc"},
            headers=ORG_HEADERS,
        )

        assert response.status_code == 201
        data = response.json()
        assert data["slug"] == "acme-inc"
        assert data["status"] == "active"
        assert "connection_ref" not in data
        assert provisioner.owners["org_org_1"] == "user_1"

    async def test_async_create_returns_pending_with_job(
        self, client: AsyncClient, enqueue: AsyncMock
    ):
        response = await client.post(
            "/api/v1/tenants",
            json={"name": "Acme Inc", "slug": "acme"},
            headers=ORG_HEADERS,
        )

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "pending"
        assert data["job_id"] == "provision-tenant:org_1:0"
        enqueue.assert_awaited_once()

    async def test_taken_slug_conflicts(self, client: AsyncClient):
        await client.post(
            "/api/v1/tenants", json={"name": "Acme", "slug": "acme"}, headers=ORG_HEADERS
        )

        response = await client.post(
            "/api/v1/tenants",
            json={"name": "Other Acme", "slug": "acme"},
            headers={"X-Organization-Id": "org_2"},
        )

        assert response.status_code == 409
        assert response.json()["type"].endswith("/errors/slug_taken")

    async def test_queue_outage_is_503_and_create_can_be_repeated(
        self, client: AsyncClient, enqueue: AsyncMock
    ):
        enqueue.side_effect = ConnectionError("redis down")
        body = {"name": "Acme", "slug": "acme"}

        failed = await client.post("/api/v1/tenants", json=body, headers=ORG_HEADERS)
        enqueue.side_effect = None
        repeated = await client.post("/api/v1/tenants", json=body, headers=ORG_HEADERS)

        assert failed.status_code == 503
        assert failed.json()["type"].endswith("/errors/provisioning_queue_unavailable")
        assert repeated.status_code == 201
        assert repeated.json()["status"] == "pending"

    async def test_missing_organization_is_unauthorized(self, client: AsyncClient):
        response = await client.post("/api/v1/tenants", json={"name": "Acme"})

        assert response.status_code == 401

    async def test_availability(self, client: AsyncClient):
        await client.post(
            "/api/v1/tenants", json={"name": "Acme", "slug": "acme"}, headers=ORG_HEADERS
        )

        taken = await client.get("/api/v1/tenants/availability/acme")
        free = await client.get("/api/v1/tenants/availability/globex")

        assert taken.json() == {"slug": "acme", "available": False}
        assert free.json() == {"slug": "globex", "available": True}


class TestCurrentTenant:
    async def test_unknown_tenant_is_404(self, client: AsyncClient):
        response = await client.get("/api/v1/tenants/current", headers=ORG_HEADERS)

        assert response.status_code == 404

    async def test_pending_tenant_ping_is_503_with_retry_after(
        self, client: AsyncClient
    ):
        await client.post(
            "/api/v1/tenants", json={"name": "Acme", "slug": "acme"}, headers=ORG_HEADERS
        )

        response = await client.get("/api/v1/tenants/current/ping", headers=ORG_HEADERS)

        assert response.status_code == 503
        assert "Retry-After" in response.headers
        assert response.json()["tenant_status"] == "pending"

    async def test_ping_routes_to_tenant_database(
        self, app: FastAPI, client: AsyncClient
    ):
        session = MagicMock()
        session.execute = AsyncMock(return_value=MagicMock(scalar_one=lambda: 1))

        async def fake_tenant_db() -> AsyncGenerator[MagicMock, None]:
            yield session

        app.dependency_overrides[get_tenant_db] = fake_tenant_db
        await client.post(
            "/api/v1/tenants",
            params={"mode": "sync"},
            json={"name": "Acme", "slug": "acme"},
            headers=ORG_HEADERS,
        )

        response = await client.get("/api/v1/tenants/current/ping", headers=ORG_HEADERS)

        assert response.status_code == 200
        assert response.json() == {
            "organization_id": "org_1",
            "database": "org_org_1",
            "ok": True,
        }

    async def test_delete_then_ping_is_410(
        self, client: AsyncClient, manager: TenantDatabaseManager
    ):
        await client.post(
            "/api/v1/tenants",
            params={"mode": "sync"},
            json={"name": "Acme", "slug": "acme"},
            headers=ORG_HEADERS,
        )

        deleted = await client.delete("/api/v1/tenants/current", headers=ORG_HEADERS)
        response = await client.get("/api/v1/tenants/current/ping", headers=ORG_HEADERS)

        assert deleted.status_code == 200
        assert deleted.json()["status"] == "deleted"
        assert response.status_code == 410
        tenant = await manager.get_by_organization_id("org_1", include_deleted=True)
        assert tenant.deleted_by == "user_1"


class TestRetry:
    async def test_retry_failed_tenant(
        self, client: AsyncClient, manager: TenantDatabaseManager, enqueue: AsyncMock
    ):
        await manager.init_tenant("org_1", "acme", "Acme")
        await manager.registry.mark_provisioning("org_1")
        await manager.registry.mark_failed("org_1", "boom")

        response = await client.post(
            "/api/v1/tenants/org_1/retry", headers={"X-User-Id": "admin"}
        )

        assert response.status_code == 202
        assert response.json()["job_id"] == "provision-tenant:org_1:1"
        tenant = await manager.get_by_organization_id("org_1")
        assert tenant.status == TenantStatus.PENDING

    async def test_retry_active_tenant_conflicts(
        self, client: AsyncClient, manager: TenantDatabaseManager
    ):
        await manager.provision_tenant("org_1", "acme", "Acme")

        response = await client.post("/api/v1/tenants/org_1/retry")

        assert response.status_code == 409
