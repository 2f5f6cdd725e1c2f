"""Pytest configuration and shared fixtures.

The catalog runs on a throwaway SQLite file (aiosqlite); tenant databases
are replaced by StubProvisioner and CountingConnectionFactory.
"""

from collections.abc import AsyncGenerator
from datetime import timedelta
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from tenantdb.core.database import Base, build_session_factory
from tenantdb.tenancy import models  # noqa: F401  (registers catalog tables)
from tenantdb.tenancy.activity import ActivityLogger
from tenantdb.tenancy.cache import ConnectionCache
from tenantdb.tenancy.manager import TenantDatabaseManager
from tenantdb.tenancy.registry import TenantRegistry
from tests.factories.tenancy import CountingConnectionFactory, StubProvisioner


@pytest.fixture
async def catalog_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """Catalog database on a temporary SQLite file."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(catalog_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(catalog_engine)


@pytest.fixture
def registry(session_factory: async_sessionmaker[AsyncSession]) -> TenantRegistry:
    return TenantRegistry(session_factory)


@pytest.fixture
def provisioner() -> StubProvisioner:
    return StubProvisioner()


@pytest.fixture
def connection_factory() -> CountingConnectionFactory:
    return CountingConnectionFactory()


@pytest.fixture
def cache(
    registry: TenantRegistry, connection_factory: CountingConnectionFactory
) -> ConnectionCache:
    return ConnectionCache(
        registry,
        connection_factory=connection_factory,
        connect_timeout=2.0,
        max_size=10,
    )


@pytest.fixture
def enqueue() -> AsyncMock:
    """Stands in for the arq enqueue function."""
    return AsyncMock(return_value=None)


@pytest.fixture
def manager(
    registry: TenantRegistry,
    cache: ConnectionCache,
    provisioner: StubProvisioner,
    session_factory: async_sessionmaker[AsyncSession],
    enqueue: AsyncMock,
) -> TenantDatabaseManager:
    return TenantDatabaseManager(
        registry=registry,
        provisioner=provisioner,
        cache=cache,
        activity=ActivityLogger(session_factory),
        enqueue=enqueue,
        provision_timeout=5.0,
        retention=timedelta(days=30),
    )
