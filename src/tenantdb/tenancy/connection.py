"""Pooled connection handle bound to one tenant database."""

from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from tenantdb.config import settings
from tenantdb.core.database import build_engine, build_session_factory
from tenantdb.tenancy.schemas import TenantRecord


logger = structlog.get_logger()


@dataclass(eq=False)
class TenantConnection:
    """Live engine and session factory for one tenant database.

    Owned by the ConnectionCache. Request handlers open sessions from it
    but never dispose it.
    """

    organization_id: str
    connection_ref: str
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    opened_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Open a session that commits on success and rolls back on error."""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def dispose(self) -> None:
        """Close every pooled connection of this handle."""
        await self.engine.dispose()
        logger.info(
            "tenant_connection_disposed",
            organization_id=self.organization_id,
            connection_ref=self.connection_ref,
        )


ConnectionFactory = Callable[[TenantRecord], Awaitable[TenantConnection]]


async def open_tenant_connection(tenant: TenantRecord) -> TenantConnection:
    """Build a pooled engine for a tenant database and check it answers.

    Args:
        tenant: Active tenant whose connection_ref names the database

    Returns:
        A ready TenantConnection
    """
    engine = build_engine(
        settings.tenant_database_url(tenant.connection_ref),
        pool_size=settings.tenant_pool_size,
        max_overflow=settings.tenant_max_overflow,
    )
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except BaseException:
        await engine.dispose()
        raise

    logger.info(
        "tenant_connection_opened",
        organization_id=tenant.organization_id,
        connection_ref=tenant.connection_ref,
    )
    return TenantConnection(
        organization_id=tenant.organization_id,
        connection_ref=tenant.connection_ref,
        engine=engine,
        session_factory=build_session_factory(engine),
    )
