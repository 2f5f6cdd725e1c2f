"""Physical tenant database operations (create, migrate, drop)."""

from collections.abc import Callable
from typing import Protocol

import structlog
from sqlalchemy import inspect, text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from tenantdb.config import settings
from tenantdb.core.errors import ValidationError
from tenantdb.core.utils.text import is_valid_database_name
from tenantdb.tenancy.tenant_schema import create_tenant_schema, seed_tenant_defaults


logger = structlog.get_logger()


class TenantDatabaseProvisioner(Protocol):
    """What the manager and the worker need from the database server."""

    async def database_exists(self, database_name: str) -> bool: ...

    async def create_database(self, database_name: str) -> bool: ...

    async def apply_schema(
        self, database_name: str, owner_user_id: str | None = None
    ) -> None: ...

    async def drop_database(self, database_name: str) -> None: ...

    async def list_tables(self, database_name: str) -> list[str]: ...


def _quoted(database_name: str) -> str:
    if not is_valid_database_name(database_name):
        raise ValidationError(
            "Invalid database name",
            errors=[{"field": "connection_ref", "message": database_name}],
        )
    return f'"{database_name}"'


class PostgresProvisioner:
    """Creates and drops tenant databases on the configured PostgreSQL server.

    CREATE/DROP DATABASE cannot run inside a transaction, so the admin
    engine uses AUTOCOMMIT. Every engine here is short-lived (NullPool)
    and disposed after use; request traffic goes through the cache.
    """

    def __init__(
        self,
        admin_url: str | None = None,
        url_for: Callable[[str], str] | None = None,
    ) -> None:
        self.admin_url = admin_url or settings.tenant_admin_database_url
        self.url_for = url_for or settings.tenant_database_url

    def _admin_engine(self) -> AsyncEngine:
        return create_async_engine(
            self.admin_url,
            isolation_level="AUTOCOMMIT",
            poolclass=NullPool,
        )

    def _tenant_engine(self, database_name: str) -> AsyncEngine:
        return create_async_engine(self.url_for(database_name), poolclass=NullPool)

    async def database_exists(self, database_name: str) -> bool:
        engine = self._admin_engine()
        try:
            async with engine.connect() as conn:
                result = await conn.execute(
                    text("SELECT 1 FROM pg_database WHERE datname = :name"),
                    {"name": database_name},
                )
                return result.first() is not None
        finally:
            await engine.dispose()

    async def create_database(self, database_name: str) -> bool:
        """Create the database unless it already exists.

        Returns:
            True if the database was created by this call
        """
        quoted = _quoted(database_name)
        if await self.database_exists(database_name):
            logger.info("tenant_database_exists", database_name=database_name)
            return False

        engine = self._admin_engine()
        try:
            async with engine.connect() as conn:
                await conn.execute(text(f"CREATE DATABASE {quoted}"))
        finally:
            await engine.dispose()

        logger.info("tenant_database_created", database_name=database_name)
        return True

    async def apply_schema(
        self, database_name: str, owner_user_id: str | None = None
    ) -> None:
        """Create missing tenant tables and seed defaults in one transaction."""
        _quoted(database_name)
        engine = self._tenant_engine(database_name)
        try:
            async with engine.begin() as conn:
                await create_tenant_schema(conn)
                await seed_tenant_defaults(conn, owner_user_id=owner_user_id)
        finally:
            await engine.dispose()

        logger.info("tenant_schema_applied", database_name=database_name)

    async def drop_database(self, database_name: str) -> None:
        """Terminate open sessions and drop the database if it exists."""
        quoted = _quoted(database_name)
        engine = self._admin_engine()
        try:
            async with engine.connect() as conn:
                await conn.execute(
                    text(
                        "SELECT pg_terminate_backend(pid) FROM pg_stat_activity "
                        "WHERE datname = :name AND pid <> pg_backend_pid()"
                    ),
                    {"name": database_name},
                )
                await conn.execute(text(f"DROP DATABASE IF EXISTS {quoted}"))
        finally:
            await engine.dispose()

        logger.info("tenant_database_dropped", database_name=database_name)

    async def list_tables(self, database_name: str) -> list[str]:
        """Table names present in the tenant database."""
        _quoted(database_name)
        engine = self._tenant_engine(database_name)
        try:
            async with engine.connect() as conn:
                return await conn.run_sync(
                    lambda sync_conn: inspect(sync_conn).get_table_names()
                )
        finally:
            await engine.dispose()
