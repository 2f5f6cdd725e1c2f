"""Async engine and session factories.

Engines are built explicitly and owned by whoever starts the process
(the FastAPI lifespan, the arq worker or the CLI); nothing is created
at import time.
"""

from collections.abc import AsyncGenerator
from typing import Any

from fastapi import Request
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from tenantdb.config import settings


def build_engine(
    url: str | None = None,
    pool_size: int | None = None,
    max_overflow: int | None = None,
    **kwargs: Any,
) -> AsyncEngine:
    """Create an async engine.

    Pool sizing only applies to PostgreSQL URLs; other dialects (the
    in-memory SQLite used by tests) keep SQLAlchemy's default pool.

    Args:
        url: Database URL, defaults to the catalog database
        pool_size: Pool size, defaults to catalog_pool_size
        max_overflow: Overflow, defaults to catalog_max_overflow
        **kwargs: Passed through to create_async_engine

    Returns:
        AsyncEngine instance
    """
    url = url or settings.async_catalog_database_url
    if url.startswith("postgresql"):
        kwargs.setdefault(
            "pool_size",
            settings.catalog_pool_size if pool_size is None else pool_size,
        )
        kwargs.setdefault(
            "max_overflow",
            settings.catalog_max_overflow if max_overflow is None else max_overflow,
        )
        kwargs.setdefault("pool_pre_ping", True)  # Verify connections before use
    return create_async_engine(url, echo=settings.database_echo, **kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to an engine."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Dependency that provides a catalog database session.

    Usage:
        @router.get("/items")
        async def list_items(db: AsyncSession = Depends(get_db)):
            ...
    """
    session_factory: async_sessionmaker[AsyncSession] = (
        request.app.state.catalog_session_factory
    )
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
