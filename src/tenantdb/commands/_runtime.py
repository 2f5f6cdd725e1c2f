"""Async plumbing shared by CLI commands."""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import TypeVar

import typer
from rich.console import Console

from tenantdb.core.database import build_engine, build_session_factory
from tenantdb.core.errors import AppException
from tenantdb.core.jobs.registry import close_arq_pool, init_arq_pool
from tenantdb.core.logging import configure_logging
from tenantdb.tenancy.manager import TenantDatabaseManager


T = TypeVar("T")

console = Console()


@asynccontextmanager
async def open_manager(with_queue: bool = False) -> AsyncIterator[TenantDatabaseManager]:
    """A manager on a small catalog pool, torn down when the command ends."""
    engine = build_engine(pool_size=2, max_overflow=0)
    if with_queue:
        await init_arq_pool()
    manager = TenantDatabaseManager.from_session_factory(build_session_factory(engine))
    try:
        yield manager
    finally:
        await manager.close()
        if with_queue:
            await close_arq_pool()
        await engine.dispose()


def run(
    action: Callable[[TenantDatabaseManager], Awaitable[T]],
    with_queue: bool = False,
) -> T:
    """Run one manager operation, turning domain errors into exit code 1."""
    configure_logging()

    async def _main() -> T:
        async with open_manager(with_queue=with_queue) as manager:
            return await action(manager)

    try:
        return asyncio.run(_main())
    except AppException as e:
        console.print(f"[red]Error:[/red] {e.message} ({e.error_code})")
        if e.details:
            console.print(f"[dim]{e.details}[/dim]")
        raise typer.Exit(1) from None
