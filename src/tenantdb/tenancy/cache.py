"""Per-process cache of tenant connection handles.

At most one live handle exists per tenant. Construction on a cache miss is
single-flight: the first caller starts one construction task and every
concurrent caller for the same tenant awaits that same task. Requests for
different tenants never wait on each other.

Map mutations never span an ``await``, so the event loop serializes them
without an explicit lock.
"""

import asyncio
from collections import OrderedDict
from typing import Any

import structlog

from tenantdb.config import settings
from tenantdb.core.errors import (
    NotFoundError,
    ServiceUnavailableError,
    TenantNotReadyError,
    TenantUnavailableError,
)
from tenantdb.tenancy.connection import (
    ConnectionFactory,
    TenantConnection,
    open_tenant_connection,
)
from tenantdb.tenancy.models import NOT_READY_STATUSES, TenantStatus
from tenantdb.tenancy.registry import TenantRegistry


logger = structlog.get_logger()


class ConnectionCache:
    """Maps organization id to a live TenantConnection.

    Args:
        registry: Registry used to resolve tenants on a miss
        connection_factory: Opens a handle for an active tenant
        connect_timeout: Seconds allowed for one construction
        max_size: Handles kept before the least recently used is evicted
    """

    def __init__(
        self,
        registry: TenantRegistry,
        connection_factory: ConnectionFactory = open_tenant_connection,
        connect_timeout: float | None = None,
        max_size: int | None = None,
    ) -> None:
        self.registry = registry
        self.connection_factory = connection_factory
        self.connect_timeout = (
            settings.tenant_connect_timeout_seconds
            if connect_timeout is None
            else connect_timeout
        )
        self.max_size = settings.tenant_cache_max_size if max_size is None else max_size
        self._handles: OrderedDict[str, TenantConnection] = OrderedDict()
        self._inflight: dict[str, asyncio.Task[TenantConnection]] = {}
        self._background: set[asyncio.Task[None]] = set()
        self.constructions = 0
        self.evictions = 0

    def __len__(self) -> int:
        return len(self._handles)

    def __contains__(self, organization_id: object) -> bool:
        return organization_id in self._handles

    def stats(self) -> dict[str, Any]:
        """Counters for health and debug endpoints."""
        return {
            "cached": len(self._handles),
            "in_flight": len(self._inflight),
            "constructions": self.constructions,
            "evictions": self.evictions,
            "max_size": self.max_size,
        }

    async def get(self, organization_id: str) -> TenantConnection:
        """Return the tenant's handle, opening it on first use.

        Raises:
            NotFoundError: If the organization has no tenant
            TenantNotReadyError: If the tenant is pending or provisioning
            TenantUnavailableError: If the tenant failed or was deleted
            ServiceUnavailableError: If opening the connection timed out
        """
        handle = self._handles.get(organization_id)
        if handle is not None:
            self._handles.move_to_end(organization_id)
            return handle

        task = self._inflight.get(organization_id)
        if task is None:
            task = asyncio.create_task(
                self._construct(organization_id),
                name=f"tenant-connect:{organization_id}",
            )
            task.add_done_callback(self._retrieve_exception)
            self._inflight[organization_id] = task

        # Shielded: a cancelled caller must not cancel the shared construction
        return await asyncio.shield(task)

    async def _construct(self, organization_id: str) -> TenantConnection:
        task = asyncio.current_task()
        try:
            # Deleted rows are included so they map to TenantUnavailableError
            tenant = await self.registry.get_by_organization_id(
                organization_id, include_deleted=True
            )
            if tenant is None:
                raise NotFoundError(
                    "Tenant not found",
                    resource="tenant",
                    resource_id=organization_id,
                )
            if tenant.status in NOT_READY_STATUSES:
                raise TenantNotReadyError(organization_id, tenant.status.value)
            if tenant.status != TenantStatus.ACTIVE:
                raise TenantUnavailableError(organization_id, tenant.status.value)

            try:
                async with asyncio.timeout(self.connect_timeout):
                    handle = await self.connection_factory(tenant)
            except TimeoutError as exc:
                logger.warning(
                    "tenant_connection_timeout",
                    organization_id=organization_id,
                    timeout_seconds=self.connect_timeout,
                )
                raise ServiceUnavailableError(
                    "Tenant database did not answer in time",
                    error_code="tenant_connect_timeout",
                    details={"organization_id": organization_id},
                ) from exc
            self.constructions += 1

            if self._inflight.get(organization_id) is not task:
                # Invalidated while connecting: never publish this handle
                await handle.dispose()
                raise TenantUnavailableError(
                    organization_id,
                    tenant.status.value,
                    message="Tenant connection was invalidated",
                )

            self._handles[organization_id] = handle
            self._evict_overflow()
            return handle
        finally:
            if self._inflight.get(organization_id) is task:
                del self._inflight[organization_id]

    @staticmethod
    def _retrieve_exception(task: asyncio.Task[TenantConnection]) -> None:
        # Waiters may all have been cancelled; mark the error as seen
        if not task.cancelled():
            task.exception()

    def _evict_overflow(self) -> None:
        while len(self._handles) > self.max_size:
            organization_id, handle = self._handles.popitem(last=False)
            self.evictions += 1
            logger.info("tenant_connection_evicted", organization_id=organization_id)
            dispose = asyncio.create_task(self._dispose(handle))
            self._background.add(dispose)
            dispose.add_done_callback(self._background.discard)

    async def _dispose(self, handle: TenantConnection) -> None:
        try:
            await handle.dispose()
        except Exception as exc:
            logger.warning(
                "tenant_connection_dispose_failed",
                organization_id=handle.organization_id,
                error=str(exc),
            )

    async def invalidate(self, organization_id: str) -> bool:
        """Drop and close the tenant's handle. Safe when nothing is cached.

        An in-flight construction is detached: its result is disposed
        instead of cached and its waiters get TenantUnavailableError.

        Returns:
            True if a handle or construction was dropped
        """
        detached = self._inflight.pop(organization_id, None)
        handle = self._handles.pop(organization_id, None)
        if handle is not None:
            await self._dispose(handle)
        dropped = handle is not None or detached is not None
        if dropped:
            logger.info("tenant_connection_invalidated", organization_id=organization_id)
        return dropped

    async def invalidate_all(self) -> int:
        """Close every cached handle (process shutdown).

        Returns:
            Number of handles closed
        """
        handles = list(self._handles.values())
        self._handles.clear()
        self._inflight.clear()
        await asyncio.gather(*(self._dispose(h) for h in handles))
        if self._background:
            await asyncio.gather(*self._background)
        logger.info("tenant_connections_drained", count=len(handles))
        return len(handles)
