"""Shared API dependencies."""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from tenantdb.core.database import get_db
from tenantdb.core.errors import UnauthorizedError
from tenantdb.tenancy.connection import TenantConnection
from tenantdb.tenancy.manager import TenantDatabaseManager


# Catalog database session
DBSession = Annotated[AsyncSession, Depends(get_db)]


def get_tenant_manager(request: Request) -> TenantDatabaseManager:
    """The process-wide manager built in the application lifespan."""
    return request.app.state.tenant_manager


TenantManager = Annotated[TenantDatabaseManager, Depends(get_tenant_manager)]


def get_current_organization_id(request: Request) -> str:
    """Organization resolved by OrganizationContextMiddleware.

    Raises:
        UnauthorizedError: If the request carries no organization
    """
    organization_id = getattr(request.state, "organization_id", None)
    if not organization_id:
        raise UnauthorizedError("No active organization")
    return organization_id


def get_current_user_id(request: Request) -> str | None:
    return getattr(request.state, "user_id", None)


CurrentOrganizationId = Annotated[str, Depends(get_current_organization_id)]
CurrentUserId = Annotated[str | None, Depends(get_current_user_id)]


async def get_tenant_connection(
    organization_id: CurrentOrganizationId,
    manager: TenantManager,
) -> TenantConnection:
    """Route the request to the caller's tenant database."""
    return await manager.get_connection(organization_id)


TenantConnectionDep = Annotated[TenantConnection, Depends(get_tenant_connection)]


async def get_tenant_db(
    connection: TenantConnectionDep,
) -> AsyncGenerator[AsyncSession, None]:
    """Dependency that provides a session on the caller's tenant database.

    Commits on success, rolls back on error.
    """
    async with connection.session() as session:
        yield session


TenantDBSession = Annotated[AsyncSession, Depends(get_tenant_db)]
