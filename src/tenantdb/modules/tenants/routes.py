"""Tenant API routes."""

from fastapi import APIRouter, Query, status
from sqlalchemy import text

from tenantdb.api.dependencies import (
    CurrentOrganizationId,
    CurrentUserId,
    TenantConnectionDep,
    TenantDBSession,
    TenantManager,
)
from tenantdb.core.errors import NotFoundError
from tenantdb.core.utils.text import generate_slug

from .schemas import (
    PingResponse,
    ProvisioningMode,
    RetryResponse,
    SlugAvailability,
    TenantCreate,
    TenantCreateResponse,
    TenantResponse,
)


router = APIRouter(prefix="/tenants", tags=["tenants"])


# ============================================================
# Creation
# ============================================================


@router.post(
    "",
    response_model=TenantCreateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create tenant",
    description=(
        "Create the database of the caller's organization. In sync mode the "
        "response is sent once the database is ready; in async mode the "
        "tenant is returned as pending and provisioned by a worker."
    ),
)
async def create_tenant(
    data: TenantCreate,
    organization_id: CurrentOrganizationId,
    user_id: CurrentUserId,
    manager: TenantManager,
    mode: ProvisioningMode = Query(default=ProvisioningMode.ASYNC),
) -> TenantCreateResponse:
    slug = data.slug or generate_slug(data.name)
    if mode == ProvisioningMode.SYNC:
        tenant = await manager.provision_tenant(
            organization_id, slug, data.name, owner_id=user_id
        )
        return TenantCreateResponse.model_validate(tenant, from_attributes=True)

    tenant = await manager.create_tenant_async(
        organization_id, slug, data.name, requested_by=user_id
    )
    return TenantCreateResponse.model_validate(
        {
            **tenant.model_dump(),
            "job_id": (tenant.provisioning_details or {}).get("job_id"),
        }
    )


@router.get(
    "/availability/{slug}",
    response_model=SlugAvailability,
    summary="Check slug availability",
)
async def check_availability(slug: str, manager: TenantManager) -> SlugAvailability:
    tenant = await manager.get_tenant_by_slug(slug)
    return SlugAvailability(slug=slug, available=tenant is None)


# ============================================================
# Current tenant
# ============================================================


@router.get(
    "/current",
    response_model=TenantResponse,
    summary="Get current tenant",
    description="Lifecycle status of the caller's tenant.",
)
async def get_current_tenant(
    organization_id: CurrentOrganizationId,
    manager: TenantManager,
) -> TenantResponse:
    tenant = await manager.get_by_organization_id(organization_id)
    if tenant is None:
        raise NotFoundError(
            "Tenant not found", resource="tenant", resource_id=organization_id
        )
    return TenantResponse.model_validate(tenant, from_attributes=True)


@router.get(
    "/current/ping",
    response_model=PingResponse,
    summary="Ping tenant database",
    description="Runs a trivial query on the caller's tenant database.",
)
async def ping_current_tenant(
    connection: TenantConnectionDep,
    db: TenantDBSession,
) -> PingResponse:
    result = await db.execute(text("SELECT 1"))
    return PingResponse(
        organization_id=connection.organization_id,
        database=connection.connection_ref,
        ok=result.scalar_one() == 1,
    )


@router.delete(
    "/current",
    response_model=TenantResponse,
    summary="Delete current tenant",
    description="Soft-deletes the tenant. Its database is kept until purged.",
)
async def delete_current_tenant(
    organization_id: CurrentOrganizationId,
    user_id: CurrentUserId,
    manager: TenantManager,
) -> TenantResponse:
    tenant = await manager.delete_tenant(organization_id, actor_user_id=user_id)
    return TenantResponse.model_validate(tenant, from_attributes=True)


# ============================================================
# Operator actions
# ============================================================


@router.post(
    "/{organization_id}/retry",
    response_model=RetryResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Retry provisioning",
    description="Re-queue provisioning of a tenant that ended up failed.",
)
async def retry_provisioning(
    organization_id: str,
    user_id: CurrentUserId,
    manager: TenantManager,
) -> RetryResponse:
    job_id = await manager.retry_provisioning(organization_id, requested_by=user_id)
    return RetryResponse(organization_id=organization_id, job_id=job_id)
