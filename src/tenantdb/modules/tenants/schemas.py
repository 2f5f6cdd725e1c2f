"""Tenant API request and response schemas."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from tenantdb.core.constants import MAX_NAME_LENGTH, MAX_SLUG_LENGTH
from tenantdb.tenancy.models import TenantStatus


class ProvisioningMode(StrEnum):
    SYNC = "sync"
    ASYNC = "async"


class TenantCreate(BaseModel):
    """Schema for creating the caller's tenant."""

    name: str = Field(..., min_length=1, max_length=MAX_NAME_LENGTH)
    slug: str | None = Field(
        default=None,
        min_length=1,
        max_length=MAX_SLUG_LENGTH,
        description="Derived from the name when omitted",
    )


class TenantResponse(BaseModel):
    """Public view of a tenant. Never exposes connection details."""

    model_config = ConfigDict(from_attributes=True)

    organization_id: str
    slug: str
    name: str
    status: TenantStatus
    failure_reason: str | None = None
    provisioned_at: datetime | None = None
    created_at: datetime
    deleted_at: datetime | None = None


class TenantCreateResponse(TenantResponse):
    job_id: str | None = None


class SlugAvailability(BaseModel):
    slug: str
    available: bool


class RetryResponse(BaseModel):
    organization_id: str
    job_id: str


class PingResponse(BaseModel):
    organization_id: str
    database: str
    ok: bool
