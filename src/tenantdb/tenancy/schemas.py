"""Typed records that cross the registry boundary."""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tenantdb.core.constants import MAX_SLUG_LENGTH
from tenantdb.tenancy.models import TenantStatus


def _as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops the offset)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class TenantRecord(BaseModel):
    """Immutable snapshot of one catalog row.

    This is the only shape in which tenant metadata leaves the registry.
    It reflects the row at read time and must be re-read before any
    decision that depends on the current status.
    """

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: UUID
    organization_id: str = Field(min_length=1)
    slug: str = Field(min_length=1, max_length=MAX_SLUG_LENGTH)
    name: str
    connection_ref: str = Field(min_length=1)
    status: TenantStatus
    failure_reason: str | None = None
    provisioning_details: dict[str, Any] | None = None
    provisioned_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None = None
    deleted_by: str | None = None

    @field_validator("provisioned_at", "created_at", "updated_at", "deleted_at")
    @classmethod
    def normalize_timestamps(cls, v: datetime | None) -> datetime | None:
        """Store every timestamp as an aware UTC datetime."""
        return _as_utc(v)

    @property
    def is_live(self) -> bool:
        """True while the tenant is not soft-deleted."""
        return self.deleted_at is None

    @property
    def is_active(self) -> bool:
        """True when the tenant may serve traffic."""
        return self.status == TenantStatus.ACTIVE and self.is_live


class ProvisioningJob(BaseModel):
    """Payload of the provision_tenant queue job."""

    organization_id: str
    slug: str
    requested_by: str | None = None
    requested_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def job_kwargs(self) -> dict[str, Any]:
        """Keyword arguments passed to the arq job function."""
        return {
            "organization_id": self.organization_id,
            "slug": self.slug,
            "requested_by": self.requested_by,
            "requested_at": self.requested_at.isoformat(),
        }


class MigrationResult(BaseModel):
    """Outcome of migrating one tenant database."""

    organization_id: str
    slug: str
    success: bool
    duration_ms: float
    error: str | None = None


class HealthCheckResult(BaseModel):
    """Connectivity report for one tenant database."""

    organization_id: str
    slug: str
    status: str  # healthy, unhealthy
    can_connect: bool
    tenant_status: TenantStatus | None = None
    tables: list[str] = Field(default_factory=list)
    error: str | None = None
