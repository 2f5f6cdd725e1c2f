"""Catalog database models for the tenant registry."""

from datetime import datetime
from enum import StrEnum
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, DateTime, ForeignKey, Index, String, Text, func, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from tenantdb.core.constants import (
    MAX_ACTION_LENGTH,
    MAX_CATEGORY_LENGTH,
    MAX_DATABASE_NAME_LENGTH,
    MAX_NAME_LENGTH,
    MAX_ORGANIZATION_ID_LENGTH,
    MAX_SLUG_LENGTH,
    MAX_STATUS_LENGTH,
)
from tenantdb.core.database.base import Base, TimestampMixin, UUIDMixin


JSONType = JSON().with_variant(JSONB(), "postgresql")

LIVE_ROW = text("deleted_at IS NULL")


class TenantStatus(StrEnum):
    """Lifecycle status of a tenant."""

    PENDING = "pending"
    PROVISIONING = "provisioning"
    ACTIVE = "active"
    FAILED = "failed"
    DELETED = "deleted"


# target status -> statuses it may be reached from
ALLOWED_TRANSITIONS: dict[TenantStatus, frozenset[TenantStatus]] = {
    TenantStatus.PROVISIONING: frozenset({TenantStatus.PENDING}),
    TenantStatus.ACTIVE: frozenset({TenantStatus.PROVISIONING}),
    TenantStatus.FAILED: frozenset({TenantStatus.PENDING, TenantStatus.PROVISIONING}),
    TenantStatus.PENDING: frozenset({TenantStatus.FAILED}),
    TenantStatus.DELETED: frozenset(
        {
            TenantStatus.PENDING,
            TenantStatus.PROVISIONING,
            TenantStatus.ACTIVE,
            TenantStatus.FAILED,
        }
    ),
}

NOT_READY_STATUSES = frozenset({TenantStatus.PENDING, TenantStatus.PROVISIONING})
UNAVAILABLE_STATUSES = frozenset({TenantStatus.FAILED, TenantStatus.DELETED})
UNPROVISIONED_STATUSES = frozenset(
    {TenantStatus.PENDING, TenantStatus.PROVISIONING, TenantStatus.FAILED}
)


class Tenant(Base, UUIDMixin, TimestampMixin):
    """One organization's entry in the catalog.

    Slug and organization uniqueness only hold among live rows
    (deleted_at IS NULL); the physical database name is unique across
    all rows because a soft-deleted tenant keeps its database until purge.
    """

    __tablename__ = "tenants"
    __table_args__ = (
        Index(
            "uq_tenants_live_slug",
            "slug",
            unique=True,
            postgresql_where=LIVE_ROW,
            sqlite_where=LIVE_ROW,
        ),
        Index(
            "uq_tenants_live_organization_id",
            "organization_id",
            unique=True,
            postgresql_where=LIVE_ROW,
            sqlite_where=LIVE_ROW,
        ),
    )

    organization_id: Mapped[str] = mapped_column(
        String(MAX_ORGANIZATION_ID_LENGTH),
        nullable=False,
        index=True,
    )
    slug: Mapped[str] = mapped_column(
        String(MAX_SLUG_LENGTH),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(
        String(MAX_NAME_LENGTH),
        nullable=False,
    )
    connection_ref: Mapped[str] = mapped_column(
        String(MAX_DATABASE_NAME_LENGTH),
        nullable=False,
        unique=True,
    )
    status: Mapped[str] = mapped_column(
        String(MAX_STATUS_LENGTH),
        nullable=False,
        default=TenantStatus.PENDING.value,
        index=True,
    )
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    provisioning_details: Mapped[dict[str, Any] | None] = mapped_column(
        JSONType,
        nullable=True,
    )
    provisioned_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True,
    )
    deleted_by: Mapped[str | None] = mapped_column(
        String(MAX_ORGANIZATION_ID_LENGTH),
        nullable=True,
    )

    def __repr__(self) -> str:
        return (
            f"<Tenant(organization_id={self.organization_id}, slug={self.slug}, "
            f"status={self.status})>"
        )


class TenantActivityLog(Base, UUIDMixin):
    """Lifecycle event of a tenant, kept for operators.

    Attributes:
        tenant_id: Catalog row the event belongs to (nulled on purge)
        organization_id: Organization, kept after the row is purged
        action: Event name (tenant.provisioned, migration.failed, ...)
        category: tenant, migration or system
        severity: info, warning, error or critical
        description: Human-readable summary
        metadata_: Extra context
    """

    __tablename__ = "tenant_activity_logs"

    tenant_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("tenants.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    organization_id: Mapped[str] = mapped_column(
        String(MAX_ORGANIZATION_ID_LENGTH),
        nullable=False,
        index=True,
    )
    action: Mapped[str] = mapped_column(
        String(MAX_ACTION_LENGTH),
        nullable=False,
        index=True,
    )
    category: Mapped[str] = mapped_column(
        String(MAX_CATEGORY_LENGTH),
        nullable=False,
    )
    severity: Mapped[str] = mapped_column(
        String(MAX_STATUS_LENGTH),
        nullable=False,
        default="info",
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    metadata_: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata",  # Column name in database
        JSONType,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        return (
            f"<TenantActivityLog(organization_id={self.organization_id}, "
            f"action={self.action}, severity={self.severity})>"
        )
