"""create_tenant_catalog

Revision ID: c7d1e2f3a4b5
Revises:
Create Date: 2026-10-19 00:01:00.000000

This migration adds:
- tenants: one row per organization database
- tenant_activity_logs: lifecycle events kept for operators
- Partial unique indexes so slug and organization are unique among live rows
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "c7d1e2f3a4b5"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade database schema."""
    op.create_table(
        "tenants",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("organization_id", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(63), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("connection_ref", sa.String(63), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column(
            "provisioning_details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=True,
        ),
        sa.Column("provisioned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_by", sa.String(255), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint("connection_ref", name="uq_tenants_connection_ref"),
    )
    op.create_index("ix_tenants_id", "tenants", ["id"])
    op.create_index("ix_tenants_organization_id", "tenants", ["organization_id"])
    op.create_index("ix_tenants_slug", "tenants", ["slug"])
    op.create_index("ix_tenants_status", "tenants", ["status"])
    op.create_index("ix_tenants_deleted_at", "tenants", ["deleted_at"])

    # Uniqueness only among live rows; a deleted tenant keeps its row until purge
    op.create_index(
        "uq_tenants_live_slug",
        "tenants",
        ["slug"],
        unique=True,
        postgresql_where=sa.text("deleted_at IS NULL"),
    )
    op.create_index(
        "uq_tenants_live_organization_id",
        "tenants",
        ["organization_id"],
        unique=True,
        postgresql_where=sa.text("deleted_at IS NULL"),
    )

    op.create_table(
        "tenant_activity_logs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "tenant_id",
            sa.Uuid(),
            sa.ForeignKey("tenants.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("organization_id", sa.String(255), nullable=False),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("category", sa.String(30), nullable=False),
        sa.Column("severity", sa.String(20), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column(
            "metadata",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=True,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index("ix_tenant_activity_logs_id", "tenant_activity_logs", ["id"])
    op.create_index(
        "ix_tenant_activity_logs_tenant_id", "tenant_activity_logs", ["tenant_id"]
    )
    op.create_index(
        "ix_tenant_activity_logs_organization_id",
        "tenant_activity_logs",
        ["organization_id"],
    )
    op.create_index(
        "ix_tenant_activity_logs_action", "tenant_activity_logs", ["action"]
    )
    op.create_index(
        "ix_tenant_activity_logs_created_at",
        "tenant_activity_logs",
        ["created_at"],
    )


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_table("tenant_activity_logs")
    op.drop_index("uq_tenants_live_organization_id", table_name="tenants")
    op.drop_index("uq_tenants_live_slug", table_name="tenants")
    op.drop_table("tenants")
