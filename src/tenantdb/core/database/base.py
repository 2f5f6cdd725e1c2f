"""Declarative base of the catalog and the column mixins shared with tenant databases.

Catalog tables (``tenants``, ``tenant_activity_logs``) hang off ``Base``.
Tables created inside each tenant database use their own declarative base
(``tenancy.tenant_schema.TenantBase``) so the two metadata sets never mix,
but both take their ids and timestamps from the mixins below.
"""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import DateTime, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Catalog metadata. Alembic migrates exactly these tables."""

    pass


class UUIDMixin:
    """Client-generated UUID primary key, so a row id is known before flush."""

    id: Mapped[UUID] = mapped_column(
        primary_key=True,
        default=uuid4,
        index=True,
    )


class TimestampMixin:
    """Server-side ``created_at``/``updated_at``.

    ``updated_at`` moves on every ORM update, including the status
    transitions the registry issues as conditional UPDATE statements.
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
