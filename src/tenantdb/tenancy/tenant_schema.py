"""Schema created inside every tenant database, and its default data."""

from typing import Any

import structlog
from sqlalchemy import JSON, Boolean, String, UniqueConstraint, func, select
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncConnection
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from tenantdb.core.constants import MAX_NAME_LENGTH, MAX_ORGANIZATION_ID_LENGTH
from tenantdb.core.database.base import TimestampMixin, UUIDMixin


logger = structlog.get_logger()


class TenantBase(DeclarativeBase):
    """Base class for models living in a tenant database."""

    pass


DEFAULT_AGENT_PERMISSIONS: dict[str, Any] = {
    "departments": {"type": "all"},
    "channels": {"type": "all"},
    "messages": {"can_edit": False, "can_delete": False},
    "access_finished_chats": False,
}


class Agent(TenantBase, UUIDMixin, TimestampMixin):
    """A user acting inside the organization."""

    __tablename__ = "agents"

    user_id: Mapped[str] = mapped_column(
        String(MAX_ORGANIZATION_ID_LENGTH), nullable=False, unique=True
    )
    role: Mapped[str] = mapped_column(String(50), nullable=False, default="member")
    permissions: Mapped[dict[str, Any]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=False,
        default=lambda: dict(DEFAULT_AGENT_PERMISSIONS),
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class Department(TenantBase, UUIDMixin, TimestampMixin):
    __tablename__ = "departments"

    name: Mapped[str] = mapped_column(String(MAX_NAME_LENGTH), nullable=False, unique=True)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class Tag(TenantBase, UUIDMixin, TimestampMixin):
    __tablename__ = "tags"

    name: Mapped[str] = mapped_column(String(MAX_NAME_LENGTH), nullable=False, unique=True)
    color: Mapped[str] = mapped_column(String(7), nullable=False)


class Ending(TenantBase, UUIDMixin, TimestampMixin):
    __tablename__ = "endings"
    __table_args__ = (UniqueConstraint("title", name="uq_endings_title"),)

    title: Mapped[str] = mapped_column(String(MAX_NAME_LENGTH), nullable=False)
    rating_behavior: Mapped[str] = mapped_column(
        String(20), nullable=False, default="default"
    )


DEFAULT_DEPARTMENT = "General"
DEFAULT_TAGS: list[tuple[str, str]] = [
    ("Awaiting reply", "#22c55e"),
    ("Internal", "#991b1b"),
    ("New", "#3b82f6"),
]
DEFAULT_ENDINGS: list[str] = ["Question", "Mistake", "Pending", "Rejected", "Resolved"]


async def create_tenant_schema(conn: AsyncConnection) -> None:
    """Create missing tenant tables. Existing tables are left untouched."""
    await conn.run_sync(TenantBase.metadata.create_all)


async def _is_empty(conn: AsyncConnection, model: type[TenantBase]) -> bool:
    result = await conn.execute(select(func.count()).select_from(model))
    return result.scalar_one() == 0


async def seed_tenant_defaults(conn: AsyncConnection, owner_user_id: str | None = None) -> None:
    """Insert the default department, tags, endings and the owner agent.

    Each group is only seeded while its table is empty, so re-running
    after a partial or complete seed changes nothing.

    Args:
        conn: Connection to the tenant database (inside a transaction)
        owner_user_id: User who created the organization, becomes owner agent
    """
    if await _is_empty(conn, Department):
        await conn.execute(
            Department.__table__.insert(),
            [{"name": DEFAULT_DEPARTMENT, "is_default": True}],
        )
    if await _is_empty(conn, Tag):
        await conn.execute(
            Tag.__table__.insert(),
            [{"name": name, "color": color} for name, color in DEFAULT_TAGS],
        )
    if await _is_empty(conn, Ending):
        await conn.execute(
            Ending.__table__.insert(),
            [{"title": title} for title in DEFAULT_ENDINGS],
        )

    if owner_user_id:
        existing = await conn.execute(
            select(Agent.id).where(Agent.user_id == owner_user_id)
        )
        if existing.first() is None:
            await conn.execute(
                Agent.__table__.insert(),
                [{"user_id": owner_user_id, "role": "owner"}],
            )

    logger.info("tenant_defaults_seeded", owner_user_id=owner_user_id)
