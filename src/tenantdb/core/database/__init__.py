"""Database layer - engines, session factories, base models and mixins."""

from tenantdb.core.database.base import Base, TimestampMixin, UUIDMixin
from tenantdb.core.database.session import (
    build_engine,
    build_session_factory,
    get_db,
)


__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDMixin",
    "build_engine",
    "build_session_factory",
    "get_db",
]
