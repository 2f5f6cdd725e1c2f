"""Request context (organization, user, request id)."""

from tenantdb.core.context.middleware import (
    OrganizationContextMiddleware,
    RequestIdMiddleware,
)


__all__ = [
    "OrganizationContextMiddleware",
    "RequestIdMiddleware",
]
