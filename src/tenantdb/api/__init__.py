"""HTTP API package."""

from tenantdb.api.router import api_router


__all__ = ["api_router"]
