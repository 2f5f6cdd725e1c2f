"""Request context middleware.

This module provides middleware for:
- Resolving the calling organization and user from upstream headers
- Request tracing with unique IDs
"""

import uuid
from typing import TYPE_CHECKING

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from tenantdb.core.constants import ORGANIZATION_ID_HEADER, USER_ID_HEADER


if TYPE_CHECKING:
    from starlette.types import ASGIApp


class OrganizationContextMiddleware(BaseHTTPMiddleware):
    """Copies the caller's organization and user into request.state.

    Authentication happens upstream; this service trusts the gateway
    to set ``X-Organization-Id`` and ``X-User-Id``.

    Attributes:
        exclude_paths: Paths that never carry an organization
    """

    def __init__(
        self,
        app: "ASGIApp",
        exclude_paths: list[str] | None = None,
    ) -> None:
        super().__init__(app)
        self.exclude_paths = exclude_paths or [
            "/health",
            "/docs",
            "/redoc",
            "/openapi.json",
        ]

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        request.state.organization_id = None
        request.state.user_id = None
        if any(request.url.path.startswith(path) for path in self.exclude_paths):
            return await call_next(request)

        organization_id = request.headers.get(ORGANIZATION_ID_HEADER) or None
        user_id = request.headers.get(USER_ID_HEADER) or None
        request.state.organization_id = organization_id
        request.state.user_id = user_id

        if organization_id:
            structlog.contextvars.bind_contextvars(organization_id=organization_id)
        if user_id:
            structlog.contextvars.bind_contextvars(user_id=user_id)

        return await call_next(request)


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Middleware that adds a unique request ID to each request.

    The request ID is added to:
    - request.state.request_id
    - Response header X-Request-ID
    - Structlog context
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())

        request.state.request_id = request_id
        request.state.trace_id = request_id  # Alias for error handler

        structlog.contextvars.bind_contextvars(request_id=request_id)
        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars(
                "request_id", "organization_id", "user_id"
            )

        response.headers["X-Request-ID"] = request_id
        return response
