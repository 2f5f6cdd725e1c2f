"""RFC 7807 Problem Details exception handlers.

Every error leaves the API as ``application/problem+json``. Tenant
lifecycle errors carry the tenant status so clients can tell a workspace
that is still being set up (503 + Retry-After) from one that is gone (410).

See: https://tools.ietf.org/html/rfc7807
"""

from typing import TYPE_CHECKING, Any, cast

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from tenantdb.config import settings
from tenantdb.core.constants import TENANT_NOT_READY_RETRY_AFTER_SECONDS
from tenantdb.core.errors.exceptions import (
    AppException,
    TenantNotReadyError,
    TenantUnavailableError,
)


if TYPE_CHECKING:
    from starlette.types import ExceptionHandler


logger = structlog.get_logger()

PROBLEM_JSON = "application/problem+json"


class FieldError(BaseModel):
    """A single invalid request field."""

    field: str
    message: str
    type: str | None = None


class ProblemDetail(BaseModel):
    """RFC 7807 Problem Details body.

    Extra members (``tenant_status``, ``organization_id``...) are allowed
    and flattened into the top level, as the RFC suggests.
    """

    type: str
    title: str
    status: int
    detail: str
    instance: str | None = None
    errors: list[FieldError] | None = None
    trace_id: str | None = None

    model_config = {"extra": "allow"}


def _problem(
    request: Request,
    status_code: int,
    error_code: str,
    detail: str,
    extra: dict[str, Any] | None = None,
    errors: list[FieldError] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    body: dict[str, Any] = ProblemDetail(
        type=f"{settings.api_docs_base_url}/errors/{error_code}",
        title=error_code.replace("_", " ").title(),
        status=status_code,
        detail=detail,
        instance=request.url.path,
        errors=errors,
        trace_id=getattr(request.state, "trace_id", None),
    ).model_dump(exclude_none=True)
    for key, value in (extra or {}).items():
        body.setdefault(key, value)
    return JSONResponse(
        status_code=status_code,
        content=body,
        headers=headers,
        media_type=PROBLEM_JSON,
    )


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Render an AppException.

    Details of server-side failures (provisioning causes, rollback
    errors) are withheld in production.
    """
    if isinstance(exc, TenantNotReadyError | TenantUnavailableError):
        log_method = logger.info
    elif exc.status_code >= 500:
        log_method = logger.error
    else:
        log_method = logger.warning
    log_method(
        "app_exception",
        error_code=exc.error_code,
        status_code=exc.status_code,
        path=request.url.path,
        details=exc.details,
    )

    extra = exc.details
    if exc.status_code >= 500 and settings.is_production:
        extra = {}

    headers = None
    if isinstance(exc, TenantNotReadyError):
        headers = {"Retry-After": str(TENANT_NOT_READY_RETRY_AFTER_SECONDS)}

    return _problem(
        request, exc.status_code, exc.error_code, exc.message, extra, headers=headers
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Render request validation failures with one entry per field."""
    errors = [
        FieldError(
            field=".".join(str(part) for part in error.get("loc", ()) if part != "body")
            or "unknown",
            message=error.get("msg", "Invalid value"),
            type=error.get("type"),
        )
        for error in exc.errors()
    ]
    logger.warning("validation_error", path=request.url.path, error_count=len(errors))
    return _problem(
        request,
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "validation_error",
        "Request validation failed",
        errors=errors,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort: log the traceback, answer with an opaque 500."""
    logger.exception(
        "unhandled_exception",
        path=request.url.path,
        error_type=type(exc).__name__,
    )
    return _problem(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "internal_error",
        "An unexpected error occurred",
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(
        AppException, cast("ExceptionHandler", app_exception_handler)
    )
    app.add_exception_handler(
        RequestValidationError, cast("ExceptionHandler", validation_exception_handler)
    )
    app.add_exception_handler(Exception, generic_exception_handler)
