"""Error handling module with RFC 7807 Problem Details."""

from tenantdb.core.errors.exceptions import (
    AppException,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ProvisioningFailedError,
    RollbackFailedError,
    ServiceUnavailableError,
    TenantNotReadyError,
    TenantUnavailableError,
    UnauthorizedError,
    ValidationError,
)
from tenantdb.core.errors.handlers import (
    FieldError,
    ProblemDetail,
    register_exception_handlers,
)


__all__ = [
    # Exceptions
    "AppException",
    "ConflictError",
    # Handlers
    "FieldError",
    "InvalidTransitionError",
    "NotFoundError",
    "ProblemDetail",
    "ProvisioningFailedError",
    "RollbackFailedError",
    "ServiceUnavailableError",
    "TenantNotReadyError",
    "TenantUnavailableError",
    "UnauthorizedError",
    "ValidationError",
    "register_exception_handlers",
]
