"""Domain exceptions for the application.

These exceptions represent business-logic errors and are automatically
converted to RFC 7807 Problem Details responses by the exception handlers.
Every tenant lifecycle failure has its own class so callers can tell a
tenant that is still being set up apart from one that is gone.
"""

from typing import Any


class AppException(Exception):
    """Base exception for all application errors.

    All domain exceptions should inherit from this class.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code for clients
        status_code: HTTP status code for the response
        details: Additional error details
    """

    message: str = "An unexpected error occurred"
    error_code: str = "internal_error"
    status_code: int = 500

    def __init__(
        self,
        message: str | None = None,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message or self.message
        self.error_code = error_code or self.error_code
        self.details = details or {}
        super().__init__(self.message)


class NotFoundError(AppException):
    """Raised when a requested resource is not found.

    Example:
        raise NotFoundError("Tenant not found", resource="tenant", resource_id=org_id)
    """

    message = "Resource not found"
    error_code = "not_found"
    status_code = 404

    def __init__(
        self,
        message: str | None = None,
        resource: str | None = None,
        resource_id: str | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        if resource:
            details["resource"] = resource
        if resource_id:
            details["resource_id"] = resource_id
        super().__init__(message=message, details=details, **kwargs)


class ConflictError(AppException):
    """Raised when there's a conflict with existing data.

    Example:
        raise ConflictError("Slug already taken", error_code="slug_taken")
    """

    message = "Resource conflict"
    error_code = "conflict"
    status_code = 409


class ValidationError(AppException):
    """Raised when input data fails validation.

    Example:
        raise ValidationError(
            "Invalid slug",
            errors=[{"field": "slug", "message": "Use lowercase letters, digits and hyphens"}]
        )
    """

    message = "Validation error"
    error_code = "validation_error"
    status_code = 422

    def __init__(
        self,
        message: str | None = None,
        errors: list[dict[str, Any]] | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        if errors:
            details["errors"] = errors
        super().__init__(message=message, details=details, **kwargs)


class UnauthorizedError(AppException):
    """Raised when the request carries no resolved organization or user.

    Example:
        raise UnauthorizedError("No active organization")
    """

    message = "Authentication required"
    error_code = "unauthorized"
    status_code = 401


class ServiceUnavailableError(AppException):
    """Raised when a required service is unavailable.

    Example:
        raise ServiceUnavailableError("Tenant database did not answer in time")
    """

    message = "Service temporarily unavailable"
    error_code = "service_unavailable"
    status_code = 503


class InvalidTransitionError(AppException):
    """Raised when a tenant status change finds an unexpected source status.

    The registry applies every transition as a conditional update, so a stale
    or duplicated caller ends up here instead of overwriting newer state.
    """

    message = "Invalid tenant status transition"
    error_code = "invalid_transition"
    status_code = 409

    def __init__(
        self,
        message: str | None = None,
        organization_id: str | None = None,
        current_status: str | None = None,
        expected_status: list[str] | None = None,
        target_status: str | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        if organization_id:
            details["organization_id"] = organization_id
        if current_status:
            details["current_status"] = current_status
        if expected_status:
            details["expected_status"] = expected_status
        if target_status:
            details["target_status"] = target_status
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(message=message, details=details, **kwargs)


class TenantNotReadyError(AppException):
    """Raised when a connection is requested for a pending/provisioning tenant."""

    message = "Your workspace is still being set up, try again shortly"
    error_code = "tenant_not_ready"
    status_code = 503

    def __init__(
        self,
        organization_id: str,
        status: str,
        message: str | None = None,
    ) -> None:
        self.organization_id = organization_id
        self.status = status
        super().__init__(
            message=message,
            details={"organization_id": organization_id, "tenant_status": status},
        )


class TenantUnavailableError(AppException):
    """Raised when a connection is requested for a failed/deleted tenant."""

    message = "Tenant is not available"
    error_code = "tenant_unavailable"
    status_code = 410

    def __init__(
        self,
        organization_id: str,
        status: str,
        message: str | None = None,
    ) -> None:
        self.organization_id = organization_id
        self.status = status
        super().__init__(
            message=message,
            details={"organization_id": organization_id, "tenant_status": status},
        )


class ProvisioningFailedError(AppException):
    """Raised when physical schema creation for a tenant failed.

    Always chained (``raise ... from cause``) and keeps the cause in ``cause``.
    """

    message = "Tenant provisioning failed"
    error_code = "provisioning_failed"
    status_code = 500

    def __init__(
        self,
        organization_id: str,
        cause: BaseException,
        message: str | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", {})
        details["organization_id"] = organization_id
        details["cause"] = f"{type(cause).__name__}: {cause}"
        self.organization_id = organization_id
        self.cause = cause
        super().__init__(message=message, details=details, **kwargs)


class RollbackFailedError(ProvisioningFailedError):
    """Raised when undoing a failed synchronous provisioning also failed.

    The tenant may be left half-created; operators are alerted separately.
    """

    message = "Tenant provisioning failed and could not be rolled back"
    error_code = "provisioning_rollback_failed"

    def __init__(
        self,
        organization_id: str,
        cause: BaseException,
        rollback_errors: list[BaseException],
        message: str | None = None,
    ) -> None:
        self.rollback_errors = rollback_errors
        super().__init__(
            organization_id,
            cause,
            message=message,
            details={
                "rollback_errors": [
                    f"{type(err).__name__}: {err}" for err in rollback_errors
                ]
            },
        )
