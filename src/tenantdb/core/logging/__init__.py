"""Logging module with structured logging and request tracking."""

from tenantdb.core.logging.config import (
    OPERATIONS_CHANNEL,
    configure_logging,
    get_ops_logger,
)
from tenantdb.core.logging.middleware import RequestLoggingMiddleware


__all__ = [
    "OPERATIONS_CHANNEL",
    "RequestLoggingMiddleware",
    "configure_logging",
    "get_ops_logger",
]
