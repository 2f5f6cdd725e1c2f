"""structlog configuration and the operator alert channel.

Request logs and operator alerts share one pipeline; alerts are told apart
by the ``channel="operations"`` key so log shipping can route them to paging.
"""

import logging
from typing import Any

import structlog

from tenantdb.config import settings


OPERATIONS_CHANNEL = "operations"


def configure_logging(json_logs: bool | None = None) -> None:
    """Configure structlog for the API, the worker and the CLI.

    Args:
        json_logs: Force JSON output; defaults to JSON in production only
    """
    if json_logs is None:
        json_logs = settings.is_production

    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            (
                structlog.processors.JSONRenderer()
                if json_logs
                else structlog.dev.ConsoleRenderer()
            ),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_ops_logger(**initial_values: object) -> Any:
    """Logger for operational incidents (failed provisioning, failed rollback)."""
    return structlog.get_logger().bind(channel=OPERATIONS_CHANNEL, **initial_values)
