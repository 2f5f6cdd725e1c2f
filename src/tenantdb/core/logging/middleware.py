"""Request logging middleware.

One ``request_completed`` event per request, tagged with the organization
the request was routed to. Request id, organization and user come from
the structlog contextvars bound by the context middleware.
"""

import time
from typing import Any

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint


logger = structlog.get_logger()

QUIET_PATHS = ("/health/live", "/health/ready", "/docs", "/redoc", "/openapi.json")

# Statuses a tenant in the wrong lifecycle state answers with
TENANT_STATE_STATUSES = {503: "tenant_not_ready", 410: "tenant_unavailable"}


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs every routed request with its duration and outcome.

    Probe and docs paths are skipped so load balancer checks do not
    drown the tenant traffic.
    """

    def __init__(self, app: Any, quiet_paths: tuple[str, ...] = QUIET_PATHS) -> None:
        super().__init__(app)
        self.quiet_paths = quiet_paths

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        if request.url.path.startswith(self.quiet_paths):
            return await call_next(request)

        started = time.perf_counter()
        fields: dict[str, Any] = {
            "method": request.method,
            "path": request.url.path,
        }

        try:
            response = await call_next(request)
        except Exception:
            logger.exception("request_failed", duration_ms=_elapsed_ms(started), **fields)
            raise

        fields["status_code"] = response.status_code
        fields["duration_ms"] = _elapsed_ms(started)
        if getattr(request.state, "organization_id", None) is None:
            fields["routed"] = False

        if response.status_code in TENANT_STATE_STATUSES and fields.get("routed", True):
            # Expected while a tenant is provisioning or after deletion
            logger.info(
                "request_completed",
                tenant_state=TENANT_STATE_STATUSES[response.status_code],
                **fields,
            )
        elif response.status_code >= 500:
            logger.error("request_completed", **fields)
        elif response.status_code >= 400:
            logger.warning("request_completed", **fields)
        else:
            logger.info("request_completed", **fields)

        return response
