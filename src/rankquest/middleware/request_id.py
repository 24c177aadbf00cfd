"""Per-request context: X-Request-Id propagation and an access log line."""

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger()

# Probe endpoints are polled constantly and would drown the access log
QUIET_PATHS = frozenset({"/health", "/ready"})


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind a request id to the structlog context and log each finished request."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        started = time.monotonic()
        response = await call_next(request)
        response.headers["X-Request-Id"] = request_id

        if request.url.path not in QUIET_PATHS:
            logger.info(
                "request_complete",
                status_code=response.status_code,
                duration_ms=int((time.monotonic() - started) * 1000),
            )
        return response
