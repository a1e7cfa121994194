"""Per-request log context: X-Request-Id plus an access log line."""

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger("progression.access")


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind request_id, method and path for every log line of the request and echo the id back."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = round((time.perf_counter() - started) * 1000, 1)

        # Probes are polled constantly.
        if not request.url.path.startswith(("/health", "/ready")):
            log = logger.warning if response.status_code >= 500 else logger.info
            log("request_finished", status=response.status_code, duration_ms=elapsed_ms)
        response.headers["X-Request-Id"] = request_id
        return response
