# ─────────────────────────────────────────────────────────────────────────────
# Request Middleware: metrics capture + panic recovery
# ─────────────────────────────────────────────────────────────────────────────
# RequestMetricsMiddleware is the outermost layer: it sees every response,
# including 429s and 401s produced further in. RecoverPanicMiddleware sits
# directly inside it so a crashing handler still gets counted as a 500.
# ─────────────────────────────────────────────────────────────────────────────


import re
import time
import uuid
from typing import Any

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from greenlight.exceptions import INTERNAL_ERROR_MESSAGE
from greenlight.services.metrics import RequestMetrics

logger = structlog.get_logger()

# Client-supplied request ids are echoed and logged, so only short opaque ones
# are trusted.
_REQUEST_ID = re.compile(r"[A-Za-z0-9._-]{1,64}")


class RequestMetricsMiddleware(BaseHTTPMiddleware):
    """Adds request ID, records counters and timing, logs each request.

    Skips logging for /v1/healthcheck (too noisy from load-balancer probes).
    """

    def __init__(self, app: Any, *, metrics: RequestMetrics) -> None:
        super().__init__(app)
        self._metrics = metrics

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("x-request-id", "")
        if not _REQUEST_ID.fullmatch(request_id):
            request_id = str(uuid.uuid4())[:8]
        request.state.request_id = request_id
        structlog.contextvars.bind_contextvars(request_id=request_id)
        self._metrics.record_request()
        start = time.perf_counter()

        try:
            response: Response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("request_id")

        duration = time.perf_counter() - start
        self._metrics.record_response(response.status_code, duration)
        duration_ms = round(duration * 1000, 1)

        if request.url.path != "/v1/healthcheck":
            logger.info(
                "request_completed",
                request_id=request_id,
                method=request.method,
                path=str(request.url.path),
                status=response.status_code,
                duration_ms=duration_ms,
            )

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time-Ms"] = str(duration_ms)
        return response


class RecoverPanicMiddleware(BaseHTTPMiddleware):
    """Turn any exception escaping the app into a generic 500.

    The failing request's connection is closed; the process keeps serving.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            logger.error(
                "unhandled_error",
                error=str(exc),
                error_type=type(exc).__name__,
                method=request.method,
                path=request.url.path,
                exc_info=True,
            )
            return JSONResponse(
                status_code=500,
                content={"error": INTERNAL_ERROR_MESSAGE, "type": "UnhandledError"},
                headers={"Connection": "close"},
            )
