"""
API Middleware

Request logging with timing and a per-request log context.
"""

import time
from typing import Callable

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from profitcore.config.logging import clear_tenant_context

logger = structlog.get_logger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Log every request with its duration.

    The request id (taken from X-Request-ID or generated) is bound into the
    structlog context for the whole request and echoed back. Requests slower
    than slow_request_ms, and any 5xx response, are logged as warnings.
    """

    def __init__(self, app: ASGIApp, slow_request_ms: float = 1000.0):
        super().__init__(app)
        self.slow_request_ms = slow_request_ms

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.perf_counter()
        request_id = request.headers.get("X-Request-ID") or str(time.time_ns())

        clear_tenant_context()
        structlog.contextvars.bind_contextvars(request_id=request_id)
        logger.debug(
            "HTTP request received",
            method=request.method,
            path=request.url.path,
            tenant_id=request.headers.get("X-Tenant-ID"),
        )

        try:
            response = await call_next(request)
            duration_ms = (time.perf_counter() - started) * 1000

            slow = duration_ms > self.slow_request_ms
            log = logger.warning if slow or response.status_code >= 500 else logger.info
            log(
                "HTTP request handled",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration_ms, 2),
                slow=slow or None,
            )

            response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            clear_tenant_context()
