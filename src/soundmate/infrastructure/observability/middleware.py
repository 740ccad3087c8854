"""Middleware for observability: request/response logging."""

import logging
import time
from collections.abc import Awaitable, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from soundmate.infrastructure.observability.logging import (
    get_correlation_id,
    set_correlation_id,
)

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"


# Hey future me, ONE log line per request, written when the response is ready. The
# correlation ID is taken from the X-Correlation-ID header (or generated) and echoed back,
# so a client can quote it when something goes wrong. Health checks are skipped, load
# balancers poll them every few seconds.
class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for logging HTTP requests and responses."""

    def __init__(
        self,
        app: ASGIApp,
        log_request_body: bool = False,
        skip_paths: tuple[str, ...] = ("/health",),
    ) -> None:
        super().__init__(app)
        self.log_request_body = log_request_body
        self.skip_paths = skip_paths

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        set_correlation_id(request.headers.get(CORRELATION_HEADER))

        method = request.method
        path = request.url.path
        quiet = path in self.skip_paths

        if self.log_request_body and method in {"POST", "PUT", "PATCH"}:
            body = await request.body()
            logger.debug(
                f"Request body for {method} {path}",
                extra={"body": body.decode("utf-8", errors="replace")[:2000]},
            )

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = int((time.perf_counter() - start_time) * 1000)
            logger.exception(
                f"Request failed: {method} {path}",
                extra={
                    "method": method,
                    "path": path,
                    "duration_ms": duration_ms,
                    "error_type": type(e).__name__,
                },
            )
            raise

        duration_ms = int((time.perf_counter() - start_time) * 1000)
        if not quiet:
            status_mark = "✓" if response.status_code < 400 else "✗"
            logger.info(
                f"{status_mark} {method} {path} → {response.status_code} ({duration_ms}ms)",
                extra={
                    "method": method,
                    "path": path,
                    "status_code": response.status_code,
                    "duration_ms": duration_ms,
                    "client_ip": request.client.host if request.client else "unknown",
                },
            )

        response.headers[CORRELATION_HEADER] = get_correlation_id()
        return response
