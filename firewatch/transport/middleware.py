# firewatch/transport/middleware.py
"""
HTTP middleware stack for the incident API.

Added in http_app so that RequestID is outermost, then RequestLogging,
then ErrorHandling right next to the routes.
"""
import time
import uuid
from typing import Callable
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp
from firewatch.infra.logging_config import get_logger, LogContext
from firewatch.infra.metrics import inc_counter, observe_histogram

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Reuse the caller's X-Request-ID or mint one; echoed on the response"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One log line per request plus request count and latency metrics"""

    def __init__(self, app: ASGIApp, enabled: bool = True):
        super().__init__(app)
        self.enabled = enabled

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not self.enabled:
            return await call_next(request)

        route = f"{request.method} {request.url.path}"
        log_ctx = LogContext(logger, request_id=_request_id(request))
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as exc:
            elapsed_ms = (time.perf_counter() - started) * 1000
            log_ctx.error(
                f"{route} raised {exc.__class__.__name__} after {elapsed_ms:.1f}ms",
                extra={"path": request.url.path, "duration_ms": elapsed_ms},
                exc_info=True,
            )
            raise

        elapsed_ms = (time.perf_counter() - started) * 1000
        log_ctx.info(
            f"{route} -> {response.status_code} in {elapsed_ms:.1f}ms",
            extra={
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": elapsed_ms,
                "client_ip": request.client.host if request.client else None,
            },
        )
        inc_counter("http_requests_total", method=request.method, status=str(response.status_code))
        observe_histogram("http_request_duration_ms", elapsed_ms, method=request.method)
        return response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Anything the routes let escape becomes a 500 carrying only the request id"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            request_id = _request_id(request)
            logger.error(
                f"Unhandled {exc.__class__.__name__} on {request.method} {request.url.path}: {exc}",
                extra={"request_id": request_id},
                exc_info=True,
            )
            return JSONResponse(
                status_code=500,
                content={"error": "Internal server error", "request_id": request_id},
            )
