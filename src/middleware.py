"""
Custom middleware for the phone OTP authentication service.
"""

import time
import uuid
from typing import Callable, Dict, Iterable, Optional, Set

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from src.observability import get_trace_context, record_http_metrics

logger = structlog.get_logger()

CORRELATION_HEADER = "X-Request-ID"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware for request/response logging with correlation ID support.

    Query strings, cookies and bodies are never logged; they carry OTPs and
    session credentials.
    """

    def __init__(self, app, exclude_paths: Optional[Set[str]] = None):
        super().__init__(app)
        self.exclude_paths = exclude_paths or {"/healthz", "/docs", "/redoc", "/openapi.json"}

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or f"req_{uuid.uuid4().hex[:16]}"
        request.state.correlation_id = correlation_id

        if request.url.path in self.exclude_paths:
            response = await call_next(request)
            response.headers[CORRELATION_HEADER] = correlation_id
            return response

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(correlation_id=correlation_id, **get_trace_context())

        start_time = time.time()
        logger.info(
            "Request started",
            method=request.method,
            path=request.url.path,
            user_agent=request.headers.get("User-Agent", "unknown")
        )

        try:
            response = await call_next(request)
        except Exception as e:
            process_time = time.time() - start_time
            logger.error(
                "Request failed",
                error_type=type(e).__name__,
                process_time_ms=round(process_time * 1000, 2)
            )
            record_http_metrics(request.method, request.url.path, 500, process_time)
            return JSONResponse(
                status_code=500,
                content={
                    "error": "InternalError",
                    "message": "Internal server error",
                    "correlation_id": correlation_id
                },
                headers={CORRELATION_HEADER: correlation_id}
            )

        process_time = time.time() - start_time
        logger.info(
            "Request completed",
            status_code=response.status_code,
            process_time_ms=round(process_time * 1000, 2)
        )
        record_http_metrics(request.method, request.url.path, response.status_code, process_time)

        response.headers[CORRELATION_HEADER] = correlation_id
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Middleware to add security headers to responses.
    """

    def __init__(self, app, enable_hsts: bool = True):
        super().__init__(app)
        self.enable_hsts = enable_hsts

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        response.headers.update({
            "X-Content-Type-Options": "nosniff",
            "X-Frame-Options": "DENY",
            "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
            "Referrer-Policy": "no-referrer",
            "Cache-Control": "no-store"
        })
        if self.enable_hsts:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Simple sliding-window rate limiting (in-memory, per client IP and endpoint).

    Only the exact paths in ``protected_paths`` are limited; the OTP endpoints
    are the brute-force targets. Other paths never create a bucket, and
    buckets whose window has lapsed are swept once per window.
    """

    def __init__(
        self,
        app,
        max_requests: int = 10,
        window_seconds: int = 60,
        protected_paths: Optional[Iterable[str]] = None
    ):
        super().__init__(app)
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.protected_paths = frozenset(protected_paths or ())
        self.requests: Dict[str, list] = {}
        self._last_sweep = 0.0

    def _sweep(self, current_time: float) -> None:
        if current_time - self._last_sweep < self.window_seconds:
            return
        self._last_sweep = current_time
        for key in [k for k, times in self.requests.items() if current_time - times[-1] >= self.window_seconds]:
            del self.requests[key]

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if path not in self.protected_paths:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        key = f"{client_ip}:{path}"
        current_time = time.time()
        self._sweep(current_time)

        recent = [
            req_time for req_time in self.requests.get(key, [])
            if current_time - req_time < self.window_seconds
        ]

        if len(recent) >= self.max_requests:
            self.requests[key] = recent
            logger.warning(
                "Rate limit exceeded",
                client_ip=client_ip,
                path=path,
                request_count=len(recent),
                max_requests=self.max_requests
            )
            return JSONResponse(
                status_code=429,
                content={
                    "error": "RateLimitExceeded",
                    "message": f"Too many requests. Limit: {self.max_requests} per {self.window_seconds} seconds",
                    "correlation_id": getattr(request.state, "correlation_id", None)
                },
                headers={"Retry-After": str(self.window_seconds)}
            )

        recent.append(current_time)
        self.requests[key] = recent

        return await call_next(request)
