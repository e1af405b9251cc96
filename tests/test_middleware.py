"""
Tests for the request middleware.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock, patch

import pytest
import structlog
from fastapi import Response

from src.main import app
from src.middleware import RateLimitMiddleware, RequestLoggingMiddleware

PROTECTED = ["/auth/send-otp", "/auth/verify-otp"]


def make_request(path: str, client_ip: str = "10.0.0.1", headers: dict = None):
    request = Mock()
    request.url.path = path
    request.method = "POST"
    request.client = SimpleNamespace(host=client_ip)
    request.headers = headers or {}
    request.state = SimpleNamespace()
    return request


class TestRateLimitMiddleware:
    """Tests for the per-client OTP endpoint rate limiter."""

    @pytest.fixture
    def middleware(self):
        return RateLimitMiddleware(Mock(), max_requests=2, window_seconds=60, protected_paths=PROTECTED)

    @pytest.fixture
    def call_next(self):
        return AsyncMock(return_value=Response(status_code=200))

    @pytest.mark.asyncio
    async def test_limits_protected_endpoint(self, middleware, call_next):
        statuses = [
            (await middleware.dispatch(make_request("/auth/send-otp"), call_next)).status_code
            for _ in range(3)
        ]

        assert statuses == [200, 200, 429]
        assert call_next.await_count == 2

    @pytest.mark.asyncio
    async def test_limit_is_per_endpoint_and_client(self, middleware, call_next):
        for _ in range(2):
            await middleware.dispatch(make_request("/auth/send-otp"), call_next)

        other_path = await middleware.dispatch(make_request("/auth/verify-otp"), call_next)
        other_client = await middleware.dispatch(make_request("/auth/send-otp", client_ip="10.0.0.2"), call_next)

        assert other_path.status_code == 200
        assert other_client.status_code == 200

    @pytest.mark.asyncio
    async def test_unknown_paths_create_no_buckets(self, middleware, call_next):
        for n in range(500):
            await middleware.dispatch(make_request(f"/auth/junk-{n}"), call_next)

        assert len(middleware.requests) == 0
        assert call_next.await_count == 500

    @pytest.mark.asyncio
    async def test_lapsed_buckets_are_swept(self, middleware, call_next):
        with patch("src.middleware.time.time", return_value=1000.0):
            for n in range(50):
                await middleware.dispatch(make_request("/auth/send-otp", client_ip=f"10.0.1.{n}"), call_next)
        assert len(middleware.requests) == 50

        with patch("src.middleware.time.time", return_value=1000.0 + 61):
            await middleware.dispatch(make_request("/auth/send-otp", client_ip="10.0.2.1"), call_next)

        assert list(middleware.requests) == ["10.0.2.1:/auth/send-otp"]

    def test_application_protects_auth_routes_only(self):
        limiter = next(m for m in app.user_middleware if m.cls is RateLimitMiddleware)
        protected = set(limiter.kwargs["protected_paths"])

        assert "/auth/send-otp" in protected
        assert "/auth/verify-otp" in protected
        assert "/healthz" not in protected
        assert all(path.startswith("/auth/") for path in protected)


class TestRequestLoggingMiddleware:
    """Tests for correlation and trace context binding."""

    @pytest.mark.asyncio
    async def test_trace_context_bound_for_request_logs(self):
        middleware = RequestLoggingMiddleware(Mock())
        seen = {}

        async def call_next(request):
            seen.update(structlog.contextvars.get_contextvars())
            return Response(status_code=200)

        trace_context = {"trace_id": "0af7651916cd43dd8448eb211c80319c", "span_id": "b7ad6b7169203331"}
        with patch("src.middleware.get_trace_context", return_value=trace_context):
            response = await middleware.dispatch(
                make_request("/auth/send-otp", headers={"X-Request-ID": "req-1"}), call_next
            )

        assert seen["trace_id"] == trace_context["trace_id"]
        assert seen["span_id"] == trace_context["span_id"]
        assert seen["correlation_id"] == "req-1"
        assert response.headers["X-Request-ID"] == "req-1"

    @pytest.mark.asyncio
    async def test_no_trace_context_outside_spans(self):
        middleware = RequestLoggingMiddleware(Mock())
        structlog.contextvars.bind_contextvars(trace_id="stale")
        seen = {}

        async def call_next(request):
            seen.update(structlog.contextvars.get_contextvars())
            return Response(status_code=200)

        with patch("src.middleware.get_trace_context", return_value={}):
            await middleware.dispatch(make_request("/auth/send-otp"), call_next)

        assert "trace_id" not in seen
        assert seen["correlation_id"].startswith("req_")
