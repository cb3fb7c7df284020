# tests/test_middleware.py
"""Tests for firewatch/transport/middleware.py: request ID, logging, error handling."""
from __future__ import annotations

from fastapi import FastAPI
from fastapi.testclient import TestClient

from firewatch.infra.metrics import get_metrics_collector
from firewatch.transport.middleware import (
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    ErrorHandlingMiddleware,
)


def _build_app(raise_for: set[str] | None = None, logging_enabled: bool = True):
    """Build a minimal FastAPI app with middleware for testing."""
    app = FastAPI()
    # Order matters: RequestID is outermost, ErrorHandling sits next to the routes
    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(RequestLoggingMiddleware, enabled=logging_enabled)
    app.add_middleware(RequestIDMiddleware)

    raise_for = raise_for or set()

    @app.get("/test")
    def test_endpoint():
        if "/test" in raise_for:
            raise RuntimeError("boom")
        return {"ok": True}

    @app.post("/api/fires")
    def fires_endpoint():
        if "/api/fires" in raise_for:
            raise ValueError("store down")
        return {"id": 1}

    return app


# ============================================================================
# RequestIDMiddleware
# ============================================================================

class TestRequestIDMiddleware:
    def test_generates_request_id(self):
        client = TestClient(_build_app())
        resp = client.get("/test")
        assert resp.status_code == 200
        rid = resp.headers["X-Request-ID"]
        assert len(rid) >= 32  # UUID has 36 chars with dashes

    def test_preserves_existing_request_id(self):
        client = TestClient(_build_app())
        custom_id = "my-custom-request-id-123"
        resp = client.get("/test", headers={"X-Request-ID": custom_id})
        assert resp.status_code == 200
        assert resp.headers["X-Request-ID"] == custom_id

    def test_each_request_gets_a_new_id(self):
        client = TestClient(_build_app())
        first = client.get("/test").headers["X-Request-ID"]
        second = client.get("/test").headers["X-Request-ID"]
        assert first != second


# ============================================================================
# RequestLoggingMiddleware
# ============================================================================

class TestRequestLoggingMiddleware:
    def test_counts_completed_requests(self):
        client = TestClient(_build_app())
        client.get("/test")
        client.post("/api/fires")

        counters = get_metrics_collector().get_metrics()["counters"]
        assert counters["http_requests_total{method=GET,status=200}"] == 1
        assert counters["http_requests_total{method=POST,status=200}"] == 1

    def test_records_duration_histogram(self):
        client = TestClient(_build_app())
        client.get("/test")

        histograms = get_metrics_collector().get_metrics()["histograms"]
        assert histograms["http_request_duration_ms{method=GET}"]["count"] == 1

    def test_disabled_passes_through_without_metrics(self):
        client = TestClient(_build_app(logging_enabled=False))
        resp = client.get("/test")
        assert resp.status_code == 200

        counters = get_metrics_collector().get_metrics()["counters"]
        assert not any(k.startswith("http_requests_total") for k in counters)


# ============================================================================
# ErrorHandlingMiddleware
# ============================================================================

class TestErrorHandlingMiddleware:
    def test_normal_request_passes_through(self):
        client = TestClient(_build_app(), raise_server_exceptions=False)
        resp = client.get("/test")
        assert resp.status_code == 200
        assert resp.json() == {"ok": True}

    def test_unhandled_error_returns_500_json(self):
        client = TestClient(_build_app(raise_for={"/test"}), raise_server_exceptions=False)
        resp = client.get("/test", headers={"X-Request-ID": "rid-1"})
        assert resp.status_code == 500
        assert resp.json() == {"error": "Internal server error", "request_id": "rid-1"}

    def test_error_detail_not_leaked(self):
        client = TestClient(_build_app(raise_for={"/api/fires"}), raise_server_exceptions=False)
        resp = client.post("/api/fires")
        assert resp.status_code == 500
        assert "store down" not in resp.text

    def test_error_response_keeps_request_id_header(self):
        client = TestClient(_build_app(raise_for={"/test"}), raise_server_exceptions=False)
        resp = client.get("/test", headers={"X-Request-ID": "rid-2"})
        assert resp.headers["X-Request-ID"] == "rid-2"

    def test_error_is_counted_as_500(self):
        client = TestClient(_build_app(raise_for={"/test"}), raise_server_exceptions=False)
        client.get("/test")

        counters = get_metrics_collector().get_metrics()["counters"]
        assert counters["http_requests_total{method=GET,status=500}"] == 1
