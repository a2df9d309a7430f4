# tests/test_middleware.py
"""Tests for app/transport/middleware.py: request ID, error handling, headers."""
from __future__ import annotations

from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.transport.middleware import (
    ErrorHandlingMiddleware,
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
)


def _build_app(raise_for: set[str] | None = None):
    """Build a minimal FastAPI app with the production middleware stack."""
    app = FastAPI()
    # Last added runs first: RequestID must set state before the others read it
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    raise_for = raise_for or set()

    @app.get("/test")
    def test_endpoint():
        if "/test" in raise_for:
            raise RuntimeError("boom")
        return {"ok": True}

    @app.get("/api/jobs/{job_id}")
    def portal_endpoint(job_id: str):
        if "/api/jobs" in raise_for:
            raise KeyError(job_id)
        return {"job_id": job_id}

    return app


# ============================================================================
# RequestIDMiddleware
# ============================================================================

class TestRequestIDMiddleware:
    def test_generates_request_id(self):
        client = TestClient(_build_app())
        resp = client.get("/test")
        assert resp.status_code == 200
        assert len(resp.headers["X-Request-ID"]) >= 32

    def test_preserves_existing_request_id(self):
        client = TestClient(_build_app())
        custom_id = "my-custom-request-id-123"
        resp = client.get("/test", headers={"X-Request-ID": custom_id})
        assert resp.headers["X-Request-ID"] == custom_id


# ============================================================================
# ErrorHandlingMiddleware
# ============================================================================

class TestErrorHandlingMiddleware:
    def test_normal_request_passes_through(self):
        client = TestClient(_build_app(), raise_server_exceptions=False)
        resp = client.get("/test")
        assert resp.status_code == 200
        assert resp.json() == {"ok": True}

    def test_generic_error_returns_500(self):
        client = TestClient(_build_app(raise_for={"/test"}), raise_server_exceptions=False)
        resp = client.get("/test", headers={"X-Request-ID": "req-42"})
        assert resp.status_code == 500
        assert resp.json() == {"error": "Internal server error", "request_id": "req-42"}

    def test_error_body_hides_exception_text(self):
        client = TestClient(_build_app(raise_for={"/api/jobs"}), raise_server_exceptions=False)
        resp = client.get("/api/jobs/Job-ABC123")
        assert resp.status_code == 500
        assert "Job-ABC123" not in resp.text


# ============================================================================
# SecurityHeadersMiddleware
# ============================================================================

class TestSecurityHeadersMiddleware:
    def test_headers_on_success(self):
        client = TestClient(_build_app())
        resp = client.get("/api/jobs/Job-ABC123")
        assert resp.headers["X-Frame-Options"] == "DENY"
        assert resp.headers["X-Content-Type-Options"] == "nosniff"
        assert resp.headers["Cache-Control"] == "no-store"
