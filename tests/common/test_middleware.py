"""Tests for HTTP middleware: request ID and request logging/metrics.

Uses a minimal FastAPI test app to exercise each middleware class with
the httpx.AsyncClient + ASGITransport pattern used by the API tests.
"""

from __future__ import annotations

import re
from unittest.mock import patch

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from backend.common.metrics import HTTP_REQUESTS_TOTAL
from backend.common.middleware import (
    RequestIdMiddleware,
    RequestLoggingMiddleware,
    request_id_var,
)

# ─── Test App Factory ───


def _make_app() -> FastAPI:
    """Build a minimal FastAPI app with both middleware registered."""
    app = FastAPI()

    # Same order as production (last added = outermost = runs first)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIdMiddleware)

    @app.get("/ping")
    async def ping():
        return {"msg": "pong"}

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/rid")
    async def return_request_id():
        """Echo the ContextVar request ID back to the caller."""
        return {"request_id": request_id_var.get("")}

    return app


@pytest.fixture
async def client() -> AsyncClient:
    transport = ASGITransport(app=_make_app())
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ─── RequestIdMiddleware Tests ───


class TestRequestIdMiddleware:
    @pytest.mark.asyncio
    async def test_generates_hex_id_when_no_header(self, client: AsyncClient):
        resp = await client.get("/ping")
        assert re.fullmatch(r"[0-9a-f]{32}", resp.headers["x-request-id"])

    @pytest.mark.asyncio
    async def test_preserves_provided_request_id(self, client: AsyncClient):
        resp = await client.get("/ping", headers={"X-Request-ID": "my-trace-id-12345"})
        assert resp.headers["x-request-id"] == "my-trace-id-12345"

    @pytest.mark.asyncio
    async def test_context_var_set_during_request(self, client: AsyncClient):
        resp = await client.get("/rid", headers={"X-Request-ID": "ctx-var-test-abc"})
        assert resp.json()["request_id"] == "ctx-var-test-abc"


# ─── RequestLoggingMiddleware Tests ───


class TestRequestLoggingMiddleware:
    @pytest.mark.asyncio
    async def test_logs_method_path_status(self, client: AsyncClient):
        with patch("backend.common.middleware.logger") as mock_logger:
            resp = await client.get("/ping")
            assert resp.status_code == 200

            mock_logger.info.assert_called_once()
            log_msg = mock_logger.info.call_args[0][0]
            assert log_msg == "GET /ping 200"
            data = mock_logger.info.call_args[1]["extra"]["data"]
            assert data["duration_ms"] >= 0

    @pytest.mark.asyncio
    async def test_skips_health_endpoint(self, client: AsyncClient):
        with patch("backend.common.middleware.logger") as mock_logger:
            await client.get("/health")
            mock_logger.info.assert_not_called()

    @pytest.mark.asyncio
    async def test_counts_requests(self, client: AsyncClient):
        labels = {"method": "GET", "path": "/ping", "status_code": "200"}
        before = HTTP_REQUESTS_TOTAL.labels(**labels)._value.get()
        await client.get("/ping")
        assert HTTP_REQUESTS_TOTAL.labels(**labels)._value.get() - before == 1.0

    @pytest.mark.asyncio
    async def test_logs_404_status(self, client: AsyncClient):
        with patch("backend.common.middleware.logger") as mock_logger:
            resp = await client.get("/nonexistent")
            assert resp.status_code == 404
            assert "404" in mock_logger.info.call_args[0][0]
