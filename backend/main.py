"""FastAPI application factory for Pulse Trading Hub.

Run with: uvicorn backend.main:app --reload
"""

from __future__ import annotations

import asyncio
import contextlib
import traceback
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app as make_metrics_app

from backend.api.stats import router as stats_router
from backend.common.config import Settings, get_settings
from backend.common.exceptions import PulseBaseException
from backend.common.logging import get_logger, set_log_level
from backend.common.metrics import set_app_info
from backend.common.middleware import (
    RequestIdMiddleware,
    RequestLoggingMiddleware,
    request_id_var,
)
from backend.websocket.auth import CredentialVerifier, JWTCredentialVerifier
from backend.websocket.hub import BroadcastHub
from backend.websocket.router import router as ws_router
from backend.websocket.subscriber import redis_subscriber

logger = get_logger("SYSTEM")

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(application: FastAPI) -> AsyncGenerator[None, None]:
    """Start and stop the producer bridge; close every client on shutdown."""
    hub: BroadcastHub = application.state.hub
    settings: Settings = application.state.settings

    subscriber_task = None
    if settings.redis_bridge_enabled:
        subscriber_task = asyncio.create_task(redis_subscriber(hub))
        logger.info("Redis producer bridge started")

    yield

    if subscriber_task is not None:
        subscriber_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await subscriber_task
        logger.info("Redis producer bridge stopped")

    await hub.shutdown()


def create_app(
    settings: Settings | None = None,
    verifier: CredentialVerifier | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Overrides ``get_settings()``; mainly for tests.
        verifier: Overrides the JWT verifier built from settings.
    """
    settings = settings or get_settings()
    set_log_level(settings.log_level)
    app = FastAPI(
        title="Pulse Trading Hub",
        version=VERSION,
        description="Realtime price, portfolio and AI-signal fan-out over WebSocket",
        lifespan=lifespan,
    )

    # One hub per application; routes and the bridge reach it via app.state
    app.state.settings = settings
    app.state.hub = BroadcastHub(
        verifier or JWTCredentialVerifier.from_settings(settings),
        max_pending_messages=settings.ws_max_pending_messages,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # Last added = outermost = runs first on request
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIdMiddleware)

    # ─── Exception Handlers ───

    @app.exception_handler(PulseBaseException)
    async def pulse_exception_handler(request: Request, exc: PulseBaseException) -> JSONResponse:
        """Handle all Pulse-specific exceptions with structured JSON responses."""
        logger.error(
            f"{type(exc).__name__}: {exc}",
            extra={"data": {"path": str(request.url), "context": exc.context}},
        )
        return JSONResponse(
            status_code=400,
            content={
                "error": type(exc).__name__,
                "message": exc.message,
            },
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions: log the traceback, return 500."""
        rid = request_id_var.get("")
        logger.error(
            f"Unhandled {type(exc).__name__}: {exc}",
            extra={
                "data": {
                    "path": str(request.url),
                    "request_id": rid,
                    "traceback": traceback.format_exc(),
                }
            },
        )
        body: dict = {
            "error": "InternalServerError",
            "message": "An unexpected error occurred",
        }
        if rid:
            body["request_id"] = rid
        return JSONResponse(status_code=500, content=body)

    # ─── Health ───

    @app.get("/health")
    async def health_check(request: Request) -> dict:
        """Liveness probe with a snapshot of hub connection counts."""
        hub: BroadcastHub = request.app.state.hub
        return {
            "status": "ok",
            "version": VERSION,
            "websocket": hub.stats().model_dump(),
        }

    # ─── Prometheus Metrics ───

    app.mount("/metrics", make_metrics_app())
    set_app_info(version=VERSION, environment=settings.environment)

    # ─── Router Mounting ───

    app.include_router(stats_router, prefix="/api/ws", tags=["websocket"])
    app.include_router(ws_router, tags=["websocket"])

    logger.info("App created", extra={"data": {"version": VERSION}})

    return app


app = create_app()
