"""FastAPI dependencies for HTTP routes."""

from __future__ import annotations

from fastapi import Request

from backend.websocket.hub import BroadcastHub


def get_hub(request: Request) -> BroadcastHub:
    """Return the BroadcastHub created by the application factory.

    Args:
        request: The incoming HTTP request.

    Returns:
        The hub stored on ``app.state.hub``.
    """
    return request.app.state.hub
