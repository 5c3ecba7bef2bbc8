"""FastAPI WebSocket endpoint for the realtime broadcast hub.

Provides a WebSocket endpoint at /ws. Each connection is registered with
the application's BroadcastHub (``app.state.hub``), and every text frame
the client sends is handed to ``hub.handle_text()`` in receipt order.
Pushes from producers reach the client through the hub, not through
this loop.

A connection that sends nothing for ``ws_idle_timeout_seconds`` is
closed with code 1001.

Usage:
    # In backend/main.py:
    from backend.websocket.router import router as ws_router
    app.include_router(ws_router)
"""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from backend.common.logging import connection_id_var, get_logger
from backend.websocket.hub import BroadcastHub

logger = get_logger("HUB")

router = APIRouter()


def get_hub(websocket: WebSocket) -> BroadcastHub:
    """Return the hub owned by the application serving this socket."""
    return websocket.app.state.hub


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """Serve one client until it disconnects, idles out, or is superseded.

    Args:
        websocket: The incoming WebSocket connection.
    """
    hub = get_hub(websocket)
    idle_timeout = websocket.app.state.settings.ws_idle_timeout_seconds or None

    conn = await hub.connect(websocket)
    token = connection_id_var.set(conn.id)
    try:
        while conn.is_open:
            try:
                message = await asyncio.wait_for(websocket.receive(), timeout=idle_timeout)
            except TimeoutError:
                logger.info(
                    "Closing idle connection",
                    extra={"data": {"idle_seconds": idle_timeout, "identity": conn.identity}},
                )
                conn.close(code=status.WS_1001_GOING_AWAY, reason="idle timeout")
                break
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", status.WS_1000_NORMAL_CLOSURE))
            # Binary frames are accepted as UTF-8 JSON too
            hub.handle_text(conn, message.get("text") or message.get("bytes") or "")
    except WebSocketDisconnect:
        pass
    finally:
        # Let a server-initiated close (idle, superseded) reach the client first
        await conn.wait_closed()
        hub.disconnect(conn)
        connection_id_var.reset(token)
