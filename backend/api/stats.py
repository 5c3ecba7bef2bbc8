"""Read-only introspection of the broadcast hub.

Exposes connection and subscription counts for dashboards and
operators. Nothing here mutates hub state.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from backend.api.deps import get_hub
from backend.websocket.hub import BroadcastHub
from backend.websocket.schemas import HubStats

router = APIRouter()


@router.get("/stats", response_model=HubStats)
async def hub_stats(hub: BroadcastHub = Depends(get_hub)) -> HubStats:
    """Return live connection counts and per-topic subscriber counts.

    Args:
        hub: The application's BroadcastHub.

    Returns:
        HubStats snapshot taken at request time.
    """
    return hub.stats()
