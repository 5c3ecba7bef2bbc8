"""Redis pub/sub subscriber that feeds producer events into the hub.

Subscribes to the Redis "pulse:events" channel, validates each message
as a HubEvent, and calls the matching BroadcastHub push method. Handles
Redis disconnection with exponential backoff reconnection.

Started as an asyncio.Task during FastAPI app lifespan.

Usage:
    from backend.websocket.subscriber import redis_subscriber

    task = asyncio.create_task(redis_subscriber(app.state.hub))
"""

from __future__ import annotations

import asyncio

import redis.asyncio as aioredis
from pydantic import ValidationError

from backend.common.config import get_settings
from backend.common.logging import get_logger
from backend.common.metrics import WS_EVENTS_RECEIVED_TOTAL
from backend.websocket.events import EVENTS_CHANNEL, HubEvent, HubEventKind
from backend.websocket.hub import BroadcastHub

logger = get_logger("FEED")

MAX_BACKOFF_SECONDS = 30


def apply_event(hub: BroadcastHub, event: HubEvent) -> int:
    """Run the push operation an event asks for.

    Returns:
        Number of connections the push was queued for.
    """
    match event.kind:
        case HubEventKind.TOPIC:
            return hub.push_to_topic(event.topic, event.data)
        case HubEventKind.GLOBAL:
            return hub.push_global(event.data)
        case HubEventKind.IDENTITY:
            return int(hub.push_to_identity(event.identity, event.data))
        case HubEventKind.PORTFOLIO:
            return int(hub.push_portfolio_update(event.identity, event.data))
        case HubEventKind.TRADE:
            return int(hub.push_trade_notification(event.identity, event.data))


async def redis_subscriber(hub: BroadcastHub) -> None:
    """Subscribe to Redis pulse:events and push each event through the hub.

    Runs as a long-lived background task. On Redis disconnect, retries
    with exponential backoff up to MAX_BACKOFF_SECONDS. Invalid events
    are logged and skipped.

    Args:
        hub: The BroadcastHub to push events through.
    """
    attempt = 0

    while True:
        try:
            settings = get_settings()
            r = aioredis.from_url(settings.redis_url)
            pubsub = r.pubsub()
            await pubsub.subscribe(EVENTS_CHANNEL)

            logger.info(
                "Redis subscriber connected",
                extra={"data": {"channel": EVENTS_CHANNEL}},
            )
            attempt = 0  # Reset backoff on successful connect

            async for message in pubsub.listen():
                if message["type"] != "message":
                    continue

                try:
                    event = HubEvent.model_validate_json(message["data"])
                except ValidationError as exc:
                    WS_EVENTS_RECEIVED_TOTAL.labels(kind="invalid").inc()
                    logger.warning(
                        "Discarding invalid hub event",
                        extra={"data": {"errors": exc.error_count()}},
                    )
                    continue

                WS_EVENTS_RECEIVED_TOTAL.labels(kind=event.kind.value).inc()
                apply_event(hub, event)

        except asyncio.CancelledError:
            logger.info("Redis subscriber shutting down")
            break

        except Exception as exc:
            wait = min(2**attempt, MAX_BACKOFF_SECONDS)
            logger.warning(
                "Redis subscriber error, reconnecting",
                extra={
                    "data": {
                        "error": str(exc),
                        "attempt": attempt + 1,
                        "wait_seconds": wait,
                    }
                },
            )
            attempt += 1
            await asyncio.sleep(wait)
