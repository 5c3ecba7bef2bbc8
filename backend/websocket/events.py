"""Producer events and Redis publish functions.

Upstream producers (price poller, signal generator, portfolio service)
run outside the web process. They publish HubEvents to the Redis
"pulse:events" pub/sub channel; the redis_subscriber() task in the web
process turns each event into a call on the BroadcastHub push API.

Usage from sync code (workers, scripts):
    from backend.websocket.events import HubEventKind, publish_event_sync

    publish_event_sync(HubEventKind.TOPIC, {"price": 50000}, topic="BTC")

Usage from async code:
    from backend.websocket.events import HubEventKind, publish_event

    await publish_event(HubEventKind.PORTFOLIO, {"totalValue": 125000}, identity="u1")
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

import redis.asyncio as aioredis
from asgiref.sync import async_to_sync
from pydantic import BaseModel, model_validator

from backend.common.config import get_settings
from backend.common.logging import get_logger

logger = get_logger("FEED")

# Redis channel name for producer events
EVENTS_CHANNEL = "pulse:events"


class HubEventKind(StrEnum):
    """Which push operation an event maps to."""

    TOPIC = "topic"  # push_to_topic(topic, data)
    GLOBAL = "global"  # push_global(data)
    IDENTITY = "identity"  # push_to_identity(identity, data)
    PORTFOLIO = "portfolio"  # push_portfolio_update(identity, data)
    TRADE = "trade"  # push_trade_notification(identity, data)


_NEEDS_IDENTITY = frozenset({HubEventKind.IDENTITY, HubEventKind.PORTFOLIO, HubEventKind.TRADE})


class HubEvent(BaseModel):
    """A producer update destined for WebSocket clients.

    Attributes:
        kind: Push operation to invoke.
        data: Any JSON value (object, list or scalar), delivered as ``data``.
        topic: Price symbol; required for TOPIC events.
        identity: Target identity; required for IDENTITY/PORTFOLIO/TRADE.
        timestamp: UTC time the producer created the event.
    """

    kind: HubEventKind
    data: Any
    topic: str | None = None
    identity: str | None = None
    timestamp: datetime

    @model_validator(mode="after")
    def _check_target(self) -> HubEvent:
        if self.kind is HubEventKind.TOPIC and not self.topic:
            raise ValueError("topic events require a topic")
        if self.kind in _NEEDS_IDENTITY and not self.identity:
            raise ValueError(f"{self.kind} events require an identity")
        return self


async def publish_event(
    kind: HubEventKind,
    data: Any,
    *,
    topic: str | None = None,
    identity: str | None = None,
) -> None:
    """Publish a HubEvent to the Redis pulse:events channel.

    Args:
        kind: Push operation the hub should perform.
        data: Payload for clients.
        topic: Price symbol for TOPIC events.
        identity: Target identity for IDENTITY, PORTFOLIO and TRADE events.

    Raises:
        pydantic.ValidationError: The kind's required target is missing.
    """
    event = HubEvent(
        kind=kind,
        data=data,
        topic=topic,
        identity=identity,
        timestamp=datetime.now(UTC),
    )

    settings = get_settings()
    r = aioredis.from_url(settings.redis_url)
    try:
        await r.publish(EVENTS_CHANNEL, event.model_dump_json())
    finally:
        await r.aclose()


def publish_event_sync(
    kind: HubEventKind,
    data: Any,
    *,
    topic: str | None = None,
    identity: str | None = None,
) -> None:
    """Synchronous wrapper for publish_event, safe for worker processes.

    Catches all exceptions so a Redis outage never crashes a producer
    loop. Logs a warning on failure.
    """
    try:
        async_to_sync(publish_event)(kind, data, topic=topic, identity=identity)
    except Exception as exc:
        logger.warning(
            "Failed to publish hub event",
            extra={
                "data": {
                    "kind": str(kind),
                    "topic": topic,
                    "error": str(exc),
                }
            },
        )
