"""Pydantic response schemas for hub introspection."""

from __future__ import annotations

from pydantic import BaseModel


class TopicStats(BaseModel):
    topic: str
    subscribers: int


class HubStats(BaseModel):
    """Read-only snapshot of registry and index state.

    Attributes:
        total_connections: Identities with a live, authenticated connection.
        open_connections: Every open socket, including unauthenticated ones.
        topics: Subscriber count per price topic.
        portfolio_subscribers: Identities subscribed to portfolio updates.
    """

    total_connections: int
    open_connections: int
    topics: list[TopicStats]
    portfolio_subscribers: int
