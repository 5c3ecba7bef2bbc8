"""Topic to subscriber-identity index.

Topics are tagged values: a price topic keyed by instrument symbol, or
the per-identity portfolio topic. The global signal channel is implicit
and never appears here (every authenticated connection receives it).

Subscriber sets hold identities, never connections; the hub resolves
identity to connection through the ConnectionRegistry at send time.
A topic whose subscriber set becomes empty is removed from the index.

All methods are synchronous and never await, so on a single asyncio
event loop each call runs to completion without interleaving.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class TopicKind(StrEnum):
    PRICE = "price"
    PORTFOLIO = "portfolio"


@dataclass(frozen=True, slots=True)
class Topic:
    """A subscribable channel. Hashable, so it keys the index directly."""

    kind: TopicKind
    key: str = ""

    @classmethod
    def price(cls, symbol: str) -> Topic:
        return cls(TopicKind.PRICE, symbol)

    def __str__(self) -> str:
        return self.key if self.kind is TopicKind.PRICE else self.kind.value


PORTFOLIO = Topic(TopicKind.PORTFOLIO)


class SubscriptionIndex:
    """Maintains Topic -> set of identities with at-most-once membership."""

    def __init__(self) -> None:
        self._topics: dict[Topic, set[str]] = {}

    def subscribe(self, identity: str, topic: Topic) -> None:
        """Add identity to the topic's subscribers. Idempotent."""
        self._topics.setdefault(topic, set()).add(identity)

    def unsubscribe(self, identity: str, topic: Topic) -> None:
        """Remove identity from the topic, pruning the topic if now empty.

        Unsubscribing from a topic never subscribed to is a no-op.
        """
        members = self._topics.get(topic)
        if members is None:
            return
        members.discard(identity)
        if not members:
            del self._topics[topic]

    def subscribers_of(self, topic: Topic) -> set[str]:
        """Return a copy of the topic's subscribers (empty if unknown).

        A copy, so callers may iterate while deliveries trigger teardown.
        """
        return set(self._topics.get(topic, ()))

    def is_subscribed(self, identity: str, topic: Topic) -> bool:
        return identity in self._topics.get(topic, ())

    def purge(self, identity: str) -> list[Topic]:
        """Remove identity from every topic; return the topics it left."""
        left: list[Topic] = []
        for topic in list(self._topics):
            members = self._topics[topic]
            if identity in members:
                members.discard(identity)
                left.append(topic)
                if not members:
                    del self._topics[topic]
        return left

    def topics(self) -> dict[Topic, int]:
        """Subscriber count per topic currently in the index."""
        return {topic: len(members) for topic, members in self._topics.items()}

    def __len__(self) -> int:
        return len(self._topics)
