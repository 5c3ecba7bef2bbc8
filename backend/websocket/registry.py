"""Identity -> live Connection registry.

Tracks every open connection, and for authenticated ones the single
connection currently bound to each identity. Unregistering a bound
connection cascades into SubscriptionIndex.purge() for its identity.

Mutating methods are synchronous and never await: on one asyncio event
loop that makes each of them a critical section.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from backend.common.logging import get_logger
from backend.websocket.subscriptions import SubscriptionIndex

if TYPE_CHECKING:
    from backend.websocket.connection import Connection

logger = get_logger("HUB")


class ConnectionRegistry:
    """Holds at most one live connection per identity."""

    def __init__(self, subscriptions: SubscriptionIndex) -> None:
        self._subscriptions = subscriptions
        self._open: dict[str, Connection] = {}
        self._by_identity: dict[str, Connection] = {}

    def add(self, connection: Connection) -> None:
        """Track a freshly accepted, not yet authenticated connection."""
        self._open[connection.id] = connection

    def register(self, identity: str, connection: Connection) -> Connection | None:
        """Bind identity to connection, replacing any prior binding.

        The replaced connection is not touched here; it is returned so the
        caller can decide what to do with it. Re-registering the same pair
        is a no-op that returns None.

        Returns:
            The previously bound connection if it differs, else None.
        """
        self._open[connection.id] = connection
        previous = self._by_identity.get(identity)
        self._by_identity[identity] = connection
        if previous is None or previous is connection:
            return None
        return previous

    def lookup(self, identity: str) -> Connection | None:
        """Return the open connection bound to identity, or None."""
        connection = self._by_identity.get(identity)
        if connection is None or not connection.is_open:
            return None
        return connection

    def unregister(self, target: Connection | str) -> bool:
        """Drop a connection or an identity binding; purge its subscriptions.

        Given a connection, it stops being tracked, and its identity binding
        is removed only if it is still the bound connection (a superseded
        connection going away leaves the newer binding and its
        subscriptions intact). Given an identity, its binding is removed.
        Missing entries are ignored.

        Returns:
            True if an identity binding was removed (and purged).
        """
        if isinstance(target, str):
            identity = target
            if identity not in self._by_identity:
                return False
        else:
            self._open.pop(target.id, None)
            identity = target.identity
            if identity is None or self._by_identity.get(identity) is not target:
                return False

        del self._by_identity[identity]
        left = self._subscriptions.purge(identity)
        logger.debug(
            "Identity unregistered, subscriptions purged",
            extra={"data": {"identity": identity, "topics": [str(t) for t in left]}},
        )
        return True

    def authenticated(self) -> list[Connection]:
        """Snapshot of bound, open connections (safe to iterate while sending)."""
        return [c for c in self._by_identity.values() if c.is_open]

    def connections(self) -> list[Connection]:
        """Snapshot of every tracked connection, authenticated or not."""
        return list(self._open.values())

    @property
    def open_count(self) -> int:
        return len(self._open)

    @property
    def authenticated_count(self) -> int:
        return len(self._by_identity)

    def __contains__(self, identity: object) -> bool:
        return identity in self._by_identity
