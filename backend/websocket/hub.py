"""Broadcast hub: the per-connection protocol and the producer push API.

The hub owns the ConnectionRegistry and SubscriptionIndex. Nothing else
mutates them: WebSocket endpoints feed it frames through handle_text(),
producers call the push_* methods, and both run on the same asyncio
event loop. Every method that touches shared state is synchronous, so
each one runs to completion before the next event is processed. The
only suspension is credential verification, which runs as a task; while
it is in flight the connection stays unauthenticated and later frames
are handled under that state.

Delivery is best effort: pushes to identities without a live connection
are skipped, nothing is retried or persisted, and a connection whose
socket fails is torn down without affecting the other recipients.

Usage:
    hub = BroadcastHub(JWTCredentialVerifier.from_settings(settings))

    conn = await hub.connect(websocket)
    hub.handle_text(conn, frame_text)
    hub.push_to_topic("BTC", {"price": 50000})
    hub.disconnect(conn)
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

from fastapi import WebSocket

from backend.common.logging import get_logger
from backend.common.metrics import (
    WS_AUTH_ATTEMPTS_TOTAL,
    WS_AUTHENTICATED_ACTIVE,
    WS_CONNECTIONS_ACTIVE,
    WS_DELIVERY_FAILURES_TOTAL,
    WS_MESSAGES_RECEIVED_TOTAL,
)
from backend.websocket.auth import CredentialVerifier
from backend.websocket.connection import DEFAULT_MAX_PENDING, Connection, ConnectionState
from backend.websocket.exceptions import (
    AuthenticationError,
    DeliveryFailure,
    HubError,
    MalformedMessage,
    Unauthenticated,
)
from backend.websocket.protocol import (
    NOT_AUTHENTICATED,
    MessageType,
    ServerMessageType,
    auth_error_message,
    error_message,
    parse_credential,
    parse_envelope,
    parse_message_type,
    parse_topics,
    pong_message,
    push_message,
    server_message,
    topic_update_message,
)
from backend.websocket.registry import ConnectionRegistry
from backend.websocket.schemas import HubStats, TopicStats
from backend.websocket.subscriptions import PORTFOLIO, SubscriptionIndex, Topic, TopicKind

logger = get_logger("HUB")

# Close code sent to a connection replaced by a newer one for the same identity
SUPERSEDED_CLOSE_CODE = 4000
SHUTDOWN_CLOSE_CODE = 1001


class BroadcastHub:
    """Fan-out hub for price topics, portfolio updates and global signals.

    Args:
        verifier: Resolves ``auth`` credentials to identities.
        max_pending_messages: Outbound queue bound per connection.
    """

    def __init__(
        self,
        verifier: CredentialVerifier,
        max_pending_messages: int = DEFAULT_MAX_PENDING,
    ) -> None:
        self._verifier = verifier
        self._max_pending = max_pending_messages
        self.subscriptions = SubscriptionIndex()
        self.registry = ConnectionRegistry(self.subscriptions)

    # ─── Connection lifecycle ───

    async def connect(self, websocket: WebSocket) -> Connection:
        """Accept a socket and start tracking it as unauthenticated."""
        await websocket.accept()
        conn = Connection(websocket, max_pending=self._max_pending)
        self.registry.add(conn)
        conn.start(self._on_delivery_failure)
        WS_CONNECTIONS_ACTIVE.inc()
        logger.info(
            "WebSocket connected",
            extra={
                "data": {
                    "connection_id": conn.id,
                    "open_connections": self.registry.open_count,
                }
            },
        )
        return conn

    def disconnect(self, conn: Connection) -> None:
        """Tear a connection down and purge its identity's subscriptions.

        Safe to call more than once; later calls are no-ops.
        """
        if conn.state is ConnectionState.CLOSED:
            return
        was_bound = self.registry.unregister(conn)
        conn.mark_closed()
        WS_CONNECTIONS_ACTIVE.dec()
        if was_bound:
            WS_AUTHENTICATED_ACTIVE.dec()
        logger.info(
            "WebSocket disconnected",
            extra={
                "data": {
                    "connection_id": conn.id,
                    "identity": conn.identity,
                    "open_connections": self.registry.open_count,
                }
            },
        )

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Close every connection (code 1001) and wait briefly for the frames to go out."""
        connections = self.registry.connections()
        for conn in connections:
            conn.close(code=SHUTDOWN_CLOSE_CODE, reason="server shutdown")
        await asyncio.gather(*(conn.wait_closed(timeout) for conn in connections))
        for conn in connections:
            self.disconnect(conn)
        logger.info("Hub shut down", extra={"data": {"closed": len(connections)}})

    def _on_delivery_failure(self, conn: Connection, failure: DeliveryFailure) -> None:
        WS_DELIVERY_FAILURES_TOTAL.inc()
        logger.warning(str(failure), extra={"data": failure.context})
        self.disconnect(conn)

    # ─── Inbound protocol ───

    def handle_text(self, conn: Connection, raw: str | bytes) -> None:
        """Process one client frame and queue its reply on the same connection.

        Any HubError raised while handling is converted into an ``error``
        (or ``auth_error``) reply here; nothing propagates to the caller.
        """
        try:
            envelope = parse_envelope(raw)
            message_type = parse_message_type(envelope)
        except HubError as exc:
            label = "malformed" if isinstance(exc, MalformedMessage) else "unknown"
            WS_MESSAGES_RECEIVED_TOTAL.labels(message_type=label).inc()
            self._reply_error(conn, exc)
            return

        WS_MESSAGES_RECEIVED_TOTAL.labels(message_type=message_type.value).inc()
        try:
            _HANDLERS[message_type](self, conn, envelope.payload)
        except HubError as exc:
            self._reply_error(conn, exc)

    def _handle_auth(self, conn: Connection, payload: dict[str, Any]) -> None:
        # Chained so overlapping auth attempts resolve in receipt order
        conn.auth_task = asyncio.create_task(self._authenticate(conn, payload, conn.auth_task))

    async def _authenticate(
        self,
        conn: Connection,
        payload: dict[str, Any],
        previous: asyncio.Task | None,
    ) -> None:
        if previous is not None:
            await previous
        if not conn.is_open:
            return

        try:
            if conn.is_authenticated:
                raise AuthenticationError("Already authenticated")
            credential = parse_credential(payload)
            identity = await self._verifier.verify(credential)
        except AuthenticationError as exc:
            WS_AUTH_ATTEMPTS_TOTAL.labels(outcome=type(exc).__name__).inc()
            logger.warning(
                "WebSocket authentication failed",
                extra={"data": {"connection_id": conn.id, "reason": str(exc)}},
            )
            self._reply_error(conn, exc)
            return
        except Exception as exc:
            WS_AUTH_ATTEMPTS_TOTAL.labels(outcome="error").inc()
            logger.error(
                f"Credential verifier raised {type(exc).__name__}: {exc}",
                extra={"data": {"connection_id": conn.id}},
            )
            self._reply(conn, auth_error_message("Authentication unavailable"))
            return

        # The socket may have gone away while the verifier was suspended
        if not conn.is_open:
            return

        self._bind(conn, identity)
        WS_AUTH_ATTEMPTS_TOTAL.labels(outcome="success").inc()
        self._reply(conn, server_message(ServerMessageType.AUTH_SUCCESS, identity=identity))

    def _bind(self, conn: Connection, identity: str) -> None:
        conn.identity = identity
        conn.state = ConnectionState.AUTHENTICATED
        superseded = self.registry.register(identity, conn)
        if superseded is None:
            WS_AUTHENTICATED_ACTIVE.inc()
        else:
            superseded.close(code=SUPERSEDED_CLOSE_CODE, reason="superseded")
        logger.info(
            "WebSocket authenticated",
            extra={
                "data": {
                    "connection_id": conn.id,
                    "identity": identity,
                    "superseded": superseded.id if superseded is not None else None,
                }
            },
        )

    def _handle_subscribe_topic(self, conn: Connection, payload: dict[str, Any]) -> None:
        identity = self._require_identity(conn)
        topics = parse_topics(payload)
        for symbol in topics:
            self.subscriptions.subscribe(identity, Topic.price(symbol))
        self._reply(conn, server_message(ServerMessageType.SUBSCRIBE_TOPIC_SUCCESS, topics=topics))
        logger.debug(
            "Subscribed to topics",
            extra={"data": {"identity": identity, "topics": topics}},
        )

    def _handle_unsubscribe_topic(self, conn: Connection, payload: dict[str, Any]) -> None:
        identity = self._require_identity(conn)
        topics = parse_topics(payload)
        for symbol in topics:
            self.subscriptions.unsubscribe(identity, Topic.price(symbol))
        self._reply(
            conn, server_message(ServerMessageType.UNSUBSCRIBE_TOPIC_SUCCESS, topics=topics)
        )

    def _handle_subscribe_portfolio(self, conn: Connection, payload: dict[str, Any]) -> None:
        identity = self._require_identity(conn)
        self.subscriptions.subscribe(identity, PORTFOLIO)
        self._reply(conn, server_message(ServerMessageType.SUBSCRIBE_PORTFOLIO_SUCCESS))

    def _handle_unsubscribe_portfolio(self, conn: Connection, payload: dict[str, Any]) -> None:
        identity = self._require_identity(conn)
        self.subscriptions.unsubscribe(identity, PORTFOLIO)
        self._reply(conn, server_message(ServerMessageType.UNSUBSCRIBE_PORTFOLIO_SUCCESS))

    def _handle_ping(self, conn: Connection, payload: dict[str, Any]) -> None:
        self._reply(conn, pong_message())

    def _require_identity(self, conn: Connection) -> str:
        if not conn.is_authenticated or conn.identity is None:
            raise Unauthenticated(NOT_AUTHENTICATED)
        return conn.identity

    def _reply(self, conn: Connection, message: dict[str, Any]) -> None:
        try:
            conn.send(message)
        except DeliveryFailure:
            # Requester is already closing; its reader will tear it down
            logger.debug(
                "Reply to closing connection dropped",
                extra={"data": {"connection_id": conn.id, "type": message["type"]}},
            )

    def _reply_error(self, conn: Connection, exc: HubError) -> None:
        if isinstance(exc, AuthenticationError):
            self._reply(conn, auth_error_message(exc.message))
        else:
            self._reply(conn, error_message(exc.message))

    # ─── Producer push API ───

    def push_to_topic(self, topic: str | Topic, data: Any) -> int:
        """Send a ``topic_update`` to every connected subscriber of a topic.

        Args:
            topic: Price symbol, or a Topic.
            data: JSON-serializable payload, passed through as ``data``.

        Returns:
            Number of connections the update was queued for.
        """
        if not isinstance(topic, Topic):
            topic = Topic.price(topic)
        message = topic_update_message(str(topic), data)
        delivered = 0
        for identity in self.subscriptions.subscribers_of(topic):
            if self._deliver(self.registry.lookup(identity), message):
                delivered += 1
        return delivered

    def push_global(self, data: Any) -> int:
        """Send a ``signal_broadcast`` to every authenticated connection."""
        message = push_message(ServerMessageType.SIGNAL_BROADCAST, data)
        delivered = 0
        for conn in self.registry.authenticated():
            if self._deliver(conn, message):
                delivered += 1
        return delivered

    def push_to_identity(
        self,
        identity: str,
        data: Any,
        message_type: ServerMessageType = ServerMessageType.IDENTITY_UPDATE,
    ) -> bool:
        """Send one push to a single identity if it is connected."""
        return self._deliver(self.registry.lookup(identity), push_message(message_type, data))

    def push_portfolio_update(self, identity: str, data: Any) -> bool:
        """Send an ``identity_update`` only if identity subscribed to portfolio updates."""
        if not self.subscriptions.is_subscribed(identity, PORTFOLIO):
            return False
        return self.push_to_identity(identity, data)

    def push_trade_notification(self, identity: str, data: Any) -> bool:
        """Send a ``trade_notification``; no subscription required."""
        return self.push_to_identity(identity, data, ServerMessageType.TRADE_NOTIFICATION)

    def _deliver(self, conn: Connection | None, message: dict[str, Any]) -> bool:
        if conn is None:
            return False
        try:
            conn.send(message)
        except DeliveryFailure as exc:
            self._on_delivery_failure(conn, exc)
            return False
        return True

    # ─── Introspection ───

    def portfolio_subscribers(self) -> set[str]:
        return self.subscriptions.subscribers_of(PORTFOLIO)

    def stats(self) -> HubStats:
        counts = self.subscriptions.topics()
        return HubStats(
            total_connections=self.registry.authenticated_count,
            open_connections=self.registry.open_count,
            topics=[
                TopicStats(topic=topic.key, subscribers=n)
                for topic, n in sorted(counts.items(), key=lambda item: item[0].key)
                if topic.kind is TopicKind.PRICE
            ],
            portfolio_subscribers=counts.get(PORTFOLIO, 0),
        )


Handler = Callable[[BroadcastHub, Connection, dict[str, Any]], None]

_HANDLERS: dict[MessageType, Handler] = {
    MessageType.AUTH: BroadcastHub._handle_auth,
    MessageType.SUBSCRIBE_TOPIC: BroadcastHub._handle_subscribe_topic,
    MessageType.UNSUBSCRIBE_TOPIC: BroadcastHub._handle_unsubscribe_topic,
    MessageType.SUBSCRIBE_PORTFOLIO: BroadcastHub._handle_subscribe_portfolio,
    MessageType.UNSUBSCRIBE_PORTFOLIO: BroadcastHub._handle_unsubscribe_portfolio,
    MessageType.PING: BroadcastHub._handle_ping,
}

if _missing := set(MessageType).difference(_HANDLERS):
    raise RuntimeError(f"No hub handler for message types: {sorted(_missing)}")
