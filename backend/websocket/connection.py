"""One client WebSocket plus its outbound queue and protocol state.

Every message for a client (replies and producer pushes alike) goes
through ``Connection.send()``, which only enqueues. A per-connection
sender task drains the queue onto the socket, so producers never block
on a slow client and each client sees its messages in enqueue order.

The queue is bounded: when it is full the oldest pending message is
dropped and counted. A transport error in the sender is reported once
through the ``on_failure`` callback, after which the connection refuses
further messages.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
from collections.abc import Callable
from enum import StrEnum
from typing import Any
from uuid import uuid4

from fastapi import WebSocket

from backend.common.logging import get_logger
from backend.common.metrics import WS_MESSAGES_DROPPED_TOTAL, WS_MESSAGES_SENT_TOTAL
from backend.websocket.exceptions import DeliveryFailure

logger = get_logger("HUB")

DEFAULT_MAX_PENDING = 256


class ConnectionState(StrEnum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    CLOSING = "closing"
    CLOSED = "closed"


_OPEN_STATES = frozenset({ConnectionState.UNAUTHENTICATED, ConnectionState.AUTHENTICATED})


class _Close:
    """Queue marker: close the socket once everything ahead of it is sent."""

    def __init__(self, code: int, reason: str) -> None:
        self.code = code
        self.reason = reason


FailureCallback = Callable[["Connection", DeliveryFailure], None]


class Connection:
    """A live client channel as seen by the hub.

    Attributes:
        id: Opaque connection handle (uuid4 hex).
        identity: Resolved identity, or None until authentication succeeds.
        state: Protocol/liveness state.
        dropped: Messages discarded because the outbound queue was full.
        auth_task: The most recent in-flight credential verification, if any.
    """

    def __init__(self, websocket: WebSocket, max_pending: int = DEFAULT_MAX_PENDING) -> None:
        self.id = uuid4().hex
        self.websocket = websocket
        self.identity: str | None = None
        self.state = ConnectionState.UNAUTHENTICATED
        self.dropped = 0
        self.auth_task: asyncio.Task | None = None
        self._outbox: asyncio.Queue[dict[str, Any] | _Close] = asyncio.Queue(maxsize=max_pending)
        self._sender: asyncio.Task | None = None

    def __repr__(self) -> str:
        return f"<Connection {self.id[:8]} {self.state} identity={self.identity!r}>"

    @property
    def is_open(self) -> bool:
        return self.state in _OPEN_STATES

    @property
    def is_authenticated(self) -> bool:
        return self.state is ConnectionState.AUTHENTICATED

    @property
    def pending(self) -> int:
        return self._outbox.qsize()

    # ─── Outbound ───

    def send(self, message: dict[str, Any]) -> None:
        """Queue a message for delivery, dropping the oldest if full.

        Raises:
            DeliveryFailure: The connection is closing or closed.
        """
        if not self.is_open:
            raise DeliveryFailure(
                "Connection is not open",
                context={"connection_id": self.id, "state": str(self.state)},
            )
        self._put(message)

    def close(self, code: int = 1000, reason: str = "") -> None:
        """Stop accepting messages and close the socket after queued ones.

        No-op unless the connection is open.
        """
        if not self.is_open:
            return
        self.state = ConnectionState.CLOSING
        self._put(_Close(code, reason))

    def _put(self, item: dict[str, Any] | _Close) -> None:
        if self._outbox.full():
            self._outbox.get_nowait()
            self._outbox.task_done()
            self.dropped += 1
            WS_MESSAGES_DROPPED_TOTAL.inc()
            logger.debug(
                "Outbound queue full, dropped oldest message",
                extra={"data": {"connection_id": self.id, "dropped_total": self.dropped}},
            )
        self._outbox.put_nowait(item)

    # ─── Sender task ───

    def start(self, on_failure: FailureCallback) -> None:
        """Start the sender task on the running event loop."""
        self._sender = asyncio.create_task(self._run_sender(on_failure))

    async def _run_sender(self, on_failure: FailureCallback) -> None:
        while True:
            item = await self._outbox.get()
            try:
                if isinstance(item, _Close):
                    await self._close_socket(item.code, item.reason)
                    return
                await self.websocket.send_text(json.dumps(item))
                WS_MESSAGES_SENT_TOTAL.labels(message_type=item.get("type", "unknown")).inc()
            except Exception as exc:
                failure = DeliveryFailure(
                    "Send to client failed",
                    context={
                        "connection_id": self.id,
                        "identity": self.identity,
                        "error": f"{type(exc).__name__}: {exc}",
                    },
                )
                self._discard_pending()
                on_failure(self, failure)
                await self._close_socket(1011, "delivery failure")
                return
            finally:
                self._outbox.task_done()

    async def _close_socket(self, code: int, reason: str) -> None:
        try:
            await self.websocket.close(code=code, reason=reason)
        except Exception as exc:
            # Peer already gone; nothing left to tell it
            logger.debug(
                "Socket close failed",
                extra={"data": {"connection_id": self.id, "error": str(exc)}},
            )

    def _discard_pending(self) -> None:
        while not self._outbox.empty():
            self._outbox.get_nowait()
            self._outbox.task_done()

    # ─── Teardown ───

    def mark_closed(self) -> None:
        """Final state: cancel background work and discard unsent messages."""
        self.state = ConnectionState.CLOSED
        if self.auth_task is not None and not self.auth_task.done():
            self.auth_task.cancel()
        sender = self._sender
        if sender is not None and not sender.done() and sender is not asyncio.current_task():
            sender.cancel()
        self._discard_pending()

    async def wait_closed(self, timeout: float = 5.0) -> None:
        """Wait for the sender to flush a pending close, up to ``timeout``."""
        if self.state is not ConnectionState.CLOSING or self._sender is None:
            return
        await asyncio.wait({self._sender}, timeout=timeout)

    async def flush(self) -> None:
        """Wait for in-flight authentication and every queued message to be handled."""
        if self.auth_task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self.auth_task
        await self._outbox.join()
