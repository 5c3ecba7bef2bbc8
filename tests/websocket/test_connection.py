"""Tests for Connection: outbound queue, sender task, close and teardown."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from backend.websocket.connection import Connection, ConnectionState
from backend.websocket.exceptions import DeliveryFailure
from tests.factories import make_mock_ws, sent_messages


def msg(n: int) -> dict:
    return {"type": "topic_update", "payload": {"n": n}}


class TestSend:
    @pytest.mark.asyncio
    async def test_messages_delivered_in_enqueue_order(self):
        ws = make_mock_ws()
        conn = Connection(ws)
        conn.start(MagicMock())

        for n in range(5):
            conn.send(msg(n))
        await conn.flush()

        assert [m["payload"]["n"] for m in sent_messages(ws)] == [0, 1, 2, 3, 4]
        conn.mark_closed()

    @pytest.mark.asyncio
    async def test_full_queue_drops_oldest(self):
        """A slow client loses its oldest pending messages, never the newest."""
        ws = make_mock_ws()
        conn = Connection(ws, max_pending=2)

        for n in range(4):
            conn.send(msg(n))
        assert conn.pending == 2
        assert conn.dropped == 2

        conn.start(MagicMock())
        await conn.flush()

        assert [m["payload"]["n"] for m in sent_messages(ws)] == [2, 3]
        conn.mark_closed()

    def test_send_on_closing_connection_raises(self):
        conn = Connection(make_mock_ws())
        conn.close()
        with pytest.raises(DeliveryFailure):
            conn.send(msg(0))


class TestSenderFailure:
    @pytest.mark.asyncio
    async def test_transport_error_reported_once(self):
        ws = make_mock_ws()
        ws.send_text.side_effect = RuntimeError("socket reset")
        on_failure = MagicMock()
        conn = Connection(ws)
        conn.start(on_failure)

        conn.send(msg(0))
        conn.send(msg(1))
        await conn.flush()

        on_failure.assert_called_once()
        failed_conn, failure = on_failure.call_args.args
        assert failed_conn is conn
        assert isinstance(failure, DeliveryFailure)
        assert "socket reset" in failure.context["error"]
        assert ws.send_text.await_count == 1
        ws.close.assert_awaited_once_with(code=1011, reason="delivery failure")
        conn.mark_closed()


class TestClose:
    @pytest.mark.asyncio
    async def test_close_after_queued_messages(self):
        """Messages queued before close() still go out, then the close frame."""
        ws = make_mock_ws()
        conn = Connection(ws)
        conn.start(MagicMock())

        conn.send(msg(0))
        conn.close(code=4000, reason="superseded")
        assert conn.state is ConnectionState.CLOSING

        await conn.wait_closed(timeout=1.0)

        assert [m["payload"]["n"] for m in sent_messages(ws)] == [0]
        ws.close.assert_awaited_once_with(code=4000, reason="superseded")

    @pytest.mark.asyncio
    async def test_close_is_noop_when_not_open(self):
        ws = make_mock_ws()
        conn = Connection(ws)
        conn.start(MagicMock())
        conn.close(code=4000)
        conn.close(code=1001)

        await conn.wait_closed(timeout=1.0)

        ws.close.assert_awaited_once_with(code=4000, reason="")

    @pytest.mark.asyncio
    async def test_wait_closed_returns_immediately_when_open(self):
        conn = Connection(make_mock_ws())
        conn.start(MagicMock())
        await conn.wait_closed(timeout=1.0)
        assert conn.is_open
        conn.mark_closed()


class TestMarkClosed:
    @pytest.mark.asyncio
    async def test_mark_closed_discards_pending(self):
        ws = make_mock_ws()
        conn = Connection(ws)
        conn.send(msg(0))
        conn.send(msg(1))

        conn.mark_closed()

        assert conn.state is ConnectionState.CLOSED
        assert conn.pending == 0
        assert not conn.is_open
        with pytest.raises(DeliveryFailure):
            conn.send(msg(2))
