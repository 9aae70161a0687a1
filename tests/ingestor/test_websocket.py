"""Tests for the TonAPI trace stream handler."""

from __future__ import annotations

import json
from typing import Any
from unittest.mock import AsyncMock

import pytest
import websockets

from gift_listing_tracker.ingestor.models import TraceNotification
from gift_listing_tracker.ingestor.websocket import (
    ConnectionState,
    TraceStreamHandler,
    build_subscribe_request,
    redact_token,
    with_token,
)

ACCOUNTS = ("0:" + "a" * 64, "EQ" + "c" * 46)


def trace_frame(trace_hash: str = "h1") -> str:
    return json.dumps(
        {"jsonrpc": "2.0", "method": "trace", "params": {"hash": trace_hash, "accounts": list(ACCOUNTS)}}
    )


class FakeConnection:
    """Replays queued frames, then reports a closed connection."""

    def __init__(self, frames: list[str | bytes]) -> None:
        self._frames = list(frames)
        self.sent: list[str] = []
        self.closed = False

    async def send(self, message: str) -> None:
        self.sent.append(message)

    async def recv(self) -> str | bytes:
        if not self._frames:
            raise websockets.ConnectionClosed(None, None)
        return self._frames.pop(0)

    async def close(self) -> None:
        self.closed = True


class FakeConnector:
    """Stands in for ``websockets.connect``; each item is a connection or an exception."""

    def __init__(self, outcomes: list[Any]) -> None:
        self._outcomes = list(outcomes)
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def __call__(self, url: str, **kwargs: Any) -> FakeConnection:
        self.calls.append((url, kwargs))
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class StopAfterSleeps:
    """Fake sleep that records delays and stops the handler after ``n`` calls."""

    def __init__(self, n: int) -> None:
        self.n = n
        self.delays: list[float] = []
        self.handler: TraceStreamHandler | None = None

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if len(self.delays) >= self.n and self.handler:
            await self.handler.stop()


def make_handler(
    connector: FakeConnector,
    sleep: StopAfterSleeps,
    on_trace: AsyncMock,
    *,
    token: str | None = "secret-token",
    accounts: tuple[str, ...] = ACCOUNTS,
    on_state_change: AsyncMock | None = None,
) -> TraceStreamHandler:
    handler = TraceStreamHandler(
        host="wss://tonapi.io/v2/websocket",
        token=token,
        accounts=accounts,
        on_trace=on_trace,
        on_state_change=on_state_change,
        reconnect_delay=1.0,
        connect_fn=connector,
        sleep=sleep,
    )
    sleep.handler = handler
    return handler


class TestTokenHelpers:
    """Tests for token URL handling."""

    def test_with_token_appends(self) -> None:
        assert with_token("wss://h/ws", "a b") == "wss://h/ws?token=a%20b"
        assert with_token("wss://h/ws?x=1", "t") == "wss://h/ws?x=1&token=t"

    def test_with_token_replaces_existing(self) -> None:
        assert with_token("wss://h/ws?token=old&x=1", "new") == "wss://h/ws?token=new&x=1"

    def test_without_token(self) -> None:
        assert with_token("wss://h/ws", None) == "wss://h/ws"

    def test_redact(self) -> None:
        assert redact_token("wss://h/ws?x=1&token=abc") == "wss://h/ws?x=1&token=***"

    def test_subscribe_request(self) -> None:
        assert build_subscribe_request(ACCOUNTS) == {
            "id": 1,
            "jsonrpc": "2.0",
            "method": "subscribe_trace",
            "params": list(ACCOUNTS),
        }


class TestTraceStreamHandler:
    """Tests for the connect/listen/reconnect loop."""

    @pytest.mark.asyncio
    async def test_subscribes_and_delivers_traces(self) -> None:
        """On connect one subscribe request is sent and traces reach the callback."""
        conn = FakeConnection([trace_frame("h1"), trace_frame("h2")])
        connector = FakeConnector([conn])
        sleep = StopAfterSleeps(1)
        on_trace = AsyncMock()

        handler = make_handler(connector, sleep, on_trace)
        await handler.start()

        assert [json.loads(m) for m in conn.sent] == [build_subscribe_request(ACCOUNTS)]
        hashes = [call.args[0].hash for call in on_trace.await_args_list]
        assert hashes == ["h1", "h2"]
        assert isinstance(on_trace.await_args_list[0].args[0], TraceNotification)
        assert handler.stats.traces_received == 2
        assert conn.closed

    @pytest.mark.asyncio
    async def test_token_sent_as_header_and_query(self) -> None:
        """The bearer token goes in both the URL and the Authorization header."""
        connector = FakeConnector([FakeConnection([])])
        handler = make_handler(connector, StopAfterSleeps(1), AsyncMock())
        await handler.start()

        url, kwargs = connector.calls[0]
        assert url.endswith("?token=secret-token")
        assert kwargs["additional_headers"] == {"Authorization": "Bearer secret-token"}

    @pytest.mark.asyncio
    async def test_no_subscription_without_accounts(self) -> None:
        """Nothing is sent when the watch list is empty."""
        conn = FakeConnection([])
        handler = make_handler(FakeConnector([conn]), StopAfterSleeps(1), AsyncMock(), accounts=())
        await handler.start()
        assert conn.sent == []

    @pytest.mark.asyncio
    async def test_malformed_frames_are_dropped(self) -> None:
        """Bad frames are counted and skipped without closing the connection."""
        frames: list[str | bytes] = [
            "not json",
            "[1, 2]",
            json.dumps({"method": "trace", "params": {"hash": "", "accounts": []}}),
            json.dumps({"id": 1, "jsonrpc": "2.0", "result": "ok"}),
            trace_frame("good"),
        ]
        on_trace = AsyncMock()
        handler = make_handler(FakeConnector([FakeConnection(frames)]), StopAfterSleeps(1), on_trace)
        await handler.start()

        on_trace.assert_awaited_once()
        assert on_trace.await_args.args[0].hash == "good"
        assert handler.stats.malformed_frames == 3

    @pytest.mark.asyncio
    async def test_callback_error_does_not_stop_stream(self) -> None:
        """An exception in the trace callback is logged and the next frame is read."""
        on_trace = AsyncMock(side_effect=[RuntimeError("boom"), None])
        conn = FakeConnection([trace_frame("h1"), trace_frame("h2")])
        handler = make_handler(FakeConnector([conn]), StopAfterSleeps(1), on_trace)
        await handler.start()
        assert on_trace.await_count == 2

    @pytest.mark.asyncio
    async def test_reconnects_with_fixed_delay(self) -> None:
        """Failures and closes reconnect after the same delay every time."""
        connector = FakeConnector(
            [
                OSError("refused"),
                OSError("refused again"),
                FakeConnection([trace_frame("after")]),
            ]
        )
        sleep = StopAfterSleeps(3)
        on_trace = AsyncMock()
        handler = make_handler(connector, sleep, on_trace)
        await handler.start()

        assert sleep.delays == [1.0, 1.0, 1.0]
        assert len(connector.calls) == 3
        assert handler.stats.reconnect_count == 3
        on_trace.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_state_transitions(self) -> None:
        """The handler walks CONNECTING -> CONNECTED -> DISCONNECTED."""
        on_state_change = AsyncMock()
        handler = make_handler(
            FakeConnector([FakeConnection([])]),
            StopAfterSleeps(1),
            AsyncMock(),
            on_state_change=on_state_change,
        )
        await handler.start()

        states = [call.args[0] for call in on_state_change.await_args_list]
        assert states == [
            ConnectionState.CONNECTING,
            ConnectionState.CONNECTED,
            ConnectionState.DISCONNECTED,
        ]
        assert handler.state == ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_start_twice_raises(self) -> None:
        """A running handler cannot be started again."""
        handler = make_handler(FakeConnector([]), StopAfterSleeps(1), AsyncMock())
        handler._running = True
        with pytest.raises(RuntimeError):
            await handler.start()

    @pytest.mark.asyncio
    async def test_failed_subscribe_closes_socket(self) -> None:
        """A socket whose subscribe request fails is closed before reconnecting."""

        class BrokenSend(FakeConnection):
            async def send(self, message: str) -> None:
                raise OSError("send failed")

        broken = BrokenSend([])
        connector = FakeConnector([broken, FakeConnection([trace_frame("after")])])
        sleep = StopAfterSleeps(2)
        on_trace = AsyncMock()
        handler = make_handler(connector, sleep, on_trace)
        await handler.start()

        assert broken.closed
        assert "send failed" in (handler.stats.last_error or "")
        assert len(connector.calls) == 2
        on_trace.assert_awaited_once()
