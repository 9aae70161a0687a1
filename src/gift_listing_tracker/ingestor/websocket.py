"""TonAPI trace-stream WebSocket client.

Subscribes to ``subscribe_trace`` for the watched accounts and hands every
``trace`` notification to a callback. The connection is retried forever at a
fixed delay: the process is meant to run until it is terminated.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import re
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any
from urllib.parse import quote

import websockets
from websockets.asyncio.client import ClientConnection, connect

from gift_listing_tracker.ingestor.models import TraceNotification, TraceParseError

logger = logging.getLogger(__name__)

DEFAULT_PING_INTERVAL = 30  # seconds
DEFAULT_RECONNECT_DELAY = 1.0  # seconds
SUBSCRIBE_REQUEST_ID = 1

_TOKEN_PARAM_RE = re.compile(r"([?&]token=)[^&]+", re.IGNORECASE)


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass
class StreamStats:
    traces_received: int = 0
    malformed_frames: int = 0
    reconnect_count: int = 0
    last_message_time: float | None = None
    connected_since: float | None = None
    last_error: str | None = None


class TraceStreamError(Exception):
    """Base exception for trace stream errors."""


class TraceConnectionError(TraceStreamError):
    """Raised when connection to WebSocket fails."""


TraceCallback = Callable[[TraceNotification], Awaitable[None]]
StateCallback = Callable[[ConnectionState], Awaitable[None]]
ConnectFn = Callable[..., Awaitable[ClientConnection]]
SleepFn = Callable[[float], Awaitable[None]]


def with_token(url: str, token: str | None) -> str:
    """Put ``token`` into the URL's ``token`` query parameter."""
    if not token:
        return url
    encoded = quote(token, safe="")
    if _TOKEN_PARAM_RE.search(url):
        return _TOKEN_PARAM_RE.sub(lambda m: f"{m.group(1)}{encoded}", url)
    sep = "&" if "?" in url else "?"
    return f"{url}{sep}token={encoded}"


def redact_token(url: str) -> str:
    return _TOKEN_PARAM_RE.sub(lambda m: f"{m.group(1)}***", url)


def build_subscribe_request(accounts: Sequence[str]) -> dict[str, Any]:
    return {
        "id": SUBSCRIBE_REQUEST_ID,
        "jsonrpc": "2.0",
        "method": "subscribe_trace",
        "params": list(accounts),
    }


class TraceStreamHandler:
    """WebSocket client for the TonAPI trace feed.

    State machine: DISCONNECTED -> CONNECTING -> CONNECTED -> DISCONNECTED, looping
    until ``stop()``. ``connect`` and ``sleep`` are injectable so the loop can be
    driven without a network or real timers.
    """

    def __init__(
        self,
        *,
        host: str,
        on_trace: TraceCallback,
        accounts: Sequence[str] = (),
        token: str | None = None,
        on_state_change: StateCallback | None = None,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        ping_interval: int = DEFAULT_PING_INTERVAL,
        connect_fn: ConnectFn | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._url = with_token(host, token)
        self._url_for_log = redact_token(self._url)
        self._token = token
        self._accounts = tuple(accounts)
        self._on_trace = on_trace
        self._on_state_change = on_state_change
        self._reconnect_delay = reconnect_delay
        self._ping_interval = ping_interval
        self._connect_fn: ConnectFn = connect_fn or connect
        self._sleep = sleep

        self._state = ConnectionState.DISCONNECTED
        self._stats = StreamStats()

        self._ws: ClientConnection | None = None
        self._running = False
        self._stop_event: asyncio.Event | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def stats(self) -> StreamStats:
        return self._stats

    async def _set_state(self, new_state: ConnectionState) -> None:
        if self._state != new_state:
            old = self._state
            self._state = new_state
            logger.info("Trace stream state: %s -> %s", old.value, new_state.value)
            if self._on_state_change:
                try:
                    await self._on_state_change(new_state)
                except Exception as e:  # pragma: no cover
                    logger.error("Error in state change callback: %s", e)

    async def _connect(self) -> ClientConnection:
        await self._set_state(ConnectionState.CONNECTING)
        logger.info("Connecting to TonAPI WS: %s", self._url_for_log)
        headers = {"Authorization": f"Bearer {self._token}"} if self._token else None
        try:
            ws = await self._connect_fn(
                self._url,
                additional_headers=headers,
                ping_interval=self._ping_interval,
                ping_timeout=self._ping_interval * 2,
            )
        except Exception as e:
            self._stats.last_error = str(e)
            raise TraceConnectionError(f"Failed to connect to {self._url_for_log}: {e}") from e

        if self._accounts:
            try:
                await ws.send(json.dumps(build_subscribe_request(self._accounts)))
            except Exception as e:
                self._stats.last_error = str(e)
                with contextlib.suppress(Exception):
                    await ws.close()
                raise TraceConnectionError(f"Failed to subscribe on {self._url_for_log}: {e}") from e
            logger.info("Subscribed to %d account(s)", len(self._accounts))

        await self._set_state(ConnectionState.CONNECTED)
        self._stats.connected_since = time.time()
        return ws

    async def _handle_message(self, message: str | bytes) -> None:
        try:
            data = json.loads(message)
        except (json.JSONDecodeError, UnicodeDecodeError):
            self._stats.malformed_frames += 1
            logger.warning("Invalid JSON message on trace stream")
            return
        if not isinstance(data, dict):
            self._stats.malformed_frames += 1
            logger.warning("Ignoring non-object trace stream frame")
            return

        if data.get("method") != "trace":
            logger.debug("Ignoring trace stream frame id=%r method=%r", data.get("id"), data.get("method"))
            return

        try:
            notification = TraceNotification.from_websocket_message(data)
        except TraceParseError as e:
            self._stats.malformed_frames += 1
            logger.warning("Failed to parse trace notification: %s", e)
            return

        self._stats.traces_received += 1
        self._stats.last_message_time = time.time()
        try:
            await self._on_trace(notification)
        except Exception:
            logger.exception("Trace handler failed for %s", notification.hash)

    async def _listen(self, ws: ClientConnection) -> None:
        try:
            while self._running:
                try:
                    message = await asyncio.wait_for(ws.recv(), timeout=1.0)
                except TimeoutError:
                    continue
                await self._handle_message(message)
        except websockets.ConnectionClosed as e:
            logger.warning("Trace stream connection closed: %s", e)

    async def start(self) -> None:
        """Connect and listen until ``stop()`` is called, reconnecting on any fault."""
        if self._running:
            raise RuntimeError("Trace stream already running")
        self._running = True
        self._stop_event = asyncio.Event()

        if not self._accounts:
            logger.warning("No watch accounts configured; connecting without a subscription")

        while self._running and not self._stop_event.is_set():
            try:
                self._ws = await self._connect()
                await self._listen(self._ws)
            except Exception as e:
                self._stats.last_error = str(e)
                logger.error("Trace stream error: %s", e)
            finally:
                with contextlib.suppress(Exception):
                    if self._ws:
                        await self._ws.close()
                self._ws = None
                await self._set_state(ConnectionState.DISCONNECTED)

            if self._running and not self._stop_event.is_set():
                self._stats.reconnect_count += 1
                logger.warning("Trace stream disconnected. Reconnecting in %.1fs...", self._reconnect_delay)
                await self._sleep(self._reconnect_delay)

    async def stop(self) -> None:
        self._running = False
        if self._stop_event:
            self._stop_event.set()
        if self._ws:
            with contextlib.suppress(Exception):
                await self._ws.close()
