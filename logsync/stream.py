"""Stream client: one live WebSocket subscription with fixed-delay reconnect.

The client never calls back into the engine. It produces a sequential
channel of typed events (LogReceived, StatusChanged, ConnectionChanged)
which the consumer reads one at a time through ``events()``.
"""

import asyncio
import contextlib
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Union

import aiohttp

from logsync.errors import DecodeError
from logsync.filters import ServerFilter
from logsync.metrics import IngestMetrics
from logsync.models import LogEntry

logger = logging.getLogger(__name__)

DEFAULT_RECONNECT_DELAY = 2.0


class ConnectionState(Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


@dataclass(frozen=True)
class LogReceived:
    entry: LogEntry


@dataclass(frozen=True)
class StatusChanged:
    stdin_open: bool


@dataclass(frozen=True)
class ConnectionChanged:
    state: ConnectionState


StreamEvent = Union[LogReceived, StatusChanged, ConnectionChanged]

_END = object()  # channel terminator pushed by close()


def decode_message(text: str) -> StreamEvent | None:
    """Decode one server→client message.

    Returns None for unrecognized types (keepalives etc.). Raises
    DecodeError on malformed JSON or a malformed payload.
    """
    try:
        msg = json.loads(text)
    except ValueError as e:
        raise DecodeError(f"invalid JSON: {e}") from e
    if not isinstance(msg, dict):
        raise DecodeError("message must be a JSON object")

    kind = msg.get("type")
    if kind == "log":
        return LogReceived(LogEntry.from_dict(msg.get("data")))
    if kind == "status":
        data = msg.get("data")
        if not isinstance(data, dict) or not isinstance(data.get("stdinOpen"), bool):
            raise DecodeError("status message without a boolean stdinOpen")
        return StatusChanged(stdin_open=data["stdinOpen"])
    return None


def encode_subscribe(server_filter: ServerFilter) -> dict:
    return {"type": "subscribe", "filter": server_filter.to_wire()}


class StreamClient:
    """Manages a single live subscription.

    CONNECTING → OPEN → CLOSED → (reconnect_delay) → CONNECTING → ...

    On every OPEN the current filter is (re)sent as a subscribe message.
    On every CLOSED exactly one reconnect is scheduled, unless the client
    has been closed, in which case the pending timer is cancelled.
    """

    def __init__(
        self,
        url: str,
        session: aiohttp.ClientSession,
        server_filter: ServerFilter | None = None,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        metrics: IngestMetrics | None = None,
    ):
        self._url = url
        self._session = session
        self._server_filter = server_filter or ServerFilter()
        self._reconnect_delay = reconnect_delay
        self._metrics = metrics or IngestMetrics()

        self._queue: asyncio.Queue = asyncio.Queue()
        self._state = ConnectionState.CLOSED
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._task: asyncio.Task | None = None
        self._reconnect_handle: asyncio.TimerHandle | None = None
        self._started = False
        self._closed = False

    @property
    def url(self) -> str:
        return self._url

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.OPEN

    @property
    def server_filter(self) -> ServerFilter:
        return self._server_filter

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    def start(self):
        """Begin connecting. Calling start() again is a no-op."""
        if self._started or self._closed:
            return
        self._started = True
        self._spawn_connection()

    async def events(self) -> AsyncIterator[StreamEvent]:
        """Yield events in delivery order until the client is closed."""
        while True:
            event = await self._queue.get()
            if event is _END:
                return
            yield event

    async def update_filter(self, server_filter: ServerFilter):
        """Remember the filter; resend the subscription now if the socket is open.

        When not open, the filter is sent on the next successful connect.
        """
        self._server_filter = server_filter
        if self._state is not ConnectionState.OPEN or self._ws is None:
            logger.debug("Stream not open, filter will be sent on next connect")
            return
        try:
            await self._send_subscribe(self._ws)
        except (ConnectionError, aiohttp.ClientError) as e:
            # The reader sees the close and the reconnect resubscribes.
            logger.warning("Failed to resend subscription: %s", e)

    async def close(self):
        """Dispose: cancel the reconnect timer and reader, close the socket."""
        if self._closed:
            return
        self._closed = True
        self._cancel_reconnect()

        task = self._task
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._task = None

        if self._ws is not None:
            await self._ws.close()
            self._ws = None

        self._set_state(ConnectionState.CLOSED)
        self._queue.put_nowait(_END)
        logger.info("Stream client closed")

    # ── Connection lifecycle ──────────────────────────────────────

    def _spawn_connection(self):
        self._reconnect_handle = None
        if self._closed:
            return
        self._task = asyncio.get_running_loop().create_task(self._run_connection())

    async def _run_connection(self):
        self._set_state(ConnectionState.CONNECTING)
        try:
            ws = await self._session.ws_connect(self._url)
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as e:
            logger.warning("Failed to connect to %s: %s", self._url, e)
            self._handle_closed()
            return

        self._ws = ws
        try:
            self._set_state(ConnectionState.OPEN)
            logger.info("Connected to %s", self._url)
            await self._send_subscribe(ws)
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._dispatch(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.warning("Stream transport error: %s", ws.exception())
                    break
        except (ConnectionError, aiohttp.ClientError) as e:
            logger.warning("Stream connection lost: %s", e)
        finally:
            self._ws = None
            await ws.close()

        self._handle_closed()

    def _handle_closed(self):
        self._set_state(ConnectionState.CLOSED)
        if self._closed:
            return
        self._schedule_reconnect()

    def _schedule_reconnect(self):
        self._cancel_reconnect()
        logger.info("Reconnecting in %.1fs", self._reconnect_delay)
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(self._reconnect_delay, self._reconnect)

    def _reconnect(self):
        self._metrics.record_reconnect()
        self._spawn_connection()

    def _cancel_reconnect(self):
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    def _set_state(self, state: ConnectionState):
        if state is self._state:
            return
        self._state = state
        self._queue.put_nowait(ConnectionChanged(state))

    # ── Messages ──────────────────────────────────────────────────

    async def _send_subscribe(self, ws: aiohttp.ClientWebSocketResponse):
        await ws.send_json(encode_subscribe(self._server_filter))
        logger.debug("Subscribed with filter %s", self._server_filter.to_wire())

    def _dispatch(self, text: str):
        try:
            event = decode_message(text)
        except DecodeError as e:
            self._metrics.record_decode_error()
            logger.warning("Dropping malformed stream message: %s", e)
            return
        if event is None:
            logger.debug("Ignoring unrecognized stream message: %.80s", text)
            return
        self._queue.put_nowait(event)
