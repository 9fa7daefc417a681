"""Viewer session: wires the snapshot fetcher, stream client and sync engine together."""

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Callable

import aiohttp

from logsync.config import Config
from logsync.engine import SyncEngine
from logsync.errors import SnapshotError
from logsync.filters import Filter
from logsync.metrics import IngestMetrics
from logsync.models import ServerStatus, Snapshot
from logsync.snapshot import SnapshotFetcher
from logsync.stream import (
    ConnectionChanged,
    ConnectionState,
    LogReceived,
    StatusChanged,
    StreamClient,
    StreamEvent,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionStatus:
    connected: bool
    stdin_open: bool
    paused: bool
    loading: bool
    count: int


StatusListener = Callable[[SessionStatus], None]


class LogViewerSession:
    """One viewer: a snapshot + live subscription feeding a single SyncEngine.

    The session consumes stream events one at a time, so live records are
    ingested strictly in delivery order. Filter changes update the stream
    subscription and reload the snapshot; the source part of the filter is
    applied locally only.
    """

    def __init__(self, config: Config, http: aiohttp.ClientSession | None = None):
        self._config = config
        self._http = http
        self._owns_http = http is None
        self._metrics = IngestMetrics()
        self._filter = config.initial_filter

        self._fetcher: SnapshotFetcher | None = None
        self._engine: SyncEngine | None = None
        self._stream: StreamClient | None = None
        self._pump_task: asyncio.Task | None = None
        self._status_task: asyncio.Task | None = None

        self._connected = False
        self._stdin_open = True
        self._status_listeners: list[StatusListener] = []

    async def __aenter__(self) -> "LogViewerSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    # ── Accessors ─────────────────────────────────────────────────

    @property
    def engine(self) -> SyncEngine:
        if self._engine is None:
            raise RuntimeError("session not started")
        return self._engine

    @property
    def stream(self) -> StreamClient:
        if self._stream is None:
            raise RuntimeError("session not started")
        return self._stream

    @property
    def fetcher(self) -> SnapshotFetcher:
        if self._fetcher is None:
            raise RuntimeError("session not started")
        return self._fetcher

    @property
    def filter(self) -> Filter:
        return self._filter

    @property
    def metrics(self) -> IngestMetrics:
        return self._metrics

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def stdin_open(self) -> bool:
        return self._stdin_open

    @property
    def paused(self) -> bool:
        return self._engine.paused if self._engine else False

    @property
    def loading(self) -> bool:
        return self._engine.loading if self._engine else False

    def status(self) -> SessionStatus:
        return SessionStatus(
            connected=self._connected,
            stdin_open=self._stdin_open,
            paused=self.paused,
            loading=self.loading,
            count=len(self._engine.visible()) if self._engine else 0,
        )

    def add_status_listener(self, listener: StatusListener):
        self._status_listeners.append(listener)

    # ── Lifecycle ─────────────────────────────────────────────────

    async def start(self):
        """Connect the stream and perform the initial snapshot load.

        A failed initial load is logged, not raised; the live stream keeps
        running and refresh() can be retried.
        """
        if self._engine is not None:
            return
        if self._http is None:
            self._http = aiohttp.ClientSession()

        cfg = self._config
        self._fetcher = SnapshotFetcher(cfg.base_url, self._http, timeout=cfg.request_timeout)
        self._engine = SyncEngine(self._fetcher, capacity=cfg.capacity, metrics=self._metrics)
        self._engine.set_client_predicate(self._filter.sources)
        self._stream = StreamClient(
            cfg.ws_url,
            self._http,
            server_filter=self._filter.server_filter,
            reconnect_delay=cfg.reconnect_delay,
            metrics=self._metrics,
        )

        loop = asyncio.get_running_loop()
        self._pump_task = loop.create_task(self._pump())
        self._stream.start()
        if cfg.status_interval > 0:
            self._status_task = loop.create_task(self._poll_status(cfg.status_interval))

        logger.info("Viewer session started: api=%s stream=%s", cfg.base_url, cfg.ws_url)
        try:
            await self._engine.load_snapshot(self._filter.server_filter)
        except SnapshotError as e:
            logger.error("Failed to load initial logs: %s", e)

    async def close(self):
        """Tear down: stream (and its reconnect timer), event pump, HTTP session."""
        if self._stream is not None:
            await self._stream.close()
        if self._pump_task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._pump_task
            self._pump_task = None
        if self._status_task is not None:
            self._status_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._status_task
            self._status_task = None
        if self._owns_http and self._http is not None:
            await self._http.close()
            self._http = None
        logger.info("Viewer session closed (%s)", self._metrics.format_summary())

    # ── Operations ────────────────────────────────────────────────

    async def apply_filter(self, new_filter: Filter) -> Snapshot:
        """Switch to a new filter.

        Sources are applied to the view immediately; the server part is
        resent on the stream and the snapshot is reloaded with it. Raises
        SnapshotError if the reload fails (the retained set is kept).
        """
        self._filter = new_filter
        server_filter, _ = new_filter.partition()
        self.engine.set_client_predicate(new_filter.sources)
        await self.stream.update_filter(server_filter)
        try:
            return await self.engine.load_snapshot(server_filter)
        except SnapshotError as e:
            logger.error("Failed to apply filter: %s", e)
            raise

    async def toggle_source(self, source: str) -> Snapshot:
        return await self.apply_filter(self._filter.toggle_source(source))

    async def clear_source_filter(self) -> Snapshot:
        return await self.apply_filter(self._filter.without_sources())

    async def refresh(self) -> Snapshot:
        """Reload the snapshot with the current server filter."""
        return await self.engine.load_snapshot(self._filter.server_filter)

    def set_paused(self, paused: bool):
        self.engine.set_paused(paused)
        self._notify_status()

    def clear_all(self):
        """Clear the local view only."""
        self.engine.clear_all()

    async def clear_remote(self):
        """Clear the server buffer, then the local view."""
        await self.fetcher.clear()
        self.engine.clear_all()

    async def fetch_status(self) -> ServerStatus:
        return await self.fetcher.fetch_status()

    # ── Event pump ────────────────────────────────────────────────

    async def _pump(self):
        async for event in self.stream.events():
            self._handle_event(event)

    def _handle_event(self, event: StreamEvent):
        if isinstance(event, LogReceived):
            self.engine.ingest_live(event.entry)
        elif isinstance(event, StatusChanged):
            if event.stdin_open != self._stdin_open:
                logger.info("Upstream %s", "producing" if event.stdin_open else "closed")
            self._stdin_open = event.stdin_open
            self._notify_status()
        elif isinstance(event, ConnectionChanged):
            self._connected = event.state is ConnectionState.OPEN
            self._notify_status()

    def _notify_status(self):
        status = self.status()
        for listener in list(self._status_listeners):
            try:
                listener(status)
            except Exception:
                logger.exception("Status listener %r failed", listener)

    async def _poll_status(self, interval: float):
        while True:
            await asyncio.sleep(interval)
            try:
                status = await self.fetcher.fetch_status()
            except SnapshotError as e:
                logger.warning("Status poll failed: %s", e)
                continue
            logger.info(
                "Server buffer %d/%d (%.0f%%), received=%d, uptime=%s, upstream=%s",
                status.buffer_used, status.buffer_size, status.usage_pct,
                status.total_received, status.uptime,
                "open" if status.stdin_open else "closed",
            )
