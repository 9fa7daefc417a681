"""Synchronization engine: the bounded, deduplicated retained set and its visible view."""

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, Protocol

from logsync.enricher import enrich
from logsync.errors import SnapshotError
from logsync.filters import ServerFilter, source_predicate
from logsync.metrics import IngestMetrics
from logsync.models import LogEntry, Snapshot
from logsync.registry import SourceRegistry

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 10_000


class SnapshotSource(Protocol):
    async def fetch(self, server_filter: ServerFilter, limit: int) -> Snapshot:
        ...


class ChangeKind(Enum):
    RESET = "reset"     # retained set replaced or cleared
    APPEND = "append"   # live entries appended (possibly with evictions)
    VIEW = "view"       # client-side predicate changed


@dataclass(frozen=True)
class EngineChange:
    kind: ChangeKind
    generation: int
    added: tuple[LogEntry, ...] = field(default_factory=tuple)  # newly visible entries


Listener = Callable[[EngineChange], None]


class SyncEngine:
    """Owns the retained set. The only writer; everything else reads projections.

    - load_snapshot() replaces the set wholesale (last request to settle wins).
    - ingest_live() appends one stream record unless paused or already present,
      then evicts the oldest entries while over capacity.
    - visible() is the set filtered by the client-side source predicate.
    """

    def __init__(
        self,
        fetcher: SnapshotSource,
        capacity: int = DEFAULT_CAPACITY,
        metrics: IngestMetrics | None = None,
    ):
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._fetcher = fetcher
        self._capacity = capacity
        self._metrics = metrics or IngestMetrics()

        self._entries: deque[LogEntry] = deque()
        self._ids: set[int] = set()
        self._registry = SourceRegistry()
        self._client_sources: frozenset[str] = frozenset()
        self._predicate = source_predicate(None)
        self._visible: deque[LogEntry] = deque()

        self._paused = False
        self._loading = False
        self._generation = 0
        self._listeners: list[Listener] = []

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, entry_id: int) -> bool:
        return entry_id in self._ids

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def client_sources(self) -> frozenset[str]:
        return self._client_sources

    @property
    def metrics(self) -> IngestMetrics:
        return self._metrics

    # ── Listeners ─────────────────────────────────────────────────

    def add_listener(self, listener: Listener):
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener):
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def _notify(self, kind: ChangeKind, added: tuple[LogEntry, ...] = ()):
        change = EngineChange(kind=kind, generation=self._generation, added=added)
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception("Engine listener %r failed on %s", listener, kind.value)

    # ── Snapshot path ─────────────────────────────────────────────

    async def load_snapshot(self, server_filter: ServerFilter | None = None) -> Snapshot:
        """Fetch a snapshot and replace the retained set with it.

        Concurrent calls are not queued or cancelled: whichever settles last
        overwrites the set. On failure the current set is left untouched and
        the SnapshotError propagates. The loading flag is cleared whenever a
        request settles.
        """
        server_filter = server_filter or ServerFilter()
        self._loading = True
        try:
            snapshot = await self._fetcher.fetch(server_filter, self._capacity)
        except SnapshotError as e:
            self._metrics.record_snapshot_failure()
            logger.warning("Snapshot load failed: %s", e)
            raise
        finally:
            self._loading = False

        self._replace(snapshot.logs)
        self._metrics.record_snapshot_loaded()
        logger.info(
            "Loaded snapshot: %d entries retained (total=%d, has_more=%s)",
            len(self._entries), snapshot.total, snapshot.has_more,
        )
        return snapshot

    def _replace(self, logs: Iterable[LogEntry]):
        """Swap in a new retained set in one step."""
        entries: deque[LogEntry] = deque()
        ids: set[int] = set()
        for raw_entry in logs:
            if raw_entry.id in ids:
                continue
            entries.append(enrich(raw_entry))
            ids.add(raw_entry.id)

        while len(entries) > self._capacity:
            ids.discard(entries.popleft().id)

        self._entries = entries
        self._ids = ids
        self._registry.reset(entries)
        self._visible = deque(e for e in entries if self._predicate(e))
        self._generation += 1
        self._notify(ChangeKind.RESET)

    # ── Live path ─────────────────────────────────────────────────

    def ingest_live(self, entry: LogEntry) -> bool:
        """Accept one stream record. Returns True if it was inserted."""
        self._metrics.record_received()
        if self._paused:
            self._metrics.record_dropped_paused()
            return False

        if entry.id in self._ids:
            self._metrics.record_duplicate()
            logger.debug("Dropping duplicate entry id=%d", entry.id)
            return False

        enriched = enrich(entry)
        self._entries.append(enriched)
        self._ids.add(enriched.id)
        self._registry.add(enriched)

        added: tuple[LogEntry, ...] = ()
        if self._predicate(enriched):
            self._visible.append(enriched)
            added = (enriched,)

        self._evict_overflow()
        self._metrics.record_inserted()
        self._notify(ChangeKind.APPEND, added)
        return True

    def _evict_overflow(self):
        while len(self._entries) > self._capacity:
            oldest = self._entries.popleft()
            self._ids.discard(oldest.id)
            self._registry.discard(oldest)
            # visible keeps arrival order, so an evicted visible entry is at its front
            if self._visible and self._visible[0].id == oldest.id:
                self._visible.popleft()
            self._metrics.record_evicted()

    # ── Controls ──────────────────────────────────────────────────

    def set_paused(self, paused: bool):
        """Gate ingest_live. Records arriving while paused are lost, not buffered."""
        if paused != self._paused:
            logger.info("Live ingest %s", "paused" if paused else "resumed")
        self._paused = paused

    def clear_all(self):
        """Empty the retained set. The subscription and filter are unaffected."""
        self._entries.clear()
        self._ids.clear()
        self._registry.clear()
        self._visible.clear()
        self._generation += 1
        self._notify(ChangeKind.RESET)

    def set_client_predicate(self, sources: Iterable[str] | None):
        """Change the client-side source filter and re-derive the view."""
        self._client_sources = frozenset(sources or ())
        self._predicate = source_predicate(self._client_sources)
        self._visible = deque(e for e in self._entries if self._predicate(e))
        self._notify(ChangeKind.VIEW)

    # ── Projections ───────────────────────────────────────────────

    def entries(self) -> tuple[LogEntry, ...]:
        """The retained set in arrival order."""
        return tuple(self._entries)

    def visible(self) -> tuple[LogEntry, ...]:
        return tuple(self._visible)

    def sources(self) -> list[str]:
        return self._registry.sources()
