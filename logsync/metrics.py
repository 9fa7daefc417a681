"""Ingest counters for the sync engine and stream client."""

COUNTERS = (
    "received",
    "inserted",
    "duplicates",
    "dropped_paused",
    "evicted",
    "snapshots_loaded",
    "snapshot_failures",
    "decode_errors",
    "reconnects",
)


class IngestMetrics:
    """Plain counters; all mutation happens on the event loop thread."""

    def __init__(self):
        self._reset()

    def _reset(self):
        self._received = 0
        self._inserted = 0
        self._duplicates = 0
        self._dropped_paused = 0
        self._evicted = 0
        self._snapshots_loaded = 0
        self._snapshot_failures = 0
        self._decode_errors = 0
        self._reconnects = 0

    def record_received(self):
        """Record a live record handed to the engine."""
        self._received += 1

    def record_inserted(self):
        self._inserted += 1

    def record_duplicate(self):
        self._duplicates += 1

    def record_dropped_paused(self):
        """Record a live record lost because ingest was paused."""
        self._dropped_paused += 1

    def record_evicted(self, count: int = 1):
        self._evicted += count

    def record_snapshot_loaded(self):
        self._snapshots_loaded += 1

    def record_snapshot_failure(self):
        self._snapshot_failures += 1

    def record_decode_error(self):
        """Record a malformed stream message that was dropped."""
        self._decode_errors += 1

    def record_reconnect(self):
        self._reconnects += 1

    def snapshot(self) -> dict:
        return {
            "received": self._received,
            "inserted": self._inserted,
            "duplicates": self._duplicates,
            "dropped_paused": self._dropped_paused,
            "evicted": self._evicted,
            "snapshots_loaded": self._snapshots_loaded,
            "snapshot_failures": self._snapshot_failures,
            "decode_errors": self._decode_errors,
            "reconnects": self._reconnects,
        }

    def snapshot_and_reset(self) -> dict:
        """Read all counters and reset them to zero."""
        snap = self.snapshot()
        self._reset()
        return snap

    def format_summary(self) -> str:
        snap = self.snapshot()
        return " ".join(f"{name}={snap[name]}" for name in COUNTERS)
