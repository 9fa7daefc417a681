"""Source registry: distinct source labels across the retained entries."""

from collections import Counter
from typing import Iterable

from logsync.models import LogEntry


class SourceRegistry:
    """Reference-counted set of source labels.

    Counts are kept per label so that evicting one entry of a source only
    drops the label once its last entry is gone.
    """

    def __init__(self):
        self._counts: Counter[str] = Counter()

    def __len__(self) -> int:
        return len(self._counts)

    def __contains__(self, source: str) -> bool:
        return self._counts.get(source, 0) > 0

    def add(self, entry: LogEntry):
        source = entry.source
        if source:
            self._counts[source] += 1

    def discard(self, entry: LogEntry):
        source = entry.source
        if not source or source not in self._counts:
            return
        self._counts[source] -= 1
        if self._counts[source] <= 0:
            del self._counts[source]

    def reset(self, entries: Iterable[LogEntry]):
        """Rebuild from scratch, e.g. after a snapshot replaced the set."""
        self._counts = Counter(e.source for e in entries if e.source)

    def clear(self):
        self._counts.clear()

    def count(self, source: str) -> int:
        return self._counts.get(source, 0)

    def sources(self) -> list[str]:
        """Sorted, duplicate-free list of labels currently present."""
        return sorted(self._counts)
