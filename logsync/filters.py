"""Filter model — server-side fields vs. client-side source predicate.

A Filter is split by a fixed policy: ``sources`` is only ever evaluated
locally against retained entries; every other field is forwarded to the
snapshot and stream endpoints as a ServerFilter.
"""

import logging
import re
from dataclasses import dataclass, field, replace
from typing import Callable, Iterable

from logsync.models import LogEntry

logger = logging.getLogger(__name__)

EntryPredicate = Callable[[LogEntry], bool]
SpanFinder = Callable[[str], list[tuple[int, int]]]


def _normalize(values: Iterable[str] | None) -> frozenset[str]:
    if not values:
        return frozenset()
    return frozenset(v.strip() for v in values if v and v.strip())


@dataclass(frozen=True)
class ServerFilter:
    """The only filter shape ever sent across the snapshot/stream boundary."""

    search: str = ""
    regex: bool = False
    levels: frozenset[str] = field(default_factory=frozenset)
    after_id: int = 0
    limit: int = 0

    def to_query_params(self) -> dict[str, str]:
        """Encode as /api/logs query parameters, omitting unset fields."""
        params: dict[str, str] = {}
        if self.search:
            params["search"] = self.search
        if self.levels:
            params["levels"] = ",".join(sorted(self.levels))
        if self.regex:
            params["regex"] = "true"
        if self.after_id > 0:
            params["afterId"] = str(self.after_id)
        if self.limit > 0:
            params["limit"] = str(self.limit)
        return params

    def to_wire(self) -> dict:
        """Encode as the `filter` object of a subscribe message."""
        wire: dict = {}
        if self.search:
            wire["search"] = self.search
        if self.levels:
            wire["levels"] = sorted(self.levels)
        if self.regex:
            wire["regex"] = True
        if self.after_id > 0:
            wire["afterId"] = self.after_id
        if self.limit > 0:
            wire["limit"] = self.limit
        return wire

    def with_limit(self, limit: int) -> "ServerFilter":
        return replace(self, limit=limit)


@dataclass(frozen=True)
class Filter:
    search: str = ""
    regex: bool = False
    levels: frozenset[str] = field(default_factory=frozenset)
    sources: frozenset[str] = field(default_factory=frozenset)
    after_id: int = 0
    limit: int = 0

    @classmethod
    def build(
        cls,
        search: str | None = None,
        regex: bool = False,
        levels: Iterable[str] | None = None,
        sources: Iterable[str] | None = None,
        after_id: int = 0,
        limit: int = 0,
    ) -> "Filter":
        return cls(
            search=search or "",
            regex=regex,
            levels=frozenset(l.upper() for l in _normalize(levels)),
            sources=_normalize(sources),
            after_id=after_id,
            limit=limit,
        )

    @property
    def server_filter(self) -> ServerFilter:
        return ServerFilter(
            search=self.search,
            regex=self.regex,
            levels=self.levels,
            after_id=self.after_id,
            limit=self.limit,
        )

    def partition(self) -> tuple[ServerFilter, EntryPredicate]:
        return self.server_filter, source_predicate(self.sources)

    def with_sources(self, sources: Iterable[str]) -> "Filter":
        return replace(self, sources=_normalize(sources))

    def without_sources(self) -> "Filter":
        return replace(self, sources=frozenset())

    def toggle_source(self, source: str) -> "Filter":
        """Add source to the selection, or remove it if already selected."""
        if source in self.sources:
            return replace(self, sources=self.sources - {source})
        return replace(self, sources=self.sources | {source})


def partition(flt: Filter) -> tuple[ServerFilter, EntryPredicate]:
    """Split a Filter into its server part and its client-side predicate."""
    return flt.partition()


def source_predicate(sources: Iterable[str] | None) -> EntryPredicate:
    """Build the client-side membership test.

    An empty or absent set matches everything. Otherwise only entries whose
    parsed source is in the set match; entries with no source are excluded.
    """
    wanted = _normalize(sources)
    if not wanted:
        return lambda entry: True

    def predicate(entry: LogEntry) -> bool:
        src = entry.source
        return bool(src) and src in wanted

    return predicate


def compile_search(search: str | None, regex: bool = False) -> re.Pattern | None:
    """Compile the search term to a case-insensitive pattern.

    Invalid regex syntax degrades to a literal match of the raw string.
    """
    if not search:
        return None
    if regex:
        try:
            return re.compile(search, re.IGNORECASE)
        except re.error as e:
            logger.warning("Invalid regex %r (%s), matching it literally", search, e)
    return re.compile(re.escape(search), re.IGNORECASE)


def build_search_matcher(search: str | None, regex: bool = False) -> EntryPredicate:
    """Predicate matching the search term against an entry's raw line."""
    pattern = compile_search(search, regex)
    if pattern is None:
        return lambda entry: True
    return lambda entry: pattern.search(entry.raw) is not None


def build_span_finder(search: str | None, regex: bool = False) -> SpanFinder:
    """Return a function listing (start, end) spans of search hits in a text."""
    pattern = compile_search(search, regex)
    if pattern is None:
        return lambda text: []

    def find(text: str) -> list[tuple[int, int]]:
        return [m.span() for m in pattern.finditer(text) if m.end() > m.start()]

    return find


def matches_server_filter(entry: LogEntry, server_filter: ServerFilter) -> bool:
    """Evaluate the server-side predicates locally."""
    if server_filter.after_id > 0 and entry.id <= server_filter.after_id:
        return False

    if server_filter.levels:
        level = entry.level
        if not level or level.upper() not in {l.upper() for l in server_filter.levels}:
            return False

    return build_search_matcher(server_filter.search, server_filter.regex)(entry)
