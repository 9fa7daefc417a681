"""Entry enrichment — detect a `service | message` source prefix on raw lines."""

import re
from dataclasses import replace

from logsync.models import LogEntry, ParsedLog

# CSI sequences (colours, cursor moves), OSC sequences, and two-byte escapes.
ANSI_PATTERN = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)|\x1b[@-Z\\-_]")

# docker compose style prefixes: "web-1  | ...", "worker_2 | ...", "api.1|..."
SOURCE_PREFIX_PATTERN = re.compile(
    r"^(?P<source>[A-Za-z0-9_-]+(?:\.\d+)?)\s*\|\s?(?P<message>.*)$",
    re.DOTALL,
)


def strip_ansi(text: str) -> str:
    """Remove ANSI escape sequences from text."""
    return ANSI_PATTERN.sub("", text)


def detect_source(raw: str) -> tuple[str, str] | None:
    """Return (source, message) if the line carries a source prefix, else None."""
    match = SOURCE_PREFIX_PATTERN.match(strip_ansi(raw))
    if not match:
        return None
    return match.group("source"), match.group("message").lstrip()


def enrich(entry: LogEntry) -> LogEntry:
    """Attach a detected source label and cleaned message to an entry.

    Entries that already carry a source are returned as-is, so enriching
    twice is a no-op. The raw line is never modified.
    """
    if entry.parsed is not None and entry.parsed.source:
        return entry

    detected = detect_source(entry.raw)
    if detected is None:
        return entry

    source, message = detected
    base = entry.parsed if entry.parsed is not None else ParsedLog()
    return replace(entry, parsed=replace(base, source=source, message=message))
