"""Output formatters (text, NDJSON, colorized ANSI) and the console renderer."""

import json
import sys
from typing import Callable, TextIO

from logsync.engine import ChangeKind, EngineChange, SyncEngine
from logsync.enricher import strip_ansi
from logsync.filters import SpanFinder, build_span_finder
from logsync.models import LogEntry, ServerStatus

# ANSI color codes
COLORS = {
    "DEBUG": "\033[36m",   # cyan
    "INFO": "\033[32m",    # green
    "WARN": "\033[33m",    # yellow
    "WARNING": "\033[33m", # yellow
    "ERROR": "\033[31m",   # red
    "FATAL": "\033[35m",   # magenta
}
SOURCE_COLOR = "\033[34m"
HIGHLIGHT = "\033[7m"      # reverse video
RESET = "\033[0m"

Formatter = Callable[[LogEntry], str]


def format_text(entry: LogEntry) -> str:
    """Return the raw log line without escape sequences."""
    return strip_ansi(entry.raw)


def format_json(entry: LogEntry) -> str:
    """Return one JSON object per line, compatible with jq."""
    return json.dumps(entry.to_dict())


def highlight(text: str, find: SpanFinder | None = None) -> str:
    """Wrap every hit reported by find in text with reverse video."""
    spans = find(text) if find is not None else []
    if not spans:
        return text
    out = []
    pos = 0
    for start, end in spans:
        out.append(text[pos:start])
        out.append(f"{HIGHLIGHT}{text[start:end]}{RESET}")
        pos = end
    out.append(text[pos:])
    return "".join(out)


def format_color(entry: LogEntry, find: SpanFinder | None = None) -> str:
    """Return `[source] LEVEL message` with ANSI colors and search hits highlighted."""
    parts = []
    if entry.source:
        parts.append(f"{SOURCE_COLOR}[{entry.source}]{RESET}")
    level = (entry.level or "").upper()
    if level:
        parts.append(f"{COLORS.get(level, '')}{level}{RESET}")
    parts.append(highlight(strip_ansi(entry.message), find))
    return " ".join(parts)


def get_formatter(output: str = "text", search: str | None = None, regex: bool = False) -> Formatter:
    """Factory that returns the right formatter for the output mode.

    The search is compiled once here and shared by every formatted line.
    """
    if output == "json":
        return format_json
    if output == "color":
        find = build_span_finder(search, regex)
        return lambda entry: format_color(entry, find)
    return format_text


def format_status_line(connected: bool, stdin_open: bool, count: int, paused: bool) -> str:
    parts = [
        "Connected" if connected else "Disconnected",
        "Streaming" if stdin_open else "Stream ended",
        f"{count:,} logs",
    ]
    if paused:
        parts.append("PAUSED")
    return " · ".join(parts)


def format_server_status(status: ServerStatus) -> str:
    return (
        f"buffer: {status.buffer_used:,}/{status.buffer_size:,} ({status.usage_pct:.1f}%)\n"
        f"total received: {status.total_received:,}\n"
        f"uptime: {status.uptime}\n"
        f"upstream: {'open' if status.stdin_open else 'closed'}"
    )


class ConsoleRenderer:
    """Prints the engine's visible view to a text stream.

    Appends print only the newly visible entries; a reset or a view change
    reprints the whole visible view.
    """

    def __init__(self, engine: SyncEngine, formatter: Formatter = format_text, out: TextIO | None = None):
        self._engine = engine
        self._formatter = formatter
        self._out = out or sys.stdout
        self._attached = False

    def attach(self):
        """Render the current view and start following engine changes."""
        if self._attached:
            return
        self._attached = True
        self._render_all()
        self._engine.add_listener(self.on_change)

    def detach(self):
        self._engine.remove_listener(self.on_change)
        self._attached = False

    def on_change(self, change: EngineChange):
        if change.kind is ChangeKind.APPEND:
            self._write(change.added)
        else:
            self._render_all()

    def _render_all(self):
        self._write(self._engine.visible())

    def _write(self, entries):
        for entry in entries:
            print(self._formatter(entry), file=self._out)
        self._out.flush()
