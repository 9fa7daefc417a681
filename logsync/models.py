"""Log entry model and wire (de)serialization: frozen dataclasses over camelCase JSON."""

from dataclasses import dataclass, field
from typing import Any

from logsync.errors import DecodeError


@dataclass(frozen=True)
class ParsedLog:
    time: str | None = None
    level: str | None = None
    message: str | None = None
    source: str | None = None
    fields: dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "ParsedLog":
        if not isinstance(data, dict):
            raise DecodeError(f"parsed must be an object, got {type(data).__name__}")
        fields = data.get("fields")
        return cls(
            time=_opt_str(data.get("time")),
            level=_opt_str(data.get("level")),
            message=_opt_str(data.get("message")),
            source=_opt_str(data.get("source")),
            fields=dict(fields) if isinstance(fields, dict) else None,
        )

    def to_dict(self) -> dict:
        out: dict[str, Any] = {}
        for key in ("time", "level", "message", "source"):
            value = getattr(self, key)
            if value:
                out[key] = value
        if self.fields:
            out["fields"] = dict(self.fields)
        return out


@dataclass(frozen=True)
class LogEntry:
    id: int              # server-assigned, monotonic
    timestamp: str       # ISO 8601, as sent by the server
    raw: str             # original line, never rewritten
    parsed: ParsedLog | None = None

    @property
    def source(self) -> str | None:
        return self.parsed.source if self.parsed else None

    @property
    def level(self) -> str | None:
        return self.parsed.level if self.parsed else None

    @property
    def message(self) -> str:
        """Cleaned message when known, otherwise the raw line."""
        if self.parsed and self.parsed.message:
            return self.parsed.message
        return self.raw

    @classmethod
    def from_dict(cls, data: dict) -> "LogEntry":
        """Decode one wire entry. Raises DecodeError on a malformed payload."""
        if not isinstance(data, dict):
            raise DecodeError(f"log entry must be an object, got {type(data).__name__}")
        entry_id = data.get("id")
        if not isinstance(entry_id, int) or isinstance(entry_id, bool):
            raise DecodeError(f"log entry has invalid id: {entry_id!r}")
        raw = data.get("raw")
        if not isinstance(raw, str):
            raise DecodeError(f"log entry {entry_id} has no raw line")

        parsed = data.get("parsed")
        return cls(
            id=entry_id,
            timestamp=str(data.get("timestamp") or ""),
            raw=raw,
            parsed=ParsedLog.from_dict(parsed) if parsed is not None else None,
        )

    def to_dict(self) -> dict:
        out: dict[str, Any] = {"id": self.id, "timestamp": self.timestamp, "raw": self.raw}
        if self.parsed is not None:
            out["parsed"] = self.parsed.to_dict()
        return out


@dataclass(frozen=True)
class Snapshot:
    logs: tuple[LogEntry, ...] = field(default_factory=tuple)
    total: int = 0
    has_more: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "Snapshot":
        if not isinstance(data, dict):
            raise DecodeError("snapshot body must be an object")
        logs = data.get("logs") or []
        if not isinstance(logs, list):
            raise DecodeError("snapshot 'logs' must be a list")
        try:
            total = int(data.get("total", len(logs)))
        except (TypeError, ValueError) as e:
            raise DecodeError(f"snapshot 'total' is not an integer: {e}") from e
        return cls(
            logs=tuple(LogEntry.from_dict(item) for item in logs),
            total=total,
            has_more=bool(data.get("hasMore", False)),
        )

    def to_dict(self) -> dict:
        return {
            "logs": [entry.to_dict() for entry in self.logs],
            "total": self.total,
            "hasMore": self.has_more,
        }


@dataclass(frozen=True)
class ServerStatus:
    buffer_size: int
    buffer_used: int
    total_received: int
    uptime: str
    stdin_open: bool

    @classmethod
    def from_dict(cls, data: dict) -> "ServerStatus":
        if not isinstance(data, dict):
            raise DecodeError("status body must be an object")
        stdin_open = data.get("stdinOpen", False)
        if not isinstance(stdin_open, bool):
            raise DecodeError(f"stdinOpen must be a boolean, got {stdin_open!r}")
        try:
            return cls(
                buffer_size=int(data["bufferSize"]),
                buffer_used=int(data["bufferUsed"]),
                total_received=int(data["totalReceived"]),
                uptime=str(data.get("uptime", "")),
                stdin_open=stdin_open,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise DecodeError(f"malformed status body: {e}") from e

    @property
    def usage_pct(self) -> float:
        if self.buffer_size <= 0:
            return 0.0
        return 100.0 * self.buffer_used / self.buffer_size


def _opt_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)
