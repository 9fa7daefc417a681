"""Exception types raised by the log sync client."""


class LogSyncError(Exception):
    """Base class for all logsync errors."""


class DecodeError(LogSyncError):
    """A wire payload (stream message or snapshot body) could not be decoded."""


class SnapshotError(LogSyncError):
    """A snapshot/status/clear request failed.

    ``status`` holds the HTTP status code when the server answered, or None
    for network failures, timeouts and undecodable bodies.
    """

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status
