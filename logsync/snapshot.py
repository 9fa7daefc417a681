"""Snapshot fetcher — REST client for /api/logs, /api/status and the clear endpoint."""

import asyncio
import logging

import aiohttp

from logsync.errors import DecodeError, SnapshotError
from logsync.filters import ServerFilter
from logsync.models import ServerStatus, Snapshot

logger = logging.getLogger(__name__)

LOGS_PATH = "/api/logs"
STATUS_PATH = "/api/status"
HEALTH_PATH = "/health"


class SnapshotFetcher:
    """Issues one-shot requests against the log server's HTTP API.

    The aiohttp session is owned by the caller. Every failure (non-2xx,
    network error, timeout, bad body) is raised as SnapshotError.
    """

    def __init__(self, base_url: str, session: aiohttp.ClientSession, timeout: float = 10.0):
        self._base_url = base_url.rstrip("/")
        self._session = session
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    @property
    def base_url(self) -> str:
        return self._base_url

    async def fetch(self, server_filter: ServerFilter, limit: int) -> Snapshot:
        """GET a snapshot of at most `limit` entries matching the server filter."""
        params = server_filter.with_limit(limit).to_query_params()
        data = await self._request("GET", LOGS_PATH, params=params)
        try:
            snapshot = Snapshot.from_dict(data)
        except DecodeError as e:
            raise SnapshotError(f"Malformed snapshot body: {e}") from e
        logger.debug("Fetched snapshot: %d logs, total=%d", len(snapshot.logs), snapshot.total)
        return snapshot

    async def fetch_status(self) -> ServerStatus:
        data = await self._request("GET", STATUS_PATH)
        try:
            return ServerStatus.from_dict(data)
        except DecodeError as e:
            raise SnapshotError(f"Malformed status body: {e}") from e

    async def clear(self):
        """DELETE the server-side buffer. Idempotent; no payload is read."""
        await self._request("DELETE", LOGS_PATH, read_body=False)
        logger.info("Cleared server log buffer")

    async def is_healthy(self) -> bool:
        """Probe /health. Returns False instead of raising."""
        try:
            data = await self._request("GET", HEALTH_PATH)
        except SnapshotError as e:
            logger.debug("Health probe failed: %s", e)
            return False
        return isinstance(data, dict) and data.get("status") == "ok"

    async def _request(self, method: str, path: str, params: dict | None = None, read_body: bool = True):
        url = f"{self._base_url}{path}"
        try:
            async with self._session.request(method, url, params=params, timeout=self._timeout) as resp:
                if not resp.ok:
                    raise SnapshotError(
                        f"{method} {path} failed: {resp.status} {resp.reason}",
                        status=resp.status,
                    )
                if not read_body:
                    return None
                return await resp.json(content_type=None)
        except aiohttp.ClientError as e:
            raise SnapshotError(f"{method} {path} failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise SnapshotError(f"{method} {path} timed out") from e
        except ValueError as e:
            raise SnapshotError(f"{method} {path} returned invalid JSON: {e}") from e
