import asyncio
import json

import pytest
import pytest_asyncio
from aiohttp import WSMsgType, web
from aiohttp.test_utils import TestServer

from logsync.filters import Filter, matches_server_filter
from logsync.models import LogEntry


class FakeLogServer:
    """In-process stand-in for the log server: /api/logs, /api/status, /health, /ws/logs."""

    def __init__(self):
        self.entries: list[dict] = []
        self.log_requests: list[dict] = []
        self.subscriptions: list[dict] = []
        self.sockets: list[web.WebSocketResponse] = []
        self.connections = 0
        self.clear_count = 0
        self.fail_status: int | None = None
        self.bad_body: str | None = None  # "not-json" or "bad-item"
        self.stdin_open = True
        self.healthy = True
        self.server: TestServer | None = None

        self.app = web.Application()
        self.app.router.add_get("/api/logs", self._handle_logs)
        self.app.router.add_delete("/api/logs", self._handle_clear)
        self.app.router.add_get("/api/status", self._handle_status)
        self.app.router.add_get("/health", self._handle_health)
        self.app.router.add_get("/ws/logs", self._handle_ws)

    async def start(self):
        self.server = TestServer(self.app)
        await self.server.start_server()

    async def close(self):
        for ws in list(self.sockets):
            await ws.close()
        await self.server.close()

    @property
    def base_url(self) -> str:
        return str(self.server.make_url("")).rstrip("/")

    @property
    def ws_url(self) -> str:
        return self.base_url.replace("http://", "ws://", 1) + "/ws/logs"

    def add(self, entry_id: int, raw: str, level: str | None = None) -> dict:
        entry = {"id": entry_id, "timestamp": "2024-01-15T08:23:45Z", "raw": raw}
        if level:
            entry["parsed"] = {"level": level, "message": raw}
        self.entries.append(entry)
        return entry

    async def push(self, payload):
        text = payload if isinstance(payload, str) else json.dumps(payload)
        for ws in list(self.sockets):
            await ws.send_str(text)

    async def push_log(self, entry: dict):
        await self.push({"type": "log", "data": entry})

    async def drop_connections(self):
        for ws in list(self.sockets):
            await ws.close()

    async def _handle_logs(self, request: web.Request) -> web.Response:
        params = dict(request.query)
        self.log_requests.append(params)
        if self.fail_status is not None:
            return web.json_response({"error": "boom"}, status=self.fail_status)
        if self.bad_body == "not-json":
            return web.Response(text="<html>gateway error</html>", content_type="text/html")
        if self.bad_body == "bad-item":
            logs = [{"id": 1, "timestamp": "", "raw": "ok"}, {"id": "two", "raw": "broken"}]
            return web.json_response({"logs": logs, "total": 2, "hasMore": False})

        flt = Filter.build(
            search=params.get("search"),
            regex=params.get("regex") == "true",
            levels=params["levels"].split(",") if params.get("levels") else None,
            after_id=int(params.get("afterId", 0)),
        )
        limit = int(params.get("limit", 1000))
        matched = [
            e for e in self.entries
            if matches_server_filter(LogEntry.from_dict(e), flt.server_filter)
        ]
        return web.json_response({
            "logs": matched[:limit],
            "total": len(matched),
            "hasMore": len(matched) > limit,
        })

    async def _handle_clear(self, request: web.Request) -> web.Response:
        self.clear_count += 1
        self.entries.clear()
        return web.json_response({"status": "cleared"})

    async def _handle_status(self, request: web.Request) -> web.Response:
        return web.json_response({
            "bufferSize": 10000,
            "bufferUsed": len(self.entries),
            "totalReceived": len(self.entries),
            "uptime": "1m0s",
            "stdinOpen": self.stdin_open,
        })

    async def _handle_health(self, request: web.Request) -> web.Response:
        if not self.healthy:
            return web.json_response({"status": "degraded"}, status=503)
        return web.json_response({"status": "ok"})

    async def _handle_ws(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        self.connections += 1
        self.sockets.append(ws)
        try:
            async for msg in ws:
                if msg.type != WSMsgType.TEXT:
                    continue
                data = json.loads(msg.data)
                if data.get("type") == "subscribe":
                    self.subscriptions.append(data.get("filter", {}))
                elif data.get("type") == "ping":
                    await ws.send_json({"type": "pong"})
        finally:
            self.sockets.remove(ws)
        return ws


async def _wait_until(predicate, timeout: float = 3.0, interval: float = 0.01):
    """Poll predicate until it is truthy or fail after timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() >= deadline:
            raise AssertionError("condition not met within %.1fs" % timeout)
        await asyncio.sleep(interval)


@pytest_asyncio.fixture
async def log_server():
    server = FakeLogServer()
    await server.start()
    yield server
    await server.close()


@pytest.fixture
def wait_until():
    return _wait_until
