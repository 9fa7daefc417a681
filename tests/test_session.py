import pytest

from logsync.config import Config
from logsync.errors import SnapshotError
from logsync.filters import Filter
from logsync.session import LogViewerSession


def _config(log_server, **overrides):
    values = {"base_url": log_server.base_url, "reconnect_delay": 0.05}
    values.update(overrides)
    return Config(**values)


def _ids(entries):
    return [e.id for e in entries]


class TestLogViewerSession:
    @pytest.mark.asyncio
    async def test_start_loads_snapshot_and_subscribes(self, log_server, wait_until):
        log_server.add(1, "web | up", level="INFO")
        log_server.add(2, "db | up", level="ERROR")
        config = _config(log_server, levels=("error",), sources=("db",))
        async with LogViewerSession(config) as session:
            await wait_until(lambda: log_server.subscriptions)
            assert _ids(session.engine.entries()) == [2]
            assert _ids(session.engine.visible()) == [2]
            assert log_server.subscriptions == [{"levels": ["ERROR"]}]
            assert log_server.log_requests[0] == {"levels": "ERROR", "limit": "10000"}
        assert not session.connected

    @pytest.mark.asyncio
    async def test_live_entries_deduplicated_against_snapshot(self, log_server, wait_until):
        for i in (1, 2, 3):
            log_server.add(i, f"line {i}")
        async with LogViewerSession(_config(log_server)) as session:
            await wait_until(lambda: log_server.subscriptions)
            await log_server.push_log({"id": 2, "timestamp": "", "raw": "line 2"})
            await log_server.push_log({"id": 4, "timestamp": "", "raw": "line 4"})
            await wait_until(lambda: 4 in session.engine)
            assert _ids(session.engine.entries()) == [1, 2, 3, 4]
            assert session.metrics.snapshot()["duplicates"] == 1

    @pytest.mark.asyncio
    async def test_apply_filter_resubscribes_and_reloads(self, log_server, wait_until):
        log_server.add(1, "disk ok")
        log_server.add(2, "disk full")
        async with LogViewerSession(_config(log_server)) as session:
            await wait_until(lambda: log_server.subscriptions)
            snap = await session.apply_filter(Filter.build(search="full"))
            assert snap.total == 1
            await wait_until(lambda: len(log_server.subscriptions) == 2)
            assert log_server.subscriptions[-1] == {"search": "full"}
            assert _ids(session.engine.entries()) == [2]

    @pytest.mark.asyncio
    async def test_source_toggle_stays_local(self, log_server, wait_until):
        log_server.add(1, "web | a")
        log_server.add(2, "db | b")
        async with LogViewerSession(_config(log_server)) as session:
            await wait_until(lambda: log_server.subscriptions)
            await session.toggle_source("web")
            assert _ids(session.engine.visible()) == [1]
            assert all("sources" not in sub for sub in log_server.subscriptions)
            assert all("sources" not in req for req in log_server.log_requests)

            await session.clear_source_filter()
            assert _ids(session.engine.visible()) == [1, 2]
            assert session.engine.sources() == ["db", "web"]

    @pytest.mark.asyncio
    async def test_status_events(self, log_server, wait_until):
        async with LogViewerSession(_config(log_server)) as session:
            statuses = []
            session.add_status_listener(statuses.append)
            await wait_until(lambda: log_server.subscriptions)
            await log_server.push({"type": "status", "data": {"stdinOpen": False}})
            await wait_until(lambda: not session.stdin_open)

            session.set_paused(True)
            assert statuses[-1].paused is True
            assert statuses[-1].stdin_open is False

    @pytest.mark.asyncio
    async def test_paused_session_drops_live_entries(self, log_server, wait_until):
        async with LogViewerSession(_config(log_server)) as session:
            await wait_until(lambda: log_server.subscriptions)
            session.set_paused(True)
            await log_server.push_log({"id": 1, "timestamp": "", "raw": "lost"})
            await wait_until(lambda: session.metrics.snapshot()["dropped_paused"] == 1)
            session.set_paused(False)
            await log_server.push_log({"id": 2, "timestamp": "", "raw": "kept"})
            await wait_until(lambda: 2 in session.engine)
            assert _ids(session.engine.entries()) == [2]

    @pytest.mark.asyncio
    async def test_reconnect_keeps_retained_set(self, log_server, wait_until):
        log_server.add(1, "a")
        async with LogViewerSession(_config(log_server)) as session:
            await wait_until(lambda: log_server.subscriptions)
            await log_server.drop_connections()
            await wait_until(lambda: len(log_server.subscriptions) == 2)
            await wait_until(lambda: session.connected)
            assert _ids(session.engine.entries()) == [1]

    @pytest.mark.asyncio
    async def test_initial_load_failure_not_raised(self, log_server, wait_until):
        log_server.fail_status = 500
        async with LogViewerSession(_config(log_server)) as session:
            assert len(session.engine) == 0
            assert session.metrics.snapshot()["snapshot_failures"] == 1
            log_server.fail_status = None
            log_server.add(1, "recovered")
            await session.refresh()
            assert _ids(session.engine.entries()) == [1]

    @pytest.mark.asyncio
    async def test_clear_remote_and_local(self, log_server, wait_until):
        log_server.add(1, "a")
        async with LogViewerSession(_config(log_server)) as session:
            session.clear_all()
            assert len(session.engine) == 0
            assert log_server.entries != []

            await session.refresh()
            await session.clear_remote()
            assert log_server.clear_count == 1
            assert len(session.engine) == 0
            status = await session.fetch_status()
            assert status.buffer_used == 0

    @pytest.mark.asyncio
    async def test_bad_snapshot_body_keeps_view(self, log_server, wait_until):
        log_server.add(1, "web | a")
        log_server.add(2, "db | b")
        async with LogViewerSession(_config(log_server)) as session:
            await wait_until(lambda: log_server.subscriptions)
            log_server.bad_body = "not-json"
            with pytest.raises(SnapshotError):
                await session.apply_filter(Filter.build(search="a"))
            assert _ids(session.engine.entries()) == [1, 2]
            assert session.loading is False
            await wait_until(lambda: len(log_server.subscriptions) == 2)
            assert log_server.subscriptions[-1] == {"search": "a"}

    def test_accessors_before_start(self):
        session = LogViewerSession(Config())
        with pytest.raises(RuntimeError):
            session.engine
        assert session.status().count == 0
