"""logsync — follow a log server live: snapshot + stream, deduplicated and bounded."""

import argparse
import asyncio
import logging
import signal
import sys

import aiohttp

from logsync.config import OUTPUT_FORMATS, load_config, load_yaml_config
from logsync.errors import SnapshotError
from logsync.formatter import ConsoleRenderer, format_server_status, format_status_line, get_formatter
from logsync.session import LogViewerSession, SessionStatus
from logsync.snapshot import SnapshotFetcher

logger = logging.getLogger(__name__)


def build_cli_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="logsync",
        description="Follow a log server: initial snapshot plus live stream.",
    )
    parser.add_argument("--url", default=None, help="Log server base URL (default: http://localhost:8080)")
    parser.add_argument("--ws-path", default=None, help="WebSocket path (default: /ws/logs)")
    parser.add_argument("--search", default=None, help="Search term, sent to the server")
    parser.add_argument("--regex", action="store_true", help="Treat --search as a regular expression")
    parser.add_argument("--levels", nargs="+", default=None, help="Only these levels (e.g. ERROR WARN)")
    parser.add_argument("--sources", nargs="+", default=None, help="Only these sources (filtered locally)")
    parser.add_argument("--max-logs", type=int, default=None, help="Max entries kept in memory (default: 10000)")
    parser.add_argument("--reconnect-delay", type=float, default=None, help="Seconds before reconnecting")
    parser.add_argument("--timeout", type=float, default=None, help="HTTP request timeout in seconds")
    parser.add_argument("--status-interval", type=float, default=None, help="Poll /api/status every N seconds")
    parser.add_argument("--output", choices=OUTPUT_FORMATS, default=None, help="Output format (default: text)")
    parser.add_argument("--config", default=None, help="Path to YAML config file")
    parser.add_argument("--log-level", default=None, help="Logging level (default: INFO)")
    parser.add_argument("--status", action="store_true", help="Print server status and exit")
    parser.add_argument("--clear", action="store_true", help="Clear the server buffer and exit")
    parser.add_argument("--health", action="store_true", help="Probe the server health endpoint and exit")
    return parser


async def run_once(config, action: str) -> int:
    """Run a one-shot --status, --clear or --health request. Returns the exit code."""
    async with aiohttp.ClientSession() as http:
        fetcher = SnapshotFetcher(config.base_url, http, timeout=config.request_timeout)
        if action == "health":
            healthy = await fetcher.is_healthy()
            print("healthy" if healthy else "unhealthy")
            return 0 if healthy else 1
        try:
            if action == "status":
                print(format_server_status(await fetcher.fetch_status()))
            else:
                await fetcher.clear()
                print("cleared")
        except SnapshotError as e:
            logger.error("%s", e)
            return 1
    return 0


async def run_viewer(config) -> int:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops have no signal handler support.
            signal.signal(sig, lambda signum, frame: loop.call_soon_threadsafe(stop.set))

    def log_status(status: SessionStatus):
        logger.info(format_status_line(status.connected, status.stdin_open, status.count, status.paused))

    async with LogViewerSession(config) as session:
        formatter = get_formatter(config.output, search=config.search, regex=config.regex)
        renderer = ConsoleRenderer(session.engine, formatter)
        renderer.attach()
        session.add_status_listener(log_status)
        await stop.wait()
        logger.info("Shutting down...")
        renderer.detach()
    return 0


def main() -> int:
    args = build_cli_parser().parse_args()
    yaml_data = load_yaml_config(args.config)
    try:
        config = load_config(args, yaml_data)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
        stream=sys.stderr,
    )

    if args.status:
        return asyncio.run(run_once(config, "status"))
    if args.health:
        return asyncio.run(run_once(config, "health"))
    if args.clear:
        return asyncio.run(run_once(config, "clear"))
    return asyncio.run(run_viewer(config))


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        sys.exit(0)
    except BrokenPipeError:
        sys.exit(0)
