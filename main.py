#!/usr/bin/env python3
"""
Team Health Metrics - Main Entry Point

Serves the /metrics SSE stream that aggregates GitHub and Google Sheets
metrics with live progress.

Usage:
    # Start server mode (SSE + health)
    python main.py server

    # Run one aggregation locally with a progress bar
    python main.py fetch --time-period 30

    # Watch a running server's stream
    python main.py monitor --server http://localhost:3000 --token secret

    # Show configuration issues
    python main.py check
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Optional

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("teamhealth")


async def start_server(config, host: Optional[str] = None, port: Optional[int] = None):
    """Start the HTTP server and run until SIGINT/SIGTERM."""
    from aiohttp import web

    from core.cache import MemoryCache
    from services.api import create_app
    from services.metrics.store import MetricsStore
    from services.sources import build_sources, close_sources

    host = host or config.server.host
    port = port or config.server.port

    sources = build_sources(config, MemoryCache())
    if not sources:
        logger.error("No data source configured; set REPO_* or GOOGLE_SHEETS_* variables")
        return False

    store = None
    if config.database.url:
        store = await MetricsStore.connect(
            config.database.url,
            min_size=config.database.pool_min_size,
            max_size=config.database.pool_max_size,
        )
        await store.ensure_schema()
        logger.info("Metrics persistence enabled")

    app = create_app(config, sources, store)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()

    logger.info(f"Metrics server running at http://{host}:{port}")
    logger.info("Press Ctrl+C to stop")

    # Keep running until interrupted
    stop_event = asyncio.Event()

    def handle_signal():
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal)

    await stop_event.wait()

    await runner.cleanup()
    await close_sources(sources)
    if store is not None:
        await store.close()

    logger.info("Server stopped")
    return True


async def fetch_metrics(config, time_period: int, as_json: bool = False) -> bool:
    """Run one aggregation in-process and print the outcome."""
    from cli.progress_monitor import format_error, format_progress, format_result
    from core.cache import MemoryCache
    from core.errors import AppError
    from services.metrics.aggregation import MetricsAggregationService
    from services.sources import build_sources, close_sources
    from services.streaming import ProgressTracker

    sources = build_sources(config, MemoryCache())
    if not sources:
        logger.error("No data source configured; set REPO_* or GOOGLE_SHEETS_* variables")
        return False

    tracker = ProgressTracker(report_interval=config.streaming.progress_report_interval)

    def on_progress(current: float, total: float, message: str):
        tracker.track_progress(current, total, message)
        if not as_json:
            print(format_progress(current / total * 100, message), end="", flush=True)

    service = MetricsAggregationService(sources)
    try:
        outcome = await service.get_all_metrics(on_progress, time_window=time_period)
    except AppError as e:
        print()
        print(format_error(e.to_dict()))
        return False
    finally:
        await close_sources(sources)

    if as_json:
        print(json.dumps(outcome.to_dict(), indent=2))
    else:
        print()
        print(format_result({"success": True, "data": outcome.to_dict()}))
    return True


async def monitor_stream(server_url: str, time_period: int, token: Optional[str]) -> int:
    """Monitor a running server's /metrics stream."""
    from cli.progress_monitor import ProgressMonitor

    monitor = ProgressMonitor(server_url=server_url, time_period=time_period, token=token)
    return await monitor.start()


def check_config(config) -> bool:
    """Print the effective configuration and any issues."""
    print("Configuration:")
    for key, value in config.describe().items():
        print(f"  {key}: {value}")

    issues = config.validate()
    if not issues:
        print("\nNo issues found.")
        return True

    print("\nIssues:")
    for issue in issues:
        print(f"  - {issue}")
    # Missing auth is a warning, not a blocker
    return config.github.enabled or config.sheets.enabled


def main():
    parser = argparse.ArgumentParser(
        description="Team Health Metrics - streaming metrics aggregation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Start the server
    python main.py server --port 3000

    # Aggregate the last 30 days locally
    python main.py fetch --time-period 30

    # Watch a remote stream
    python main.py monitor --server http://metrics.internal:3000 --token secret
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Server command
    server_parser = subparsers.add_parser("server", help="Start the metrics server")
    server_parser.add_argument("--host", help="Host to bind (default: HOST or 0.0.0.0)")
    server_parser.add_argument("--port", type=int, help="Port to bind (default: PORT or 3000)")

    # Fetch command
    fetch_parser = subparsers.add_parser("fetch", help="Aggregate metrics once, locally")
    fetch_parser.add_argument("--time-period", "-t", type=int, default=90, help="Days to cover")
    fetch_parser.add_argument("--json", action="store_true", help="Print the outcome as JSON")

    # Monitor command
    mon_parser = subparsers.add_parser("monitor", help="Monitor a server's metrics stream")
    mon_parser.add_argument(
        "--server",
        default="http://localhost:3000",
        help="Server URL",
    )
    mon_parser.add_argument("--time-period", "-t", type=int, default=90, help="Days to cover")
    mon_parser.add_argument("--token", help="API token")

    # Check command
    subparsers.add_parser("check", help="Validate configuration")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    from core.config import Config

    config = Config.from_env()
    logging.getLogger().setLevel(config.log_level.upper())

    if args.command == "server":
        ok = asyncio.run(start_server(config, host=args.host, port=args.port))
        sys.exit(0 if ok else 1)

    elif args.command == "fetch":
        ok = asyncio.run(fetch_metrics(config, args.time_period, as_json=args.json))
        sys.exit(0 if ok else 1)

    elif args.command == "monitor":
        sys.exit(asyncio.run(monitor_stream(args.server, args.time_period, args.token)))

    elif args.command == "check":
        sys.exit(0 if check_config(config) else 1)


if __name__ == "__main__":
    main()
