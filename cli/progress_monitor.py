#!/usr/bin/env python3
"""
CLI Progress Monitor for the metrics stream

Connects to a running server's /metrics SSE stream and displays progress
and the final metrics with visual formatting.

Usage:
    python -m cli.progress_monitor --time-period 30
    python -m cli.progress_monitor --server http://localhost:3000 --token secret
"""

import argparse
import asyncio
import json
from typing import Optional

import aiohttp


# ANSI color codes
class Colors:
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    CYAN = "\033[36m"
    WHITE = "\033[37m"

    # Clear line
    CLEAR_LINE = "\033[2K\r"


def colored(text: str, color: str) -> str:
    """Apply color to text."""
    return f"{color}{text}{Colors.RESET}"


def progress_bar(percent: float, width: int = 30) -> str:
    """Create a visual progress bar."""
    percent = max(0.0, min(percent, 100.0))
    filled = int(percent / 100 * width)
    bar = "█" * filled + "░" * (width - filled)

    if percent >= 100:
        color = Colors.GREEN
    elif percent >= 50:
        color = Colors.CYAN
    elif percent >= 25:
        color = Colors.YELLOW
    else:
        color = Colors.WHITE

    return colored(f"[{bar}]", color) + f" {percent:5.1f}%"


def format_progress(progress: float, message: str) -> str:
    return f"{Colors.CLEAR_LINE}⏳ {progress_bar(progress)} {colored(message[:50], Colors.WHITE)}"


def format_result(payload: dict) -> str:
    """Format a `result` event: metric table, then source errors."""
    data = payload.get("data", {})
    metrics = data.get("metrics", [])
    errors = data.get("errors", [])

    status = colored("PARTIAL", Colors.YELLOW) if errors else colored("OK", Colors.GREEN)
    lines = [f"✅ {len(metrics)} metrics ({status})"]

    for metric in metrics:
        value = metric.get("value", 0)
        unit = metric.get("unit", "")
        lines.append(
            f"    {colored(metric.get('source', ''), Colors.DIM):<28} "
            f"{metric.get('name', metric.get('id', '')):<32} "
            f"{value:>10.2f} {unit}"
        )

    for error in errors:
        lines.append(colored(f"⚠️ {error.get('source')}: {error.get('message')}", Colors.YELLOW))

    return "\n".join(lines)


def format_error(payload: dict) -> str:
    return colored(
        f"❌ {payload.get('error', 'Unknown error')} ({payload.get('statusCode', '?')})",
        Colors.RED,
    )


class SSEParser:
    """
    Incremental parser for `event:` / `data:` frames.

    Feed it one decoded line at a time; a blank line completes a frame and
    returns `(event, data)`. Comment lines (starting with ':') are ignored.
    """

    def __init__(self):
        self._event = "message"
        self._data: list[str] = []

    def feed_line(self, line: str) -> Optional[tuple[str, object]]:
        line = line.rstrip("\r\n")
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None

        field, _, value = line.partition(":")
        value = value[1:] if value.startswith(" ") else value
        if field == "event":
            self._event = value
        elif field == "data":
            self._data.append(value)
        return None

    def _dispatch(self) -> Optional[tuple[str, object]]:
        if not self._data:
            self._event = "message"
            return None

        raw = "\n".join(self._data)
        event = self._event
        self._event = "message"
        self._data = []
        try:
            return event, json.loads(raw)
        except json.JSONDecodeError:
            return event, raw


class ProgressMonitor:
    """CLI progress monitor for the /metrics stream."""

    def __init__(
        self,
        server_url: str = "http://localhost:3000",
        time_period: int = 90,
        token: Optional[str] = None,
    ):
        self.server_url = server_url.rstrip("/")
        self.time_period = time_period
        self.token = token
        self.stream_url = f"{self.server_url}/metrics"

        self._running = False
        self._last_progress = -1
        self.result: Optional[dict] = None
        self.error: Optional[dict] = None

    async def start(self) -> int:
        """Monitor until a result or error arrives. Returns a process exit code."""
        self._running = True

        print(colored("\n╔═══════════════════════════════════════════╗", Colors.CYAN))
        print(colored("║  Team Health Metrics Monitor              ║", Colors.CYAN))
        print(colored("╚═══════════════════════════════════════════╝", Colors.CYAN))
        print(f"Server:      {colored(self.stream_url, Colors.DIM)}")
        print(f"Time period: {colored(f'{self.time_period} days', Colors.BOLD)}")
        print(colored("─" * 45, Colors.DIM))
        print()

        retry_count = 0
        max_retries = 5

        while self._running and retry_count < max_retries:
            try:
                await self._stream_events()
                break  # Clean exit
            except aiohttp.ClientError as e:
                retry_count += 1
                if retry_count < max_retries:
                    wait = 2 ** retry_count
                    print(
                        colored(
                            f"\n⚠️ Connection lost ({e}). Retrying in {wait}s... ({retry_count}/{max_retries})",
                            Colors.YELLOW,
                        )
                    )
                    await asyncio.sleep(wait)
                else:
                    print(colored(f"\n❌ Failed to connect after {max_retries} attempts", Colors.RED))

        print(colored("─" * 45, Colors.DIM))
        return 0 if self.result is not None else 1

    async def _stream_events(self):
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        params = {"timePeriod": str(self.time_period)}
        parser = SSEParser()

        async with aiohttp.ClientSession(headers=headers) as session:
            async with session.get(self.stream_url, params=params) as response:
                if response.status != 200:
                    body = await response.text()
                    if 400 <= response.status < 500:
                        # Client errors will not get better with a retry
                        self._running = False
                        self.error = {"error": body, "statusCode": response.status}
                        print(format_error(self.error))
                        return
                    raise aiohttp.ClientError(f"Server returned {response.status}")

                async for raw_line in response.content:
                    frame = parser.feed_line(raw_line.decode("utf-8"))
                    if frame is not None:
                        self.handle_event(*frame)
                    if not self._running:
                        break

    def handle_event(self, event: str, payload):
        """Render one event and stop on terminal ones."""
        if event == "progress":
            progress = payload.get("progress", 0)
            if progress != self._last_progress:
                self._last_progress = progress
                print(format_progress(progress, payload.get("message", "")), end="", flush=True)
        elif event == "result":
            print()
            print(format_result(payload))
            self.result = payload
            self._running = False
        elif event == "error":
            print()
            print(format_error(payload))
            self.error = payload
            self._running = False

    def stop(self):
        """Stop monitoring."""
        self._running = False


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Monitor a team health metrics stream",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    %(prog)s --time-period 30
    %(prog)s --server http://remote:3000 --token secret
        """,
    )
    parser.add_argument(
        "--server",
        default="http://localhost:3000",
        help="Server URL (default: http://localhost:3000)",
    )
    parser.add_argument("--time-period", type=int, default=90, help="Days to cover (1-365)")
    parser.add_argument("--token", help="API token")
    return parser


async def main() -> int:
    args = build_parser().parse_args()
    monitor = ProgressMonitor(server_url=args.server, time_period=args.time_period, token=args.token)
    return await monitor.start()


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
