"""
SSE Stream Manager

Owns the lifecycle of one Server-Sent Events response: the initial
handshake, periodic heartbeats, an overall timeout, progress/result/error
events and exactly one close.

Lifecycle:
    IDLE --initialize--> STREAMING --end_response--> ENDED

Every outbound frame goes through one writer task, so frames reach the
socket in the order they were sent even though senders are synchronous.

Usage:
    stream = SSEStreamManager(heartbeat_interval=15, timeout=120)
    await stream.initialize(request)

    outcome = await service.get_all_metrics(stream.progress_callback)
    stream.send_result_event(outcome)

    await stream.wait_closed()
    return stream.response
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from aiohttp import web

from core.errors import AppError, StreamTimeoutError
from services.metrics.models import AggregationOutcome, ProgressEvent

from .event_channel import EventChannel
from .progress_tracker import ProgressTracker

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}

# Topics on the stream's internal channel
SEND_EVENT = "send_event"
END_RESPONSE = "end_response"
ERROR = "error"


class StreamState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    ENDED = "ended"


def format_sse(event: str, data: Any) -> bytes:
    """Encode one SSE frame. Raises if `data` is not strict JSON (NaN and infinities included)."""
    return f"event: {event}\ndata: {json.dumps(data, allow_nan=False)}\n\n".encode()


class SSEStreamManager:
    """
    One SSE response and everything that happens on it.

    All methods except `initialize` and `wait_closed` are synchronous: they
    enqueue frames and return. Events sent after the stream ended are
    dropped; events sent before `initialize` are a programming error.
    """

    def __init__(
        self,
        heartbeat_interval: float = 15.0,
        timeout: float = 120.0,
        tracker: Optional[ProgressTracker] = None,
        channel: Optional[EventChannel] = None,
    ):
        self.heartbeat_interval = heartbeat_interval
        self.timeout = timeout
        self.tracker = tracker or ProgressTracker()
        self.channel = channel or EventChannel()

        self.state = StreamState.IDLE
        self.response: Optional[web.StreamResponse] = None

        self._queue: Optional[asyncio.Queue] = None
        self._writer_task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._timeout_handle: Optional[asyncio.TimerHandle] = None
        self._unsubscribers: list = []
        self._client_gone = False

    @classmethod
    def from_config(cls, streaming_config) -> "SSEStreamManager":
        return cls(
            heartbeat_interval=streaming_config.heartbeat_interval,
            timeout=streaming_config.timeout,
            tracker=ProgressTracker(report_interval=streaming_config.progress_report_interval),
        )

    @property
    def is_ended(self) -> bool:
        return self.state is StreamState.ENDED

    async def initialize(
        self,
        request: web.Request,
        response: Optional[web.StreamResponse] = None,
    ) -> web.StreamResponse:
        """Send the SSE headers and start heartbeat, timeout and writer."""
        if self.state is not StreamState.IDLE:
            raise RuntimeError(f"Stream cannot be initialized in state {self.state.value}")

        if response is None:
            response = web.StreamResponse(status=200, reason="OK", headers=SSE_HEADERS)
        await response.prepare(request)
        # Comment line flushes headers through proxies
        await response.write(b":\n\n")

        self.response = response
        self.state = StreamState.STREAMING
        self._queue = asyncio.Queue()

        self._unsubscribers = [
            self.channel.subscribe(SEND_EVENT, self._enqueue_event),
            self.channel.subscribe(END_RESPONSE, self._close),
            self.channel.subscribe(ERROR, self._emit_error),
        ]

        loop = asyncio.get_running_loop()
        self._writer_task = loop.create_task(self._writer_loop())
        self._heartbeat_task = loop.create_task(self._heartbeat_loop())
        if self.timeout and self.timeout > 0:
            self._timeout_handle = loop.call_later(self.timeout, self._on_timeout)

        logger.info("SSE stream initialized")
        return response

    # -------------------------------------------------------------------------
    # Sending
    # -------------------------------------------------------------------------

    def send_event(self, event: str, data: Any):
        """Queue one `event: <name>` frame with a JSON `data` line."""
        if self.state is StreamState.IDLE:
            raise RuntimeError("Stream not initialized")
        if self.state is StreamState.ENDED:
            logger.debug(f"Dropping '{event}' event: stream already ended")
            return
        self.channel.publish(SEND_EVENT, event, data)

    def progress_callback(self, current: float, total: float, message: str):
        """Progress sink handed to the aggregation service."""
        percent = min(round(current / total * 100), 100) if total > 0 else 0
        self.tracker.track_progress(current, total, message)
        event = ProgressEvent(progress=percent, message=message, current=current, total=total)
        self.send_event("progress", event.to_dict())

    def send_result_event(self, outcome: AggregationOutcome):
        """Send the final `result` event and end the response."""
        try:
            self.send_event("result", {"success": True, "data": outcome.to_dict()})
        except Exception as e:
            self.handle_error(e)
        finally:
            self.end_response()

    # -------------------------------------------------------------------------
    # Termination
    # -------------------------------------------------------------------------

    def handle_error(self, error: BaseException):
        """Report `error` to the client if still connected, then end."""
        if isinstance(error, AppError):
            logger.error(f"Stream error ({error.status_code}): {error.message}")
        else:
            logger.error(f"Unexpected stream error: {error}", exc_info=error)

        if self.state is StreamState.STREAMING:
            self.channel.publish(ERROR, error)
        self.end_response()

    def handle_client_disconnection(self):
        """The client went away; end quietly without an error event."""
        if self.is_ended:
            return
        logger.info("Client disconnected from SSE stream")
        self._client_gone = True
        self.end_response()

    def end_response(self):
        """Close the stream. Safe to call any number of times."""
        if self.state is StreamState.IDLE:
            self.state = StreamState.ENDED
            return
        if self.state is StreamState.ENDED:
            return
        self.channel.publish(END_RESPONSE)

    async def wait_closed(self):
        """Wait until the final frame (and EOF) has been written."""
        if self._writer_task is not None:
            await asyncio.shield(self._writer_task)

    # -------------------------------------------------------------------------
    # Channel handlers
    # -------------------------------------------------------------------------

    def _enqueue_event(self, event: str, data: Any):
        self._queue.put_nowait(format_sse(event, data))

    def _emit_error(self, error: BaseException):
        self._stop_heartbeat()
        if isinstance(error, AppError):
            payload = error.to_dict()
        else:
            payload = {
                "success": False,
                "error": "An unexpected error occurred",
                "statusCode": 500,
            }
        self._enqueue_event("error", payload)

    def _close(self):
        self.state = StreamState.ENDED
        self._stop_heartbeat()
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
            self._timeout_handle = None
        # Sentinel: writer ends the response after draining
        self._queue.put_nowait(None)
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        logger.info("SSE stream ended")

    # -------------------------------------------------------------------------
    # Background work
    # -------------------------------------------------------------------------

    def _stop_heartbeat(self):
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            self._heartbeat_task = None

    def _on_timeout(self):
        self._timeout_handle = None
        logger.warning(f"SSE stream timed out after {self.timeout}s")
        self.handle_error(StreamTimeoutError())

    async def _heartbeat_loop(self):
        while self.state is StreamState.STREAMING:
            await asyncio.sleep(self.heartbeat_interval)
            self.send_event("heartbeat", {"timestamp": datetime.now(timezone.utc).isoformat()})

    async def _writer_loop(self):
        while True:
            frame = await self._queue.get()
            if frame is None:
                break
            try:
                await self.response.write(frame)
            except ConnectionError:
                self.handle_client_disconnection()
                return

        if self._client_gone:
            return
        try:
            await self.response.write_eof()
        except ConnectionError:
            logger.debug("Client gone before end of stream")
