"""
SSE Progress Streaming Service

Streams metric aggregation progress and the final result to a client via
Server-Sent Events (SSE).

Usage:
    from services.streaming import SSEStreamManager

    stream = SSEStreamManager(heartbeat_interval=15, timeout=120)
    await stream.initialize(request)
    outcome = await service.get_all_metrics(stream.progress_callback)
    stream.send_result_event(outcome)
"""

from .event_channel import EventChannel
from .progress_tracker import ProgressTracker
from .sse_stream import SSEStreamManager, StreamState, format_sse

__all__ = [
    "EventChannel",
    "ProgressTracker",
    "SSEStreamManager",
    "StreamState",
    "format_sse",
]
