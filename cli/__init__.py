"""
Team Health Metrics CLI Tools

Tools:
- progress_monitor: Real-time view of a server's /metrics stream
"""

from .progress_monitor import ProgressMonitor, SSEParser

__all__ = ["ProgressMonitor", "SSEParser"]
