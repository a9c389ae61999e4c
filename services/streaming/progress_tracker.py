"""
Progress Tracker for metrics fetches

Throttles progress log lines so a chatty data source (one callback per
GitHub page) does not flood the logs, while always logging completion.
"""

import logging
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class ProgressTracker:
    """
    Rate-limited progress logger.

    Usage:
        tracker = ProgressTracker(report_interval=1.0)
        tracker.track_progress(25, 100, "GitHub: Fetched 100 pull requests")
    """

    def __init__(
        self,
        report_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        log: Optional[logging.Logger] = None,
    ):
        self.report_interval = report_interval
        self._clock = clock
        self._log = log or logger
        self._last_report_time: Optional[float] = None

    def set_report_interval(self, interval: float):
        """Change the throttle window (seconds) for subsequent calls."""
        self.report_interval = interval

    def track_progress(self, current: float, total: float, message: str) -> bool:
        """Log a progress line if the window elapsed or the work is complete.

        Returns True when a line was logged.
        """
        now = self._clock()
        due = (
            self._last_report_time is None
            or now - self._last_report_time >= self.report_interval
        )
        if not (due or current == total):
            return False

        progress = min(current / total * 100, 100.0) if total > 0 else 0.0
        self._log.info(f"{message} - Progress: {progress:.2f}% ({current}/{total})")
        self._last_report_time = now
        return True
