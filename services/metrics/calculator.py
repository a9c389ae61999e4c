"""
Pull request metric calculator.

Turns the pull requests of one time window into summary metrics.
"""

from datetime import datetime, timezone
from typing import Callable, Optional

from pydantic import BaseModel

from .models import Metric

SOURCE_NAME = "GitHub"


class PullRequest(BaseModel):
    """The fields of a GitHub pull request the calculator needs."""
    number: int
    title: str = ""
    state: str = "closed"
    author: str = "unknown"
    created_at: datetime
    merged_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    additions: int = 0
    deletions: int = 0
    changed_files: int = 0
    commits: int = 0

    @property
    def size(self) -> int:
        return self.additions + self.deletions


class PullRequestMetricCalculator:
    """Computes PR count, average size and average time to merge."""

    def __init__(self, clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        self._clock = clock

    def calculate(self, pull_requests: list[PullRequest]) -> list[Metric]:
        now = self._clock()
        return [
            self._metric(
                "github-pr-count",
                "Pull Request Count",
                float(len(pull_requests)),
                "count",
                now,
            ),
            self._metric(
                "github-avg-pr-size",
                "Average PR Size",
                self.average_size(pull_requests),
                "lines",
                now,
            ),
            self._metric(
                "github-avg-merge-time",
                "Average Time to Merge",
                self.average_merge_hours(pull_requests),
                "hours",
                now,
            ),
        ]

    @staticmethod
    def average_size(pull_requests: list[PullRequest]) -> float:
        if not pull_requests:
            return 0.0
        return sum(pr.size for pr in pull_requests) / len(pull_requests)

    @staticmethod
    def average_merge_hours(pull_requests: list[PullRequest]) -> float:
        merged = [pr for pr in pull_requests if pr.merged_at is not None]
        if not merged:
            return 0.0
        total_seconds = sum((pr.merged_at - pr.created_at).total_seconds() for pr in merged)
        return total_seconds / len(merged) / 3600

    @staticmethod
    def _metric(metric_id: str, name: str, value: float, unit: str, timestamp: datetime) -> Metric:
        return Metric(
            id=metric_id,
            category=SOURCE_NAME,
            name=name,
            value=value,
            timestamp=timestamp,
            unit=unit,
            source=SOURCE_NAME,
        )
