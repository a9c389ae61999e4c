"""
Data model for one aggregation run.

Metrics, source results and the aggregation outcome are created and dropped
within a single run; nothing here is persisted by itself.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass
class Metric:
    """A single team-health measurement. Identity is `id`."""

    id: str
    category: str
    name: str
    value: float
    timestamp: datetime
    unit: str = ""
    additional_info: str = ""
    source: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "category": self.category,
            "name": self.name,
            "value": self.value,
            "timestamp": self.timestamp.isoformat(),
            "unit": self.unit,
            "additionalInfo": self.additional_info,
            "source": self.source,
        }


@dataclass(frozen=True)
class SourceError:
    """A non-fatal failure of one data source."""

    source: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"source": self.source, "message": self.message}


@dataclass(frozen=True)
class SourceFetchResult:
    """What one data source produced in one run."""

    metrics: tuple[Metric, ...] = ()
    errors: tuple[SourceError, ...] = ()
    stats: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "metrics", tuple(self.metrics))
        object.__setattr__(self, "errors", tuple(self.errors))

    @property
    def failed(self) -> bool:
        """A result that reports errors and carries nothing usable."""
        return bool(self.errors) and not self.metrics


@dataclass
class AggregationOutcome:
    """Terminal value of one aggregation run."""

    metrics: list[Metric] = field(default_factory=list)
    errors: list[SourceError] = field(default_factory=list)
    source_stats: dict[str, dict[str, Any]] = field(default_factory=dict)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    @property
    def status(self) -> int:
        # 207 multi-status marks partial success
        return 207 if self.has_errors else 200

    def to_dict(self) -> dict[str, Any]:
        return {
            "metrics": [metric.to_dict() for metric in self.metrics],
            "errors": [error.to_dict() for error in self.errors],
            "sourceStats": self.source_stats,
            "status": self.status,
        }


@dataclass
class ProgressEvent:
    """Payload of a `progress` SSE event."""

    progress: int
    message: str
    current: float
    total: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "progress": self.progress,
            "message": self.message,
            "current": self.current,
            "total": self.total,
        }
