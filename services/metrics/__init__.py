"""
Metric model and computation.

The aggregation service and the store are imported from their modules
(`services.metrics.aggregation`, `services.metrics.store`); data sources
depend on this package, so it only exposes the model here.
"""

from .calculator import PullRequest, PullRequestMetricCalculator
from .models import AggregationOutcome, Metric, ProgressEvent, SourceError, SourceFetchResult

__all__ = [
    "AggregationOutcome",
    "Metric",
    "ProgressEvent",
    "PullRequest",
    "PullRequestMetricCalculator",
    "SourceError",
    "SourceFetchResult",
]
