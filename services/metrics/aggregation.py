"""
Metrics Aggregation Service

Calls every configured data source in turn, blends each source's local
progress into one overall percentage, tolerates partial failure and merges
the resulting metrics.

Progress blending:
    Each source owns a share of 0-100 proportional to its weight. Local
    progress p of source i maps to

        (completed_weight + weight_i * p / 100) / total_weight * 100

    With equal weights this is (completed_sources + p/100) / N * 100.
    Equal weighting is a default, not a measure of how long a source takes.

Usage:
    service = MetricsAggregationService([sheets_source, (github_source, 2.0)])
    outcome = await service.get_all_metrics(stream.progress_callback, time_window=30)
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Union

from core.errors import AllSourcesFailedError, AppError, OperationCancelledError
from services.sources.base import DataSource, ProgressCallback

from .models import AggregationOutcome, Metric, SourceError, SourceFetchResult

logger = logging.getLogger(__name__)


@dataclass
class WeightedSource:
    """A data source and its share of the overall progress range."""
    source: DataSource
    weight: float = 1.0

    @property
    def name(self) -> str:
        return self.source.name


@dataclass
class AggregationContext:
    """Per-run state. Cancellation is polled, never preemptive."""
    cancelled: bool = False

    def cancel(self):
        self.cancelled = True


SourceLike = Union[DataSource, WeightedSource, tuple]


def _normalize(entry: SourceLike) -> WeightedSource:
    if isinstance(entry, WeightedSource):
        weighted = entry
    elif isinstance(entry, tuple):
        weighted = WeightedSource(*entry)
    else:
        weighted = WeightedSource(entry)
    if weighted.weight <= 0:
        raise ValueError(f"Source {weighted.name} has non-positive weight {weighted.weight}")
    return weighted


def _local_percent(current: float, total: float) -> float:
    if total <= 0:
        return 0.0
    return max(0.0, min(current / total * 100, 100.0))


def deduplicate_metrics(metrics: Iterable[Metric]) -> list[Metric]:
    """
    Keep one metric per id, the one with the latest timestamp.

    On equal timestamps the metric seen first is kept. The result is ordered
    by first appearance of each id.
    """
    merged: dict[str, Metric] = {}
    for metric in metrics:
        existing = merged.get(metric.id)
        if existing is None or existing.timestamp < metric.timestamp:
            merged[metric.id] = metric
    return list(merged.values())


class MetricsAggregationService:
    """
    Produces one AggregationOutcome from a fixed list of data sources.

    Sources run sequentially so the completed share is well defined at every
    progress report. One instance should serve one request at a time; the
    cancellation flag of the run in flight lives in its AggregationContext.
    """

    def __init__(self, sources: list[SourceLike]):
        self.sources = [_normalize(entry) for entry in sources]
        if not self.sources:
            raise ValueError("At least one data source is required")
        self.total_weight = sum(ws.weight for ws in self.sources)
        self._context: Optional[AggregationContext] = None

    def cancel_operation(self):
        """Cancel the run currently in flight, if any."""
        if self._context is not None:
            logger.info("Cancellation requested for metrics aggregation")
            self._context.cancel()

    async def get_all_metrics(
        self,
        progress_callback: Optional[ProgressCallback] = None,
        time_window: int = 90,
        context: Optional[AggregationContext] = None,
    ) -> AggregationOutcome:
        """
        Fetch from every source and merge the results.

        Raises:
            OperationCancelledError: cancellation observed after a source attempt
            AllSourcesFailedError: every source failed
        """
        context = context or AggregationContext()
        self._context = context

        all_metrics: list[Metric] = []
        errors: list[SourceError] = []
        source_stats: dict[str, dict] = {}
        failed_sources = 0
        completed_weight = 0.0
        last_reported = 0

        def report(percent: int, message: str):
            nonlocal last_reported
            if progress_callback is None:
                return
            # Never let the overall percentage move backwards
            percent = max(percent, last_reported)
            last_reported = percent
            progress_callback(percent, 100, message)

        try:
            for weighted in self.sources:
                source_callback = self._source_progress(weighted, completed_weight, report)
                try:
                    result, error = await self._fetch(weighted, source_callback, time_window)

                    if context.cancelled:
                        logger.info(f"Discarding {weighted.name} result: operation cancelled")
                        raise OperationCancelledError()
                finally:
                    context.cancelled = False

                if result is None or result.failed:
                    failed_sources += 1
                if error is not None:
                    errors.append(error)
                else:
                    all_metrics.extend(result.metrics)
                    errors.extend(result.errors)
                    source_stats[weighted.name] = dict(result.stats)

                completed_weight += weighted.weight
        finally:
            self._context = None

        if failed_sources == len(self.sources):
            logger.error(f"All {failed_sources} data sources failed")
            raise AllSourcesFailedError(errors)

        metrics = deduplicate_metrics(all_metrics)
        if progress_callback is not None:
            progress_callback(100, 100, "Completed")

        logger.info(
            f"Aggregated {len(metrics)} metrics from {len(self.sources)} sources "
            f"({len(errors)} errors)"
        )
        return AggregationOutcome(metrics=metrics, errors=errors, source_stats=source_stats)

    async def _fetch(
        self,
        weighted: WeightedSource,
        source_callback: ProgressCallback,
        time_window: int,
    ) -> tuple[Optional[SourceFetchResult], Optional[SourceError]]:
        """Run one source; a raised error is returned as a SourceError."""
        try:
            return await weighted.source.fetch(source_callback, time_window), None
        except Exception as e:
            message = e.message if isinstance(e, AppError) else (str(e) or type(e).__name__)
            logger.error(f"Error fetching {weighted.name} data: {message}", exc_info=True)
            return None, SourceError(source=weighted.name, message=message)

    def _source_progress(self, weighted: WeightedSource, completed_weight: float, report) -> ProgressCallback:
        def callback(current: float, total: float, message: str):
            share = weighted.weight * _local_percent(current, total) / 100
            overall = round((completed_weight + share) / self.total_weight * 100)
            report(overall, f"{weighted.name}: {message}")

        return callback
