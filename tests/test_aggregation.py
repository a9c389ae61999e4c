"""
Tests for MetricsAggregationService: progress blending, partial failure,
deduplication and cooperative cancellation.

Run with:
    python -m pytest tests/test_aggregation.py -v
"""

import asyncio
import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.errors import AllSourcesFailedError, OperationCancelledError, UpstreamError
from services.metrics.aggregation import (
    AggregationContext,
    MetricsAggregationService,
    WeightedSource,
    deduplicate_metrics,
)
from services.metrics.models import Metric, SourceError, SourceFetchResult
from services.sources.base import DataSource

T0 = datetime(2024, 5, 1, tzinfo=timezone.utc)


def metric(metric_id: str, value: float = 1.0, timestamp: datetime = T0, source: str = "test") -> Metric:
    return Metric(
        id=metric_id,
        category="Test",
        name=metric_id,
        value=value,
        timestamp=timestamp,
        source=source,
    )


class StubSource(DataSource):
    """Reports the given local progress steps, then returns or raises."""

    def __init__(self, name, metrics=(), errors=(), stats=None, steps=((50, 100, "half"),), raises=None):
        self.name = name
        self.metrics = list(metrics)
        self.errors = list(errors)
        self.stats = stats or {"count": len(self.metrics)}
        self.steps = steps
        self.raises = raises
        self.calls = []

    async def fetch(self, progress_callback=None, time_window=90):
        self.calls.append(time_window)
        for current, total, message in self.steps:
            if progress_callback:
                progress_callback(current, total, message)
        if self.raises is not None:
            raise self.raises
        return SourceFetchResult(metrics=self.metrics, errors=self.errors, stats=self.stats)


class Recorder:
    def __init__(self):
        self.calls = []

    def __call__(self, current, total, message):
        self.calls.append((current, total, message))

    @property
    def percents(self):
        return [current for current, _, _ in self.calls]


class TestConstruction:

    def test_requires_sources(self):
        with pytest.raises(ValueError):
            MetricsAggregationService([])

    def test_rejects_non_positive_weight(self):
        with pytest.raises(ValueError):
            MetricsAggregationService([(StubSource("a"), 0)])

    def test_accepts_plain_weighted_and_tuple_specs(self):
        service = MetricsAggregationService([
            StubSource("a"),
            WeightedSource(StubSource("b"), 2.0),
            (StubSource("c"), 3.0),
        ])

        assert [ws.weight for ws in service.sources] == [1.0, 2.0, 3.0]
        assert service.total_weight == 6.0


class TestGetAllMetrics:

    @pytest.mark.asyncio
    async def test_merges_results_from_all_sources(self):
        sheets = StubSource("Google Sheets", metrics=[metric("sheet-0")], stats={"totalRows": 1})
        github = StubSource("GitHub", metrics=[metric("github-pr-count")], stats={"totalPRs": 4})
        service = MetricsAggregationService([sheets, github])

        outcome = await service.get_all_metrics(time_window=30)

        assert [m.id for m in outcome.metrics] == ["sheet-0", "github-pr-count"]
        assert outcome.errors == []
        assert outcome.status == 200
        assert outcome.source_stats == {"Google Sheets": {"totalRows": 1}, "GitHub": {"totalPRs": 4}}
        assert sheets.calls == [30] and github.calls == [30]

    @pytest.mark.asyncio
    async def test_progress_is_blended_across_sources(self):
        recorder = Recorder()
        first = StubSource("first", steps=[(0, 100, "start"), (50, 100, "half"), (100, 100, "done")])
        second = StubSource("second", steps=[(0, 100, "start"), (50, 100, "half"), (100, 100, "done")])
        service = MetricsAggregationService([first, second])

        await service.get_all_metrics(recorder)

        assert recorder.percents == [0, 25, 50, 50, 75, 100, 100]
        assert recorder.calls[1] == (25, 100, "first: half")
        assert recorder.calls[-1] == (100, 100, "Completed")

    @pytest.mark.asyncio
    async def test_weights_shape_the_progress_range(self):
        recorder = Recorder()
        light = StubSource("light", steps=[(100, 100, "done")])
        heavy = StubSource("heavy", steps=[(60, 100, "most")])
        service = MetricsAggregationService([(light, 1), (heavy, 3)])

        await service.get_all_metrics(recorder)

        # light owns 0-25, heavy 25-100
        assert recorder.percents[:2] == [25, 70]

    @pytest.mark.asyncio
    async def test_progress_never_goes_backwards(self):
        recorder = Recorder()
        jittery = StubSource("jittery", steps=[(80, 100, "a"), (40, 100, "b"), (90, 100, "c")])
        service = MetricsAggregationService([jittery])

        await service.get_all_metrics(recorder)

        assert recorder.percents == [80, 80, 90, 100]

    @pytest.mark.asyncio
    async def test_local_progress_is_clamped(self):
        recorder = Recorder()
        odd = StubSource("odd", steps=[(250, 100, "over"), (1, 0, "no total")])
        other = StubSource("other", steps=[])
        service = MetricsAggregationService([odd, other])

        await service.get_all_metrics(recorder)

        assert recorder.percents[0] == 50

    @pytest.mark.asyncio
    async def test_partial_failure_returns_outcome_with_errors(self):
        failing = StubSource("Google Sheets", raises=UpstreamError("quota exceeded"))
        working = StubSource("GitHub", metrics=[metric("github-pr-count")])
        service = MetricsAggregationService([failing, working])

        outcome = await service.get_all_metrics()

        assert [m.id for m in outcome.metrics] == ["github-pr-count"]
        assert outcome.errors == [SourceError("Google Sheets", "quota exceeded")]
        assert outcome.status == 207
        assert "Google Sheets" not in outcome.source_stats

    @pytest.mark.asyncio
    async def test_failed_source_still_advances_progress(self):
        recorder = Recorder()
        failing = StubSource("a", steps=[(10, 100, "x")], raises=RuntimeError("down"))
        working = StubSource("b", steps=[(0, 100, "start")])
        service = MetricsAggregationService([failing, working])

        await service.get_all_metrics(recorder)

        assert recorder.calls[1] == (50, 100, "b: start")

    @pytest.mark.asyncio
    async def test_errors_reported_by_a_source_are_kept(self):
        degraded = StubSource(
            "GitHub",
            metrics=[metric("github-pr-count")],
            errors=[SourceError("GitHub", "page 3 failed")],
        )
        service = MetricsAggregationService([degraded])

        outcome = await service.get_all_metrics()

        assert outcome.errors == [SourceError("GitHub", "page 3 failed")]
        assert len(outcome.metrics) == 1

    @pytest.mark.asyncio
    async def test_all_sources_failed_raises(self):
        service = MetricsAggregationService([
            StubSource("a", raises=RuntimeError("boom")),
            StubSource("b", errors=[SourceError("b", "empty")]),
        ])

        with pytest.raises(AllSourcesFailedError) as exc_info:
            await service.get_all_metrics()

        assert exc_info.value.status_code == 500
        assert [e.source for e in exc_info.value.errors] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_unnamed_exception_is_described_by_type(self):
        service = MetricsAggregationService([
            StubSource("a", raises=RuntimeError()),
            StubSource("b"),
        ])

        outcome = await service.get_all_metrics()

        assert outcome.errors[0].message == "RuntimeError"

    @pytest.mark.asyncio
    async def test_duplicate_ids_across_sources_are_merged(self):
        older = metric("shared", value=1.0, timestamp=T0)
        newer = metric("shared", value=2.0, timestamp=T0 + timedelta(hours=1))
        service = MetricsAggregationService([
            StubSource("a", metrics=[newer]),
            StubSource("b", metrics=[older]),
        ])

        outcome = await service.get_all_metrics()

        assert [(m.id, m.value) for m in outcome.metrics] == [("shared", 2.0)]


class TestCancellation:

    @pytest.mark.asyncio
    async def test_cancel_discards_in_flight_result(self):
        service = MetricsAggregationService([StubSource("a"), StubSource("b")])
        second = service.sources[1].source

        def cancel_during_first(current, total, message):
            if message.startswith("a:"):
                service.cancel_operation()

        with pytest.raises(OperationCancelledError) as exc_info:
            await service.get_all_metrics(cancel_during_first)

        assert exc_info.value.status_code == 499
        assert second.calls == []

    @pytest.mark.asyncio
    async def test_cancel_through_context(self):
        context = AggregationContext()
        source = StubSource("a")
        service = MetricsAggregationService([source])

        def cancel(current, total, message):
            context.cancel()

        with pytest.raises(OperationCancelledError):
            await service.get_all_metrics(cancel, context=context)

        assert context.cancelled is False

    @pytest.mark.asyncio
    async def test_cancel_without_run_is_noop(self):
        service = MetricsAggregationService([StubSource("a")])
        service.cancel_operation()

        outcome = await service.get_all_metrics()

        assert outcome.status == 200

    @pytest.mark.asyncio
    async def test_cancellation_does_not_leak_into_next_run(self):
        service = MetricsAggregationService([StubSource("a", metrics=[metric("m")])])

        def cancel(current, total, message):
            service.cancel_operation()

        with pytest.raises(OperationCancelledError):
            await service.get_all_metrics(cancel)

        outcome = await service.get_all_metrics()
        assert [m.id for m in outcome.metrics] == ["m"]

    @pytest.mark.asyncio
    async def test_cancel_from_another_task(self):
        release = asyncio.Event()

        class SlowSource(StubSource):
            async def fetch(self, progress_callback=None, time_window=90):
                await release.wait()
                return await super().fetch(progress_callback, time_window)

        service = MetricsAggregationService([SlowSource("slow"), StubSource("after")])
        run = asyncio.create_task(service.get_all_metrics())
        await asyncio.sleep(0)

        service.cancel_operation()
        release.set()

        with pytest.raises(OperationCancelledError):
            await run


class TestDeduplicate:

    def test_latest_timestamp_wins(self):
        metrics = [
            metric("x", value=1.0, timestamp=T0),
            metric("x", value=3.0, timestamp=T0 + timedelta(days=1)),
            metric("x", value=2.0, timestamp=T0 - timedelta(days=1)),
        ]

        assert [m.value for m in deduplicate_metrics(metrics)] == [3.0]

    def test_equal_timestamps_keep_first_seen(self):
        metrics = [metric("x", value=1.0), metric("x", value=2.0)]

        assert [m.value for m in deduplicate_metrics(metrics)] == [1.0]

    def test_order_follows_first_appearance(self):
        metrics = [
            metric("b"),
            metric("a"),
            metric("b", timestamp=T0 + timedelta(minutes=1)),
        ]

        assert [m.id for m in deduplicate_metrics(metrics)] == ["b", "a"]

    def test_empty(self):
        assert deduplicate_metrics([]) == []
