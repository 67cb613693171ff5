from __future__ import annotations

import threading

import pytest

from conftest import FakeRecordStore, deployment, ts
from insight_pipeline.aggregate.collector import InsightCollector
from insight_pipeline.errors import (
    CollectionCancelledError,
    RecordStoreError,
    UnsupportedMetricKindError,
    UnsupportedStepError,
)
from insight_pipeline.models import (
    ChangeFailureRate,
    ChangeFailureRateChunk,
    CollectionRequest,
    DeployFrequency,
    DeployFrequencyChunk,
    DeploymentStatus,
    MetricKind,
    Step,
)

S = DeploymentStatus.SUCCESS
F = DeploymentStatus.FAILURE
DF = MetricKind.DEPLOYMENT_FREQUENCY
CFR = MetricKind.CHANGE_FAILURE_RATE


def df_chunk(step: Step, points: list[tuple[int, int]], accumulated_to: int) -> DeployFrequencyChunk:
    chunk = DeployFrequencyChunk(accumulated_to=accumulated_to)
    setattr(
        chunk.data_points,
        step.field_name,
        [DeployFrequency(timestamp=t, deploy_count=c) for t, c in points],
    )
    return chunk


def counts(chunk, step: Step) -> list[tuple[int, int]]:
    return [(p.timestamp, p.deploy_count) for p in chunk.series(step)]


def lower_bounds(store: FakeRecordStore) -> list[int]:
    return [call[0].value for call in store.calls]


# --------------------------------------------------
# Deploy frequency per step
# --------------------------------------------------
def test_daily_buckets_are_appended_and_conserve_counts() -> None:
    store = FakeRecordStore(
        [deployment(ts(2020, 10, 11, 5)) for _ in range(3)]
        + [deployment(ts(2020, 10, 12, 1)) for _ in range(2)]
        + [deployment(ts(2020, 10, 13, 1))]
    )
    prev = df_chunk(Step.DAILY, [(ts(2020, 10, 10), 10)], accumulated_to=ts(2020, 10, 11, 1))

    got = InsightCollector(store).collect(
        "appID", DF, Step.DAILY, ts(2020, 10, 11, 4), ts(2020, 10, 14), prev
    )

    assert counts(got, Step.DAILY) == [
        (ts(2020, 10, 10), 10),
        (ts(2020, 10, 11), 3),
        (ts(2020, 10, 12), 2),
        (ts(2020, 10, 13), 1),
    ]
    assert sum(c for _, c in counts(got, Step.DAILY)[1:]) == 6
    assert got.accumulated_to == ts(2020, 10, 13, 1)
    assert lower_bounds(store)[0] == ts(2020, 10, 11, 4)
    assert lower_bounds(store)[-1] == ts(2020, 10, 14)
    # caller's chunk is left alone
    assert counts(prev, Step.DAILY) == [(ts(2020, 10, 10), 10)]


def test_weekly_bucket_larger_than_page_size() -> None:
    store = FakeRecordStore(
        [deployment(ts(2020, 10, 11, 5)) for _ in range(3)]
        + [deployment(ts(2020, 10, 12, 1)) for _ in range(3)]
        + [deployment(ts(2020, 10, 13, 3))]
    )
    prev = df_chunk(Step.WEEKLY, [(ts(2020, 10, 4), 10)], accumulated_to=ts(2020, 10, 11, 1))

    got = InsightCollector(store, page_size=3).collect(
        "appID", DF, Step.WEEKLY, ts(2020, 10, 11, 4), ts(2020, 10, 14), prev
    )

    assert counts(got, Step.WEEKLY) == [(ts(2020, 10, 4), 10), (ts(2020, 10, 11), 7)]
    assert got.accumulated_to == ts(2020, 10, 13, 3)


def test_weekly_walk_continues_open_week_then_appends() -> None:
    store = FakeRecordStore(
        [deployment(ts(2020, 10, 10, 5)) for _ in range(3)]
        + [deployment(ts(2020, 10, 12, 1)) for _ in range(6)]
        + [deployment(ts(2020, 10, 13, 3))]
    )
    prev = df_chunk(Step.WEEKLY, [(ts(2020, 10, 4), 10)], accumulated_to=ts(2020, 10, 10, 1))

    got = InsightCollector(store).collect(
        "appID", DF, Step.WEEKLY, ts(2020, 10, 10, 4), ts(2020, 10, 14), prev
    )

    assert counts(got, Step.WEEKLY) == [(ts(2020, 10, 4), 13), (ts(2020, 10, 11), 7)]
    assert got.accumulated_to == ts(2020, 10, 13, 3)


def test_monthly_walk() -> None:
    store = FakeRecordStore(
        [deployment(ts(2020, 10, 10, 5)) for _ in range(3)]
        + [deployment(ts(2020, 11, 2, 1)) for _ in range(6)]
        + [deployment(ts(2020, 11, 13, 3))]
    )
    prev = df_chunk(Step.MONTHLY, [(ts(2020, 10, 1), 10)], accumulated_to=ts(2020, 10, 10, 1))

    got = InsightCollector(store).collect(
        "appID", DF, Step.MONTHLY, ts(2020, 10, 10, 4), ts(2020, 11, 14), prev
    )

    assert counts(got, Step.MONTHLY) == [(ts(2020, 10, 1), 13), (ts(2020, 11, 1), 7)]
    assert got.accumulated_to == ts(2020, 11, 13, 3)
    assert lower_bounds(store)[-1] == ts(2020, 12, 1)


def test_yearly_walk() -> None:
    store = FakeRecordStore(
        [deployment(ts(2020, 10, 10, 5)) for _ in range(3)]
        + [deployment(ts(2021, 1, 2, 1)) for _ in range(6)]
        + [deployment(ts(2021, 1, 13, 3))]
    )
    prev = df_chunk(Step.YEARLY, [(ts(2020, 1, 1), 10)], accumulated_to=ts(2020, 10, 10, 1))

    got = InsightCollector(store).collect(
        "appID", DF, Step.YEARLY, ts(2020, 10, 10, 4), ts(2021, 1, 14), prev
    )

    assert counts(got, Step.YEARLY) == [(ts(2020, 1, 1), 13), (ts(2021, 1, 1), 7)]
    assert got.accumulated_to == ts(2021, 1, 13, 3)


# --------------------------------------------------
# Change failure rate
# --------------------------------------------------
def test_change_failure_rate_daily() -> None:
    store = FakeRecordStore(
        [deployment(ts(2020, 10, 11, 5, i), status=s) for i, s in enumerate((F, F, S, S))]
        + [deployment(ts(2020, 10, 11, 6), status=DeploymentStatus.RUNNING)]
        + [deployment(ts(2020, 10, 12, 1, i), status=s) for i, s in enumerate((F, S, S, S))]
        + [deployment(ts(2020, 10, 13, 8), status=S)]
        + [deployment(ts(2020, 10, 13, 9), status=DeploymentStatus.CANCELLED)]
    )
    prev = ChangeFailureRateChunk(accumulated_to=ts(2020, 10, 11, 1))
    prev.data_points.daily = [
        ChangeFailureRate(timestamp=ts(2020, 10, 10), rate=0, success_count=10, failure_count=0)
    ]

    got = InsightCollector(store).collect(
        "appID", CFR, Step.DAILY, ts(2020, 10, 11, 4), ts(2020, 10, 14), prev
    )

    assert got.data_points.daily == [
        ChangeFailureRate(timestamp=ts(2020, 10, 10), rate=0, success_count=10, failure_count=0),
        ChangeFailureRate(timestamp=ts(2020, 10, 11), rate=0.5, success_count=2, failure_count=2),
        ChangeFailureRate(timestamp=ts(2020, 10, 12), rate=0.25, success_count=3, failure_count=1),
        ChangeFailureRate(timestamp=ts(2020, 10, 13), rate=0, success_count=1, failure_count=0),
    ]
    # non-terminal deployments never reach the aggregator or the watermark
    assert got.accumulated_to == ts(2020, 10, 13, 8)
    assert all(call[-1].operator == "in" for call in store.calls)


# --------------------------------------------------
# Walk properties
# --------------------------------------------------
def test_resuming_at_watermark_is_idempotent() -> None:
    store = FakeRecordStore(
        [deployment(ts(2020, 10, 11, 5)) for _ in range(3)] + [deployment(ts(2020, 10, 13, 1))]
    )
    collector = InsightCollector(store)
    first = collector.collect(
        "appID", DF, Step.DAILY, ts(2020, 10, 11), ts(2020, 10, 14), DeployFrequencyChunk()
    )

    second = collector.collect(
        "appID", DF, Step.DAILY, first.accumulated_to, ts(2020, 10, 14), first
    )

    assert second == first


def test_continuation_updates_in_place_and_next_day_appends() -> None:
    store = FakeRecordStore([deployment(ts(2020, 10, 11, 5)) for _ in range(3)])
    collector = InsightCollector(store)
    first = collector.collect(
        "appID", DF, Step.DAILY, ts(2020, 10, 11), ts(2020, 10, 11, 6), DeployFrequencyChunk()
    )
    assert counts(first, Step.DAILY) == [(ts(2020, 10, 11), 3)]

    store.add(deployment(ts(2020, 10, 11, 7)), deployment(ts(2020, 10, 11, 8)))
    same_day = collector.collect(
        "appID", DF, Step.DAILY, first.accumulated_to, ts(2020, 10, 11, 9), first
    )
    assert counts(same_day, Step.DAILY) == [(ts(2020, 10, 11), 5)]

    store.add(deployment(ts(2020, 10, 12, 2)))
    next_day = collector.collect(
        "appID", DF, Step.DAILY, same_day.accumulated_to, ts(2020, 10, 12, 3), same_day
    )
    assert counts(next_day, Step.DAILY) == [(ts(2020, 10, 11), 5), (ts(2020, 10, 12), 1)]
    assert next_day.accumulated_to == ts(2020, 10, 12, 2)


def test_previous_chunk_is_left_alone() -> None:
    prev = df_chunk(Step.DAILY, [(ts(2020, 10, 10), 10)], accumulated_to=ts(2020, 10, 10, 9))
    store = FakeRecordStore([deployment(ts(2020, 10, 10, 12))] + [deployment(ts(2020, 10, d, 3)) for d in (11, 12)])

    got = InsightCollector(store).collect(
        "appID", DF, Step.DAILY, ts(2020, 10, 10, 9), ts(2020, 10, 13), prev
    )

    assert counts(got, Step.DAILY) == [(ts(2020, 10, 10), 11), (ts(2020, 10, 11), 1), (ts(2020, 10, 12), 1)]
    assert counts(prev, Step.DAILY) == [(ts(2020, 10, 10), 10)]
    assert prev.accumulated_to == ts(2020, 10, 10, 9)


def test_walk_catches_up_beyond_requested_horizon() -> None:
    store = FakeRecordStore([deployment(ts(2020, 10, d, 3)) for d in (11, 12, 13, 14, 15)])

    got = InsightCollector(store).collect(
        "appID", DF, Step.DAILY, ts(2020, 10, 11), ts(2020, 10, 12), DeployFrequencyChunk()
    )

    assert [t for t, _ in counts(got, Step.DAILY)] == [ts(2020, 10, d) for d in (11, 12, 13, 14, 15)]
    assert got.accumulated_to == ts(2020, 10, 15, 3)
    assert lower_bounds(store)[-1] == ts(2020, 10, 16)


def test_walk_checks_exactly_one_empty_bucket_past_horizon() -> None:
    store = FakeRecordStore([deployment(ts(2020, 10, 11, 3))])

    InsightCollector(store).collect(
        "appID", DF, Step.DAILY, ts(2020, 10, 11), ts(2020, 10, 12), DeployFrequencyChunk()
    )

    windows = sorted(set(lower_bounds(store)) - {ts(2020, 10, 11, 3)})
    assert windows == [ts(2020, 10, 11), ts(2020, 10, 12)]


def test_empty_bucket_inside_range_does_not_stop_walk() -> None:
    store = FakeRecordStore([deployment(ts(2020, 10, 11, 3)), deployment(ts(2020, 10, 14, 3))])

    got = InsightCollector(store).collect(
        "appID", DF, Step.DAILY, ts(2020, 10, 11), ts(2020, 10, 15), DeployFrequencyChunk()
    )

    assert counts(got, Step.DAILY) == [(ts(2020, 10, 11), 1), (ts(2020, 10, 14), 1)]


def test_no_records_leaves_chunk_unchanged() -> None:
    prev = df_chunk(Step.DAILY, [(ts(2020, 10, 10), 10)], accumulated_to=ts(2020, 10, 10, 9))

    got = InsightCollector(FakeRecordStore()).collect(
        "appID", DF, Step.DAILY, ts(2020, 10, 11), ts(2020, 10, 13), prev
    )

    assert got == prev
    assert got.accumulated_to == ts(2020, 10, 10, 9)


@pytest.mark.parametrize("step", list(Step))
def test_series_stay_strictly_ordered(step: Step) -> None:
    store = FakeRecordStore()
    collector = InsightCollector(store)
    chunk = DeployFrequencyChunk()
    frontier = ts(2020, 12, 20)

    for day in (ts(2020, 12, 28), ts(2021, 1, 2), ts(2021, 1, 3), ts(2021, 2, 1)):
        store.add(deployment(day + 3600), deployment(day + 7200))
        before = chunk.accumulated_to
        chunk = collector.collect("appID", DF, step, max(frontier, chunk.accumulated_to), day + 9000, chunk)
        assert chunk.accumulated_to >= before

    stamps = [p.timestamp for p in chunk.series(step)]
    assert stamps == sorted(set(stamps))
    assert sum(p.deploy_count for p in chunk.series(step)) == 8


# --------------------------------------------------
# Failures and cancellation
# --------------------------------------------------
def test_upstream_failure_keeps_committed_buckets() -> None:
    store = FakeRecordStore(
        [deployment(ts(2020, 10, 11, 5)) for _ in range(3)] + [deployment(ts(2020, 10, 12, 1))],
        fail_on_call=3,
    )
    prev = DeployFrequencyChunk()

    with pytest.raises(RecordStoreError) as exc_info:
        InsightCollector(store).collect(
            "appID", DF, Step.DAILY, ts(2020, 10, 11), ts(2020, 10, 14), prev
        )

    partial = exc_info.value.partial_chunk
    assert counts(partial, Step.DAILY) == [(ts(2020, 10, 11), 3)]
    assert partial.accumulated_to == ts(2020, 10, 11, 5)


class CancellingStore(FakeRecordStore):
    def __init__(self, records, cancel: threading.Event, after: int) -> None:
        super().__init__(records)
        self.cancel = cancel
        self.after = after

    def list_records(self, filters, page_size, cursor=""):
        page = super().list_records(filters, page_size, cursor)
        if len(self.calls) >= self.after:
            self.cancel.set()
        return page


def test_cancellation_between_buckets() -> None:
    cancel = threading.Event()
    store = CancellingStore(
        [deployment(ts(2020, 10, d, 3)) for d in (11, 12, 13)], cancel, after=2
    )

    with pytest.raises(CollectionCancelledError) as exc_info:
        InsightCollector(store).collect(
            "appID", DF, Step.DAILY, ts(2020, 10, 11), ts(2020, 10, 14), DeployFrequencyChunk(), cancel=cancel
        )

    assert counts(exc_info.value.partial_chunk, Step.DAILY) == [(ts(2020, 10, 11), 1)]
    assert len(store.calls) == 2


def test_cancelled_before_start_scans_nothing() -> None:
    cancel = threading.Event()
    cancel.set()
    store = FakeRecordStore([deployment(ts(2020, 10, 11, 3))])

    with pytest.raises(CollectionCancelledError):
        InsightCollector(store).collect(
            "appID", DF, Step.DAILY, ts(2020, 10, 11), ts(2020, 10, 12), DeployFrequencyChunk(), cancel=cancel
        )
    assert store.calls == []


def test_chunk_of_other_kind_is_rejected() -> None:
    with pytest.raises(UnsupportedMetricKindError):
        InsightCollector(FakeRecordStore()).collect(
            "appID", CFR, Step.DAILY, 0, 1, DeployFrequencyChunk()
        )


def test_unknown_kind_and_step_are_rejected() -> None:
    collector = InsightCollector(FakeRecordStore())
    with pytest.raises(UnsupportedMetricKindError):
        collector.collect("appID", "LEAD_TIME", Step.DAILY, 0, 1, DeployFrequencyChunk())  # type: ignore[arg-type]
    with pytest.raises(UnsupportedStepError):
        collector.collect("appID", DF, "HOURLY", 0, 1, DeployFrequencyChunk())  # type: ignore[arg-type]


def test_collect_request() -> None:
    store = FakeRecordStore([deployment(ts(2020, 10, 11, 3))])
    request = CollectionRequest(
        application_id="appID",
        kind=DF,
        step=Step.MONTHLY,
        range_from=ts(2020, 10, 1),
        range_to=ts(2020, 10, 20),
    )

    got = InsightCollector(store).collect_request(request, DeployFrequencyChunk())

    assert counts(got, Step.MONTHLY) == [(ts(2020, 10, 1), 1)]
