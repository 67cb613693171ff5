"""Metric aggregators.

Each metric kind exposes the same capability: the status filter its scan
needs, a reducer turning one bucket's records into a data point, and a
combiner folding a new data point into an existing one for the same bucket.
The collector selects the implementation with `metric_for(kind)`.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Sequence

from insight_pipeline.errors import UnsupportedMetricKindError
from insight_pipeline.models import (
    ChangeFailureRate,
    DataPoint,
    DeployFrequency,
    DeploymentRecord,
    DeploymentStatus,
    MetricKind,
    failure_rate,
)


class Metric(ABC):
    """Aggregation contract shared by all metric kinds."""

    kind: MetricKind
    status_filter: frozenset[DeploymentStatus] | None = None

    @abstractmethod
    def reduce(self, records: Sequence[DeploymentRecord], timestamp: int) -> DataPoint:
        """Return the data point for `records` stamped with bucket start `timestamp`."""

    @abstractmethod
    def combine(self, existing: DataPoint, new: DataPoint) -> DataPoint:
        """Return the data point covering both `existing` and `new`."""

    def aggregate(
        self,
        records: Sequence[DeploymentRecord],
        timestamp: int,
        lower_bound: int,
    ) -> tuple[DataPoint, int]:
        """Reduce `records` and report the high-water mark they reach.

        Args:
            records: Records scanned for one bucket window.
            timestamp: Aligned start of the bucket.
            lower_bound: Lower bound of the scanned window.

        Returns:
            `(data_point, high_water_mark)` where the high-water mark is the
            largest `created_at` among `records`, or `lower_bound` when empty.
        """
        hwm = max((r.created_at for r in records), default=lower_bound)
        return self.reduce(records, timestamp), hwm


class DeployFrequencyMetric(Metric):
    kind = MetricKind.DEPLOYMENT_FREQUENCY

    def reduce(self, records: Sequence[DeploymentRecord], timestamp: int) -> DeployFrequency:
        return DeployFrequency(timestamp=timestamp, deploy_count=len(records))

    def combine(self, existing: DeployFrequency, new: DeployFrequency) -> DeployFrequency:
        return DeployFrequency(
            timestamp=existing.timestamp,
            deploy_count=existing.deploy_count + new.deploy_count,
        )


class ChangeFailureRateMetric(Metric):
    kind = MetricKind.CHANGE_FAILURE_RATE
    status_filter = frozenset({DeploymentStatus.SUCCESS, DeploymentStatus.FAILURE})

    def reduce(self, records: Sequence[DeploymentRecord], timestamp: int) -> ChangeFailureRate:
        # Records are pre-filtered by the scan; anything else is not terminal.
        success = sum(1 for r in records if r.status is DeploymentStatus.SUCCESS)
        failure = sum(1 for r in records if r.status is DeploymentStatus.FAILURE)
        return ChangeFailureRate(
            timestamp=timestamp,
            rate=failure_rate(success, failure),
            success_count=success,
            failure_count=failure,
        )

    def combine(self, existing: ChangeFailureRate, new: ChangeFailureRate) -> ChangeFailureRate:
        success = existing.success_count + new.success_count
        failure = existing.failure_count + new.failure_count
        return ChangeFailureRate(
            timestamp=existing.timestamp,
            rate=failure_rate(success, failure),
            success_count=success,
            failure_count=failure,
        )


_METRICS: dict[MetricKind, Metric] = {
    MetricKind.DEPLOYMENT_FREQUENCY: DeployFrequencyMetric(),
    MetricKind.CHANGE_FAILURE_RATE: ChangeFailureRateMetric(),
}


def metric_for(kind: MetricKind | str) -> Metric:
    """Return the aggregator registered for `kind`.

    Raises:
        UnsupportedMetricKindError: if no aggregator handles `kind`.
    """
    try:
        return _METRICS[MetricKind(kind)]
    except (KeyError, ValueError) as e:
        raise UnsupportedMetricKindError(f"unsupported insight metric kind: {kind!r}") from e
