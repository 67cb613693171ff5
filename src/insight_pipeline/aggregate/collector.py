"""Bucket-by-bucket insight collection.

`InsightCollector.collect` walks one (application, metric kind, step) from
`range_from` onwards. The first window starts at the literal `range_from`
and ends at the next bucket boundary; later windows are whole buckets. For
every window the records are scanned, reduced and merged into the chunk.

The walk keeps going while it finds records, even past `range_to`, so the
chunk catches up with the newest data. An empty window only ends the walk
once it starts at or after `range_to`.
"""
from __future__ import annotations

import logging
import threading

from insight_pipeline.aggregate.buckets import bucket_bounds
from insight_pipeline.aggregate.merge import merge
from insight_pipeline.aggregate.metrics import metric_for
from insight_pipeline.errors import (
    CollectionCancelledError,
    InsightError,
    UnsupportedMetricKindError,
    UnsupportedStepError,
)
from insight_pipeline.models import Chunk, CollectionRequest, MetricKind, Step
from insight_pipeline.records.scanner import PAGE_SIZE, scan
from insight_pipeline.records.store import RecordStore

log = logging.getLogger(__name__)


class InsightCollector:
    """Drives scanner, aggregator and merger over consecutive buckets."""

    def __init__(self, record_store: RecordStore, page_size: int = PAGE_SIZE) -> None:
        self._store = record_store
        self._page_size = page_size

    def collect(
        self,
        application_id: str,
        kind: MetricKind,
        step: Step,
        range_from: int,
        range_to: int,
        previous_chunk: Chunk,
        cancel: threading.Event | None = None,
    ) -> Chunk:
        """Extend `previous_chunk` with the records found from `range_from` on.

        Records stamped exactly at the chunk watermark are treated as already
        folded when the walk resumes at (or after) that watermark, so calling
        again with `range_from = accumulated_to` does not count them twice.

        Args:
            application_id: Application whose deployments are aggregated.
            kind: Metric kind; must match `previous_chunk.kind`.
            step: Granularity of the series to extend.
            range_from: Start of the walk (epoch seconds, may be mid-bucket).
            range_to: Minimum coverage; the walk stops at the first empty
                bucket starting at or after it.
            previous_chunk: Chunk loaded by the caller; not modified.
            cancel: Optional event checked before every bucket.

        Returns:
            The updated chunk.

        Raises:
            UnsupportedMetricKindError: for an unknown kind or a chunk of
                another kind.
            UnsupportedStepError: for an unknown step.
            CollectionCancelledError: when `cancel` is set mid-walk.
            RecordStoreError: when a page fetch fails.
        """
        metric = metric_for(kind)
        try:
            step = Step(step)
        except ValueError as e:
            raise UnsupportedStepError(f"unsupported insight step: {step!r}") from e
        if previous_chunk.kind != metric.kind:
            raise UnsupportedMetricKindError(
                f"chunk holds {previous_chunk.kind} data, cannot collect {metric.kind.value}"
            )

        watermark = previous_chunk.accumulated_to
        resuming = watermark > 0 and range_from >= watermark

        chunk = previous_chunk.model_copy(deep=True)
        bound_start = range_from
        buckets = folded = 0

        while True:
            if cancel is not None and cancel.is_set():
                raise CollectionCancelledError(
                    f"collection for {application_id} cancelled at {bound_start}",
                    partial_chunk=chunk,
                )

            start, bound_end = bucket_bounds(bound_start, step)
            try:
                records = scan(
                    self._store,
                    application_id,
                    bound_start,
                    bound_end,
                    statuses=metric.status_filter,
                    page_size=self._page_size,
                )
            except InsightError as e:
                e.partial_chunk = chunk
                raise

            if resuming:
                records = [r for r in records if r.created_at > watermark]
            buckets += 1

            if records:
                point, hwm = metric.aggregate(records, start, bound_start)
                merge(chunk, step, point, hwm, metric)
                folded += len(records)
            elif bound_start >= range_to:
                break
            else:
                log.debug("Empty %s bucket %d inside requested range", step.value, start)

            bound_start = bound_end

        log.info(
            "Collected %s/%s for %s: %d buckets, %d records, accumulated_to=%d",
            metric.kind.value,
            step.value,
            application_id,
            buckets,
            folded,
            chunk.accumulated_to,
        )
        return chunk

    def collect_request(
        self,
        request: CollectionRequest,
        previous_chunk: Chunk,
        cancel: threading.Event | None = None,
    ) -> Chunk:
        return self.collect(
            request.application_id,
            request.kind,
            request.step,
            request.range_from,
            request.range_to,
            previous_chunk,
            cancel=cancel,
        )
