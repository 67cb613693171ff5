"""Folding data points into persisted chunks.

A chunk series only grows at its tail. A data point for the bucket already at
the tail is combined into it (the bucket was partially observed by an earlier
call); a data point for a later bucket is appended. Earlier buckets are
closed and never touched again.
"""
from __future__ import annotations

import logging

import pandas as pd

from insight_pipeline.aggregate.metrics import Metric
from insight_pipeline.errors import ChunkOrderError
from insight_pipeline.models import Chunk, DataPoint, Step

log = logging.getLogger(__name__)


def merge(
    chunk: Chunk,
    step: Step,
    point: DataPoint,
    high_water_mark: int,
    metric: Metric,
) -> Chunk:
    """Fold `point` into the `step` series of `chunk`, in place.

    The collector works on its own copy of the stored chunk, so merging one
    bucket at a time never copies the series.

    Args:
        chunk: Chunk to update.
        step: Granularity whose series receives the point.
        point: Data point stamped with its aligned bucket start.
        high_water_mark: Largest record timestamp behind `point`.
        metric: Aggregator providing the combine rule.

    Returns:
        `chunk`, with `accumulated_to` raised to `high_water_mark` when that
        is larger.

    Raises:
        ChunkOrderError: if `point` is older than the current tail bucket;
            `chunk` is left unchanged.
    """
    series = chunk.series(step)

    if series and series[-1].timestamp == point.timestamp:
        series[-1] = metric.combine(series[-1], point)
        log.debug("Continued %s bucket %d", step.value, point.timestamp)
    elif series and point.timestamp < series[-1].timestamp:
        raise ChunkOrderError(
            f"{step.value} data point {point.timestamp} is older than "
            f"closed bucket {series[-1].timestamp}",
            partial_chunk=chunk,
        )
    else:
        series.append(point)
        log.debug("Appended %s bucket %d", step.value, point.timestamp)

    chunk.accumulated_to = max(chunk.accumulated_to, high_water_mark)
    return chunk


def chunk_to_frame(chunk: Chunk, step: Step) -> pd.DataFrame:
    """Return one series of `chunk` as a DataFrame with a UTC `bucket` column."""
    rows = [p.model_dump() for p in chunk.series(step)]
    if not rows:
        return pd.DataFrame(columns=["bucket", "timestamp"])

    df = pd.DataFrame(rows)
    df.insert(0, "bucket", pd.to_datetime(df["timestamp"], unit="s", utc=True))
    return df
