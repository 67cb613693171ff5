"""Exception types raised by the insight pipeline.

Every failure is scoped to a single collection call. Errors raised while a
bucket walk is in progress carry the chunk committed up to the last fully
processed bucket on `partial_chunk`, so a caller can persist the progress
before the scheduler retries.
"""

from __future__ import annotations

from typing import Any


class InsightError(Exception):
    """Base class for insight pipeline errors."""

    def __init__(self, message: str, partial_chunk: Any | None = None) -> None:
        super().__init__(message)
        self.partial_chunk = partial_chunk


class RecordStoreError(InsightError):
    """A page fetch against the deployment record store failed."""


class ChunkCodecError(InsightError):
    """Serialized chunk state could not be encoded or decoded."""


class ChunkStoreError(InsightError):
    """Reading or writing a chunk blob failed."""


class ChunkOrderError(InsightError):
    """A data point would break the append-only ordering of a series."""


class UnsupportedMetricKindError(InsightError):
    """The metric kind is not one the collector knows how to aggregate."""


class UnsupportedStepError(InsightError):
    """The step granularity has no bucket alignment rule."""


class CollectionCancelledError(InsightError):
    """The bucket walk was cancelled between two buckets."""
