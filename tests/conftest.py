from __future__ import annotations

from calendar import timegm
from datetime import datetime
from typing import Any, Sequence

import pytest

from insight_pipeline.errors import RecordStoreError
from insight_pipeline.models import DeploymentRecord, DeploymentStatus, MetricKind, empty_chunk
from insight_pipeline.persist.chunk_store import chunk_path, decode_chunk, encode_chunk
from insight_pipeline.records.store import ListFilter


def ts(*args: int) -> int:
    """Epoch seconds for a UTC datetime given as `ts(2020, 10, 11, 4)`."""
    return timegm(datetime(*args).timetuple())


def _matches(record: DeploymentRecord, f: ListFilter) -> bool:
    value: Any = getattr(record, f.field)
    if f.operator == ">=":
        return value >= f.value
    if f.operator == "<":
        return value < f.value
    if f.operator == "==":
        return value == f.value
    if f.operator == "in":
        return value in f.value
    raise AssertionError(f"unexpected operator {f.operator}")


class FakeRecordStore:
    """In-memory record store ordering pages by `(created_at, id)`."""

    def __init__(self, records: Sequence[DeploymentRecord] = (), fail_on_call: int | None = None) -> None:
        self.records = list(records)
        self.calls: list[list[ListFilter]] = []
        self.fail_on_call = fail_on_call

    def add(self, *records: DeploymentRecord) -> None:
        self.records.extend(records)

    def list_records(
        self,
        filters: Sequence[ListFilter],
        page_size: int,
        cursor: str = "",
    ) -> tuple[list[DeploymentRecord], str]:
        self.calls.append(list(filters))
        if self.fail_on_call is not None and len(self.calls) >= self.fail_on_call:
            raise RecordStoreError("something wrong happens in list_records")

        hits = sorted(
            (r for r in self.records if all(_matches(r, f) for f in filters)),
            key=lambda r: (r.created_at, r.id),
        )
        skip = int(cursor) if cursor else 0
        page = hits[skip : skip + page_size]
        next_cursor = str(skip + len(page)) if len(page) == page_size else ""
        return page, next_cursor


class MemoryChunkStore:
    """Chunk store keeping encoded chunks in a dict."""

    def __init__(self) -> None:
        self.blobs: dict[str, bytes] = {}
        self.saves = 0

    def load(self, application_id: str, kind: MetricKind):
        path = chunk_path(application_id, kind)
        if path not in self.blobs:
            return empty_chunk(kind, file_path=path)
        chunk = decode_chunk(self.blobs[path])
        chunk.file_path = path
        return chunk

    def save(self, chunk) -> None:
        self.blobs[chunk.file_path] = encode_chunk(chunk)
        self.saves += 1


_counter = iter(range(1, 1_000_000))


def deployment(
    created_at: int,
    status: DeploymentStatus = DeploymentStatus.SUCCESS,
    application_id: str = "appID",
    id: str | None = None,
) -> DeploymentRecord:
    return DeploymentRecord(
        id=id or f"d{next(_counter)}",
        application_id=application_id,
        created_at=created_at,
        status=status,
    )


@pytest.fixture
def store() -> FakeRecordStore:
    return FakeRecordStore()


@pytest.fixture
def chunk_store() -> MemoryChunkStore:
    return MemoryChunkStore()
