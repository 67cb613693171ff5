"""Chunk codec and MongoDB-backed chunk store.

Chunks are serialized to JSON bytes with Pydantic and stored one document per
(application, metric kind) pair, keyed by the chunk's `file_path`. Failures
are reported to the caller; retries belong to the scheduler.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from bson.binary import Binary
from pydantic import ValidationError
from pymongo.collection import Collection
from pymongo.errors import PyMongoError

from insight_pipeline.errors import ChunkCodecError, ChunkStoreError
from insight_pipeline.models import CHUNK_ADAPTER, Chunk, MetricKind, empty_chunk

log = logging.getLogger(__name__)


def chunk_path(application_id: str, kind: MetricKind) -> str:
    """Return the storage handle for an application's chunk of `kind`."""
    return f"insights/{MetricKind(kind).value.lower()}/{application_id}.json"


def encode_chunk(chunk: Chunk) -> bytes:
    """Serialize `chunk` to JSON bytes.

    Raises:
        ChunkCodecError: if the chunk cannot be serialized.
    """
    try:
        return CHUNK_ADAPTER.dump_json(chunk)
    except (ValueError, TypeError) as e:
        raise ChunkCodecError(f"failed to encode chunk: {e}") from e


def decode_chunk(data: bytes | str) -> Chunk:
    """Parse JSON produced by `encode_chunk` back into a chunk.

    Raises:
        ChunkCodecError: if `data` is not a valid chunk, including series
            that are not strictly ordered by timestamp.
    """
    try:
        return CHUNK_ADAPTER.validate_json(data)
    except ValidationError as e:
        raise ChunkCodecError(f"failed to decode chunk: {e}") from e


class MongoChunkStore:
    """Persist encoded chunks in a MongoDB collection."""

    def __init__(self, collection: Collection[dict[str, Any]]) -> None:
        self._collection = collection

    def load(self, application_id: str, kind: MetricKind) -> Chunk:
        """Return the stored chunk, or an empty one when none exists yet."""
        path = chunk_path(application_id, kind)
        try:
            doc = self._collection.find_one({"_id": path})
        except PyMongoError as e:
            raise ChunkStoreError(f"failed to load chunk {path}: {e}") from e

        if doc is None:
            log.info("No chunk stored at %s; starting empty", path)
            return empty_chunk(kind, file_path=path)

        chunk = decode_chunk(bytes(doc["data"]))
        if chunk.kind != MetricKind(kind):
            raise ChunkCodecError(f"chunk at {path} holds {chunk.kind} data")
        chunk.file_path = path
        return chunk

    def save(self, chunk: Chunk) -> None:
        """Upsert `chunk` under its `file_path`."""
        if not chunk.file_path:
            raise ChunkStoreError("chunk has no file_path; load it through the store first")

        data = encode_chunk(chunk)
        try:
            self._collection.update_one(
                {"_id": chunk.file_path},
                {
                    "$set": {
                        "data": Binary(data),
                        "kind": chunk.kind,
                        "accumulated_to": chunk.accumulated_to,
                        "updated_at": datetime.now(timezone.utc),
                    }
                },
                upsert=True,
            )
        except PyMongoError as e:
            raise ChunkStoreError(f"failed to save chunk {chunk.file_path}: {e}") from e

        log.info("Saved chunk %s (accumulated_to=%d)", chunk.file_path, chunk.accumulated_to)
