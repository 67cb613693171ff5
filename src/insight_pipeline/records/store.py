"""Deployment record store contract and its MongoDB implementation.

The collector only needs a filtered, paginated listing of deployment records.
`RecordStore` describes that contract; `MongoRecordStore` fulfils it against a
PyMongo collection whose documents carry `id`, `application_id`,
`created_at` (epoch seconds) and `status` fields.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol, Sequence

from pydantic import ValidationError
from pymongo import ASCENDING
from pymongo.collection import Collection
from pymongo.errors import PyMongoError

from insight_pipeline.errors import RecordStoreError
from insight_pipeline.models import DeploymentRecord

log = logging.getLogger(__name__)

_MONGO_OPERATORS = {
    ">=": "$gte",
    "<": "$lt",
    "==": "$eq",
    "in": "$in",
}


@dataclass(frozen=True)
class ListFilter:
    """One `(field, operator, value)` condition; a filter list is a conjunction."""
    field: str
    operator: str
    value: Any


class RecordStore(Protocol):
    def list_records(
        self,
        filters: Sequence[ListFilter],
        page_size: int,
        cursor: str = "",
    ) -> tuple[list[DeploymentRecord], str]:
        """Return one page of matching records and the cursor for the next page.

        Raises:
            RecordStoreError: if the page cannot be fetched.
        """
        ...


def _bson_value(value: Any) -> Any:
    if isinstance(value, (list, tuple, set, frozenset)):
        return [getattr(v, "value", v) for v in value]
    return getattr(value, "value", value)


def build_query(filters: Sequence[ListFilter]) -> dict[str, Any]:
    """Translate a filter conjunction into a MongoDB query document.

    Conditions on the same field are merged, e.g. `>=` and `<` on
    `created_at` become `{"created_at": {"$gte": lo, "$lt": hi}}`.

    Raises:
        RecordStoreError: if a filter uses an unsupported operator.
    """
    query: dict[str, dict[str, Any]] = {}
    for f in filters:
        op = _MONGO_OPERATORS.get(f.operator)
        if op is None:
            raise RecordStoreError(f"unsupported filter operator: {f.operator!r}")
        query.setdefault(f.field, {})[op] = _bson_value(f.value)
    return query


class MongoRecordStore:
    """Record store backed by a MongoDB collection.

    Pages are ordered by `(created_at, id)`. The cursor is an opaque string
    holding the number of documents already returned for the same filters.
    """

    def __init__(self, collection: Collection[dict[str, Any]]) -> None:
        self._collection = collection

    def list_records(
        self,
        filters: Sequence[ListFilter],
        page_size: int,
        cursor: str = "",
    ) -> tuple[list[DeploymentRecord], str]:
        query = build_query(filters)
        skip = int(cursor) if cursor else 0

        try:
            docs = list(
                self._collection.find(query, {"_id": False})
                .sort([("created_at", ASCENDING), ("id", ASCENDING)])
                .skip(skip)
                .limit(page_size)
            )
        except PyMongoError as e:
            raise RecordStoreError(f"failed to list deployments: {e}") from e

        try:
            records = [DeploymentRecord.model_validate(d) for d in docs]
        except ValidationError as e:
            raise RecordStoreError(f"malformed deployment document: {e}") from e

        next_cursor = str(skip + len(records)) if len(records) == page_size else ""
        log.debug("Listed %d deployments (skip=%d)", len(records), skip)
        return records, next_cursor


def ensure_indexes(collection: Collection[dict[str, Any]]) -> str:
    """Create the compound index used by the scanner's range queries."""
    try:
        return collection.create_index(
            [("application_id", ASCENDING), ("created_at", ASCENDING), ("id", ASCENDING)],
            name="application_created_at",
        )
    except PyMongoError as e:
        raise RecordStoreError(f"failed to create deployment index: {e}") from e
