"""Incremental paging over the deployment record store.

`scan` returns every record of one application created inside a half-open
interval `[lo, hi)`. Pages are fetched with a moving floor: after each page
the lower bound is raised to the largest `created_at` seen so far and the
query is repeated with the same upper bound until a page comes back empty.

Because the floor is inclusive, records sharing the floor timestamp are
returned again by the next query. They are recognised by id and dropped, and
a page made only of such repeats ends the scan. More than `page_size`
records sharing a single timestamp therefore cannot all be observed.
"""
from __future__ import annotations

import logging
from typing import Iterable

from insight_pipeline.models import DeploymentRecord, DeploymentStatus
from insight_pipeline.records.store import ListFilter, RecordStore

log = logging.getLogger(__name__)

PAGE_SIZE = 50


def build_filters(
    application_id: str,
    floor: int,
    hi: int,
    statuses: Iterable[DeploymentStatus] | None = None,
) -> list[ListFilter]:
    """Return the filter conjunction for one page query."""
    filters = [
        ListFilter("created_at", ">=", floor),
        ListFilter("created_at", "<", hi),
        ListFilter("application_id", "==", application_id),
    ]
    if statuses is not None:
        filters.append(ListFilter("status", "in", sorted(statuses, key=lambda s: s.value)))
    return filters


def scan(
    store: RecordStore,
    application_id: str,
    lo: int,
    hi: int,
    statuses: Iterable[DeploymentStatus] | None = None,
    page_size: int = PAGE_SIZE,
) -> list[DeploymentRecord]:
    """Return all records of `application_id` with `lo <= created_at < hi`.

    Args:
        store: Record store to page through.
        application_id: Owning application.
        lo: Inclusive lower bound (epoch seconds).
        hi: Exclusive upper bound (epoch seconds).
        statuses: Optional status membership filter.
        page_size: Records requested per page.

    Returns:
        Records in the order they were observed, each at most once.

    Raises:
        RecordStoreError: propagated from the store on any page failure.
    """
    status_filter = frozenset(statuses) if statuses is not None else None
    records: list[DeploymentRecord] = []
    seen: set[str] = set()
    floor = lo
    pages = 0

    while True:
        page, _ = store.list_records(
            build_filters(application_id, floor, hi, status_filter),
            page_size=page_size,
            cursor="",
        )
        pages += 1
        if not page:
            break

        fresh = [r for r in page if r.id not in seen]
        if not fresh:
            log.debug(
                "Page at floor=%d only repeated %d known records; stopping",
                floor,
                len(page),
            )
            break

        records.extend(fresh)
        seen.update(r.id for r in fresh)
        floor = max(floor, max(r.created_at for r in page))

    log.debug(
        "Scanned app=%s [%d, %d): %d records in %d pages",
        application_id,
        lo,
        hi,
        len(records),
        pages,
    )
    return records
