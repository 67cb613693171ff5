"""Concurrent execution of insight collection requests.

The scheduler hands over a flat list of `CollectionRequest`s. Requests are
grouped by (application, metric kind) because those share one chunk: a group
loads its chunk once, walks all four steps from the same watermark, and saves
the combined result once. Groups share no state and run in a thread pool.

The first failing group cancels the others: a shared event stops running
walks at their next bucket, queued groups never start, and the first error
is raised once every task has settled. A failed group saves nothing, so the
next run resumes from the previous watermark.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Iterable, Protocol

from insight_pipeline.aggregate.collector import InsightCollector
from insight_pipeline.models import Chunk, CollectionRequest, MetricKind, Step

log = logging.getLogger(__name__)


class ChunkStore(Protocol):
    def load(self, application_id: str, kind: MetricKind) -> Chunk: ...

    def save(self, chunk: Chunk) -> None: ...


@dataclass(frozen=True)
class RunSummary:
    """Outcome of one successfully collected (application, kind) group."""
    application_id: str
    kind: MetricKind
    steps: tuple[Step, ...]
    accumulated_to: int


def plan_requests(
    application_ids: Iterable[str],
    kinds: Iterable[MetricKind],
    range_from: int,
    range_to: int,
) -> list[CollectionRequest]:
    """Return one request per (application, kind, step) combination.

    Every step is planned: a chunk keeps one watermark for all four series.
    `range_from` is the earliest instant to collect for a chunk that has never
    been collected; stored chunks resume from their watermark instead.
    """
    kinds = list(kinds)
    return [
        CollectionRequest(
            application_id=app_id,
            kind=kind,
            step=step,
            range_from=range_from,
            range_to=range_to,
        )
        for app_id in application_ids
        for kind in kinds
        for step in Step
    ]


def _with_series(result: Chunk, updated: Chunk, step: Step) -> Chunk:
    combined = result.model_copy(deep=True)
    setattr(combined.data_points, step.field_name, list(updated.series(step)))
    combined.accumulated_to = max(combined.accumulated_to, updated.accumulated_to)
    return combined


def _run_group(
    collector: InsightCollector,
    chunk_store: ChunkStore,
    application_id: str,
    kind: MetricKind,
    requests: list[CollectionRequest],
    cancel: threading.Event,
) -> RunSummary:
    # All four series share one watermark, so they advance together.
    requested = {req.step for req in requests}
    if requested != set(Step):
        log.debug(
            "Group %s/%s requested %s; walking every step",
            application_id,
            kind.value,
            ",".join(sorted(s.value for s in requested)),
        )

    base = chunk_store.load(application_id, kind)
    range_from = max(min(req.range_from for req in requests), base.accumulated_to)
    range_to = max(max(req.range_to for req in requests), range_from)
    result = base

    for step in Step:
        updated = collector.collect(
            application_id,
            kind,
            step,
            range_from,
            range_to,
            base,
            cancel=cancel,
        )
        result = _with_series(result, updated, step)

    chunk_store.save(result)
    return RunSummary(
        application_id=application_id,
        kind=MetricKind(kind),
        steps=tuple(Step),
        accumulated_to=result.accumulated_to,
    )


def run_collections(
    requests: Iterable[CollectionRequest],
    collector: InsightCollector,
    chunk_store: ChunkStore,
    max_workers: int = 4,
) -> list[RunSummary]:
    """Run all `requests`, at most one task per (application, kind).

    Returns:
        Summaries of the groups that were collected and saved.

    Raises:
        Exception: the first error raised by any group, after the remaining
            groups were cancelled.
    """
    groups: dict[tuple[str, MetricKind], list[CollectionRequest]] = {}
    for req in requests:
        groups.setdefault((req.application_id, req.kind), []).append(req)

    if not groups:
        log.info("No collection requests to run")
        return []

    cancel = threading.Event()
    summaries: list[RunSummary] = []
    first_error: BaseException | None = None

    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="insight") as pool:
        futures: dict[Future[RunSummary], tuple[str, MetricKind]] = {
            pool.submit(_run_group, collector, chunk_store, app_id, kind, reqs, cancel): (app_id, kind)
            for (app_id, kind), reqs in groups.items()
        }

        for fut in as_completed(futures):
            app_id, kind = futures[fut]
            try:
                summary = fut.result()
            except CancelledError:
                continue
            except Exception as e:
                if first_error is None:
                    first_error = e
                    cancel.set()
                    for other in futures:
                        other.cancel()
                    log.error("Collection failed for %s/%s: %s", app_id, kind.value, e)
                else:
                    log.warning("Collection for %s/%s stopped: %s", app_id, kind.value, e)
                continue

            summaries.append(summary)
            log.info(
                "Collected %s/%s steps=%s accumulated_to=%d",
                app_id,
                kind.value,
                ",".join(s.value for s in summary.steps),
                summary.accumulated_to,
            )

    if first_error is not None:
        raise first_error
    return summaries
