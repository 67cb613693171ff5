"""Command-line interface for running insight collection.

Provides subcommands: `collect`, `show`, and `indexes`. Each command is
implemented as a `cmd_*` function that accepts an argparse namespace.
"""
from __future__ import annotations

import argparse
import logging
import time
from pathlib import Path

from dotenv import load_dotenv

from insight_pipeline.config import get_settings
from insight_pipeline.logging_config import configure_logging
from insight_pipeline.db import get_collections
from insight_pipeline.errors import InsightError

from insight_pipeline.aggregate.collector import InsightCollector
from insight_pipeline.aggregate.merge import chunk_to_frame
from insight_pipeline.models import MetricKind, Step
from insight_pipeline.persist.chunk_store import MongoChunkStore
from insight_pipeline.records.store import MongoRecordStore, ensure_indexes
from insight_pipeline.runner import plan_requests, run_collections

log = logging.getLogger(__name__)

DAY_SECONDS = 24 * 60 * 60


# --------------------------------------------------
# COLLECT
# --------------------------------------------------
def cmd_collect(args: argparse.Namespace) -> None:
    """Collect insights for the requested applications up to now.

    Args:
        args: argparse namespace with `app`, `kind`, `workers`. Every
            granularity is collected.
    """
    s = get_settings()
    deployments, chunks = get_collections(s)

    now = int(time.time())
    backfill_from = now - s.backfill_days * DAY_SECONDS
    requests = plan_requests(
        args.app,
        [MetricKind(k) for k in args.kind],
        range_from=backfill_from,
        range_to=now,
    )

    collector = InsightCollector(MongoRecordStore(deployments), page_size=s.page_size)
    summaries = run_collections(
        requests,
        collector,
        MongoChunkStore(chunks),
        max_workers=args.workers or s.max_workers,
    )
    log.info("Collection completed for %d chunk(s).", len(summaries))


# --------------------------------------------------
# SHOW
# --------------------------------------------------
def cmd_show(args: argparse.Namespace) -> None:
    """Print one stored series as a table."""
    s = get_settings()
    _, chunks = get_collections(s)

    chunk = MongoChunkStore(chunks).load(args.app, MetricKind(args.kind))
    df = chunk_to_frame(chunk, Step(args.step))
    if df.empty:
        log.warning("No %s data points stored for %s", args.step, args.app)
        return
    print(df.to_string(index=False))


# --------------------------------------------------
# INDEXES
# --------------------------------------------------
def cmd_indexes(_: argparse.Namespace) -> None:
    """Create the deployment index used by the scanner."""
    s = get_settings()
    deployments, _ = get_collections(s)
    name = ensure_indexes(deployments)
    log.info("Deployment index ready: %s", name)


# --------------------------------------------------
# CLI
# --------------------------------------------------
def build_parser() -> argparse.ArgumentParser:
    """Build and return the top-level argument parser for the CLI.

    Returns:
        Configured argparse.ArgumentParser instance.
    """
    kinds = [k.value for k in MetricKind]
    steps = [st.value for st in Step]

    p = argparse.ArgumentParser(prog="insight-pipeline")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_collect = sub.add_parser("collect")
    p_collect.add_argument("--app", action="append", required=True)
    p_collect.add_argument("--kind", action="append", choices=kinds, default=None)
    p_collect.add_argument("--workers", type=int, default=None)

    p_show = sub.add_parser("show")
    p_show.add_argument("--app", required=True)
    p_show.add_argument("--kind", choices=kinds, required=True)
    p_show.add_argument("--step", choices=steps, default=Step.DAILY.value)

    sub.add_parser("indexes")

    return p


def main(argv: list[str] | None = None) -> int:
    """CLI entry point: parse args, configure logging and dispatch commands."""
    load_dotenv()
    configure_logging(Path("logs/insights.log"))

    args = build_parser().parse_args(argv)
    if args.cmd == "collect":
        args.kind = args.kind or [k.value for k in MetricKind]

    try:
        if args.cmd == "collect":
            cmd_collect(args)
        elif args.cmd == "show":
            cmd_show(args)
        elif args.cmd == "indexes":
            cmd_indexes(args)
        else:
            return 2
    except InsightError as e:
        log.error("%s failed: %s", args.cmd, e)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
