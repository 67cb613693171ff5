"""Bucket boundary arithmetic for the four insight granularities.

All buckets are aligned to UTC midnight:

- DAILY   every calendar day
- WEEKLY  weeks starting on Sunday
- MONTHLY the first of every calendar month
- YEARLY  January 1

Boundaries are computed with `pandas.Period` so leap years and month lengths
come from a tested calendar implementation. Every other module must go
through this one; the merge step relies on bucket starts being reproduced
exactly between calls.
"""
from __future__ import annotations

import pandas as pd

from insight_pipeline.errors import UnsupportedStepError
from insight_pipeline.models import Step

# Weekly periods end on Saturday, so they start on Sunday.
WEEK_ANCHOR = "W-SAT"

_PERIOD_FREQ: dict[Step, str] = {
    Step.DAILY: "D",
    Step.WEEKLY: WEEK_ANCHOR,
    Step.MONTHLY: "M",
    Step.YEARLY: "Y",
}


def _freq(step: Step) -> str:
    try:
        return _PERIOD_FREQ[Step(step)]
    except (KeyError, ValueError) as e:
        raise UnsupportedStepError(f"unsupported insight step: {step!r}") from e


def _epoch(ts: pd.Timestamp) -> int:
    return int(ts.tz_localize("UTC").timestamp())


def bucket_bounds(ts: int, step: Step) -> tuple[int, int]:
    """Return the start of the bucket containing `ts` and the start of the next one.

    Args:
        ts: Instant in seconds since epoch.
        step: Bucket granularity.

    Returns:
        `(start, next_start)` in seconds since epoch; `start <= ts < next_start`.

    Raises:
        UnsupportedStepError: if `step` is not a known granularity.
    """
    period = pd.Timestamp(ts, unit="s").to_period(_freq(step))
    return _epoch(period.start_time), _epoch((period + 1).start_time)
