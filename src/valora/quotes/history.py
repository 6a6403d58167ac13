"""Read-side shaping of historical series for charting clients."""

from __future__ import annotations

from collections.abc import Sequence

from valora.core.models import HistoryPoint

DAY_SECONDS = 86_400
MONTH_SECONDS = 30 * DAY_SECONDS


def bucket_size_for(range_seconds: int) -> int:
    """Bucket width for a requested range.

    Up to a day: 10 minutes. Up to 30 days: 6 hours. Longer: hourly, since
    long-range clients aggregate to daily themselves.
    """
    if range_seconds <= DAY_SECONDS:
        return 600
    if range_seconds <= MONTH_SECONDS:
        return 21_600
    return 3_600


def shape_history(
    points: Sequence[HistoryPoint],
    *,
    start: int | None,
    end: int | None,
    now: int,
) -> list[HistoryPoint]:
    """Deduplicate a newest-first series into one point per time bucket.

    Sell-only rows (buy is None) are dropped whenever the series also has
    rows with a buy side, so mid prices and sell prices never interleave.
    Input order is preserved; the first row seen in a bucket wins.
    """
    span = (end if end is not None else now) - (start or 0)
    size = bucket_size_for(span)

    if any(p.buy is not None for p in points):
        points = [p for p in points if p.buy is not None]

    seen: set[int] = set()
    shaped: list[HistoryPoint] = []
    for p in points:
        bucket = p.ts // size
        if bucket in seen:
            continue
        seen.add(bucket)
        shaped.append(p)
    return shaped


def change_percent(current: float | None, previous: float | None) -> float | None:
    """Percent change from previous to current, or None when undefined."""
    if current is None or not previous:
        return None
    return (current - previous) / previous * 100
