"""
Reporting Periods
=================

Calendar-quarter and Monday-Sunday week boundaries, and inclusive range
membership. All functions take ``now`` explicitly; none read the clock.
Naive datetimes are treated as UTC. Boundaries are built in the time zone
of ``now``.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, List, Tuple

from models.deal_models import QuarterInfo, WeekWindow
from scripts.lib.utils import ensure_utc, parse_timestamp

_LAST_MILLISECOND = timedelta(milliseconds=1)


def _start_of_day(dt: datetime) -> datetime:
    return dt.replace(hour=0, minute=0, second=0, microsecond=0)


def current_quarter(now: datetime) -> QuarterInfo:
    """Calendar quarter containing ``now``; end is the quarter's last millisecond."""
    now = ensure_utc(now)
    quarter = (now.month - 1) // 3 + 1
    start = _start_of_day(now.replace(month=(quarter - 1) * 3 + 1, day=1))

    if quarter == 4:
        next_start = start.replace(year=start.year + 1, month=1)
    else:
        next_start = start.replace(month=quarter * 3 + 1)

    return QuarterInfo(
        year=now.year,
        quarter=quarter,
        start=start,
        end=next_start - _LAST_MILLISECOND,
        label=f"Q{quarter} {now.year}",
    )


def current_week(now: datetime) -> WeekWindow:
    """Monday 00:00:00.000 through Sunday 23:59:59.999 of the week containing ``now``."""
    now = ensure_utc(now)
    # weekday(): Monday == 0 ... Sunday == 6
    week_start = _start_of_day(now - timedelta(days=now.weekday()))
    week_end = week_start + timedelta(days=7) - _LAST_MILLISECOND
    return WeekWindow(week_start=week_start, week_end=week_end)


def in_range(timestamp: Any, start: datetime, end: datetime) -> bool:
    """Inclusive on both ends. Missing or unparseable timestamps are never in range."""
    ts = parse_timestamp(timestamp)
    if ts is None:
        return False
    return ensure_utc(start) <= ts <= ensure_utc(end)


def months_in_period(start: datetime, end: datetime) -> List[Tuple[int, int]]:
    """(year, month) for every calendar month touched by [start, end], in order."""
    months: List[Tuple[int, int]] = []
    year, month = start.year, start.month
    while (year, month) <= (end.year, end.month):
        months.append((year, month))
        year, month = (year + 1, 1) if month == 12 else (year, month + 1)
    return months
