"""
Date-range resolution for the day-partitioned log archive.

Every machine keeps one file per calendar day (`machine_<id>/<YYYY-MM-DD>.json`),
so a range query only has to know which day names to try. The resolver never
lists directories and never returns an unbounded set: no dates -> no files.
"""
from __future__ import annotations
from typing import Optional, Tuple
from datetime import date, datetime, timedelta
import logging

import pandas as pd

from needle_api.config import SETTINGS
from needle_api.errors import InvalidDateRange
from needle_api.utils import now_local

logger = logging.getLogger("needle.dates")

DAY_FMT = "%Y-%m-%d"


def parse_day(value) -> date:
    """Strict 'YYYY-MM-DD' -> date. Raises ValueError otherwise."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValueError(f"not a date string: {value!r}")
    return datetime.strptime(value.strip(), DAY_FMT).date()


def parse_date_range(start_date, end_date) -> Tuple[date, date]:
    if start_date in (None, "") or end_date in (None, ""):
        raise InvalidDateRange(start_date, end_date, "start and end are required")
    try:
        start = parse_day(start_date)
        end = parse_day(end_date)
    except ValueError as e:
        raise InvalidDateRange(start_date, end_date, str(e)) from e
    if start > end:
        raise InvalidDateRange(start_date, end_date, "start is after end")
    return start, end


def resolve_files(start_date: Optional[str], end_date: Optional[str]) -> list[str]:
    """Day names ('YYYY-MM-DD') covering [start_date, end_date], ascending.

    An invalid or missing range resolves to an empty list; range queries then
    read nothing instead of failing.
    """
    if not start_date and not end_date:
        return []
    try:
        start, end = parse_date_range(start_date, end_date)
    except InvalidDateRange as e:
        logger.warning("resolve_files: %s -> no files", e)
        return []
    # second resolution: nanosecond timestamps stop at 2262
    days = pd.date_range(start=start, end=end, freq="D", unit="s")
    return [d.strftime(DAY_FMT) for d in days]


def day_file_name(day: str) -> str:
    return f"{day}.json"


def default_date_window(today: Optional[date] = None, lookback_days: Optional[int] = None) -> Tuple[str, str]:
    """Bounded default for callers that got no range: (today - N days, today)."""
    if today is None:
        today = now_local().date()
    n = SETTINGS.DEFAULT_LOOKBACK_DAYS if lookback_days is None else int(lookback_days)
    start = today - timedelta(days=max(n, 0))
    return start.strftime(DAY_FMT), today.strftime(DAY_FMT)
