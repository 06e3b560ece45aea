# =============================
# ========= utils.py ==========
# =============================
"""Utilities: time helpers, JSON sanitation, small parsers.
"""
from __future__ import annotations
from typing import Any, Optional
from datetime import datetime, date, timezone
from decimal import Decimal
import math
import numpy as np
import pandas as pd
from zoneinfo import ZoneInfo
from needle_api.config import SETTINGS

# ---------------- Time helpers ----------------

def tz() -> ZoneInfo:
    return ZoneInfo(SETTINGS.TIMEZONE)

def now_local() -> datetime:
    return datetime.now(tz())

def now_utc() -> datetime:
    return datetime.now(timezone.utc)

def to_utc_iso(dt: datetime) -> str:
    """'2024-01-01T08:00:00.000Z' (same shape as a browser Date.toISOString())."""
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")

def to_local_str(dt: datetime) -> str:
    """
    Format 'YYYY-MM-DD HH:MM:SS' in the local timezone, without offset.
    - pandas.Timestamp -> datetime
    - naive -> treated as local
    - aware -> converted to local
    """
    if dt is None:
        return None
    if isinstance(dt, pd.Timestamp):
        dt = dt.to_pydatetime()
    if dt.tzinfo is None:
        return dt.strftime("%Y-%m-%d %H:%M:%S")
    return dt.astimezone(tz()).strftime("%Y-%m-%d %H:%M:%S")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a log timestamp into an aware datetime in the local timezone.

    Accepts ISO 8601 strings (with or without offset, trailing 'Z' allowed),
    datetime / pandas.Timestamp objects and epoch milliseconds.
    Naive values are taken as local time. Returns None for empty or
    unparsable input.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, pd.Timestamp):
        if pd.isna(value):
            return None
        value = value.to_pydatetime()
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
            return None
        dt = datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    else:
        s = str(value).strip()
        if not s:
            return None
        if s[-1] in ("Z", "z"):
            s = s[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(s)
        except ValueError:
            return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=tz())
    return dt.astimezone(tz())


def to_epoch_ms(value: Any) -> Optional[float]:
    dt = parse_timestamp(value)
    if dt is None:
        return None
    return dt.timestamp() * 1000.0


def local_day(value: Any) -> Optional[str]:
    """Calendar day 'YYYY-MM-DD' of a timestamp in the local timezone."""
    dt = parse_timestamp(value)
    return dt.strftime("%Y-%m-%d") if dt is not None else None


# ---------------- JSON sanitizer ----------------

def sanitize_json_deep(obj: Any) -> Any:
    """Recursively sanitize an object for JSON encoding.
    - Convert NaN/Inf to None
    - Convert numpy scalars to Python scalars
    - Convert Decimal to float
    - Format datetimes as local 'YYYY-MM-DD HH:MM:SS'
    """
    if obj is None:
        return None
    if isinstance(obj, float):
        if math.isnan(obj) or math.isinf(obj):
            return None
        return obj
    if isinstance(obj, (np.floating,)):
        v = float(obj)
        return None if (math.isnan(v) or math.isinf(v)) else v
    if isinstance(obj, (np.integer,)):
        return int(obj)
    if isinstance(obj, (np.bool_,)):
        return bool(obj)
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, (datetime, pd.Timestamp)):
        return to_local_str(obj)
    if isinstance(obj, date):
        return obj.strftime("%Y-%m-%d")
    if isinstance(obj, (list, tuple)):
        return [sanitize_json_deep(x) for x in obj]
    if isinstance(obj, dict):
        return {k: sanitize_json_deep(v) for k, v in obj.items()}
    return obj


# --- parse CSV -> list[int] ---
def parse_csv_int(s: str | None) -> list[int]:
    if not s:
        return []
    out = []
    for tok in str(s).split(","):
        tok = tok.strip()
        if not tok:
            continue
        try:
            out.append(int(tok))
        except ValueError:
            continue
    # drop duplicates, keep order
    seen, uniq = set(), []
    for x in out:
        if x not in seen:
            seen.add(x)
            uniq.append(x)
    return uniq


def normalize_id(value: Any) -> Any:
    """Ids arrive as int, float (from pandas) or numeric strings; fold them to int."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (np.integer,)):
        return int(value)
    if isinstance(value, (float, np.floating)):
        v = float(value)
        if math.isnan(v):
            return None
        return int(v) if v.is_integer() else v
    if isinstance(value, str):
        s = value.strip()
        if not s:
            return None
        try:
            return int(s)
        except ValueError:
            return s
    return value
