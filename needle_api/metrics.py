# =============================
# ======== metrics.py =========
# =============================
"""
KPI engine for cycle logs and operator sessions.

Pure functions: same inputs -> same outputs, no I/O, no clock. Every dashboard
surface (KPI cards, operator table, trend charts) goes through here.

Inputs:
- logs: raw cycle logs or logs already joined with metadata
  (joined logs carry `operator` / `supervisor` dicts with display names)
- sessions: records from machine_sessions.json, may be empty
- config: MetricConfig (machine count + shift length for utilization)

Percentages are 0..100 floats. Rules:
- review rate / OK rate / delay rate -> 0.0 when there are no logs
- credibility -> None ("not applicable") when nothing was reviewed
- response latency ignores pairs where scan <= press
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple
import logging

import numpy as np
import pandas as pd

from needle_api.config import SETTINGS
from needle_api.utils import local_day, normalize_id, to_epoch_ms

logger = logging.getLogger("needle.metrics")

MS_PER_HOUR = 3_600_000
STATUS_OK = "OK"
STATUS_DELAY = "DELAY"
CONFIRMED = "CONFIRMED"
NOT_CONFIRMED = "NOT_CONFIRMED"
REVIEWED = (CONFIRMED, NOT_CONFIRMED)


@dataclass(frozen=True)
class MetricConfig:
    machine_count: int = 8
    shift_hours: float = 8.0

    @classmethod
    def from_settings(cls) -> "MetricConfig":
        return cls(machine_count=SETTINGS.MACHINE_COUNT, shift_hours=SETTINGS.SHIFT_HOURS)

    @property
    def capacity_ms(self) -> float:
        return float(self.machine_count) * float(self.shift_hours) * MS_PER_HOUR


# ---------------- helpers ----------------

def _pct(num: float, den: float) -> float:
    return 100.0 * num / den if den else 0.0


def _rows(items: Optional[Iterable[Any]]) -> List[dict]:
    return [x for x in (items or []) if isinstance(x, dict)]


def logs_frame(logs: Iterable[dict]) -> pd.DataFrame:
    """One row per log with the columns the aggregates need."""
    rows = _rows(logs)
    return pd.DataFrame({
        "status": pd.Series([r.get("status") for r in rows], dtype=object),
        "confirmation": pd.Series([r.get("supervisor_confirmation") for r in rows], dtype=object),
        "press_ms": pd.Series([to_epoch_ms(r.get("operator_press_time")) for r in rows], dtype="float64"),
        "scan_ms": pd.Series([to_epoch_ms(r.get("supervisor_scan_time")) for r in rows], dtype="float64"),
    })


def operator_identity(log: dict) -> Optional[Tuple[Any, str]]:
    """(operator_id or None, display name) for a log, None when no operator."""
    op = log.get("operator") if isinstance(log.get("operator"), dict) else None
    op_id = normalize_id(log.get("operator_id"))
    if op_id is None and op is not None:
        op_id = normalize_id(op.get("operator_id"))
    name = op.get("name") if op else None
    if op_id is None and not name:
        return None
    return op_id, (name or f"ID {op_id}")


def supervisor_identity(log: dict) -> Optional[Tuple[Any, str]]:
    sup = log.get("supervisor") if isinstance(log.get("supervisor"), dict) else None
    sup_id = normalize_id(log.get("supervisor_id"))
    if sup_id is None and sup is not None:
        sup_id = normalize_id(sup.get("supervisor_id"))
    name = (sup.get("name") or sup.get("supervisor_name")) if sup else None
    if sup_id is None and not name:
        return None
    return sup_id, (name or f"ID {sup_id}")


# ---------------- per-log aggregates ----------------

def response_latency(logs: Iterable[dict]) -> Dict[str, Any]:
    """Average supervisor response (scan - press) in ms over valid pairs."""
    df = logs_frame(logs)
    delta = df["scan_ms"] - df["press_ms"]
    valid = delta[delta > 0]
    return {
        "avg_ms": float(valid.mean()) if len(valid) else None,
        "count": int(len(valid)),
    }


def review_stats(logs: Iterable[dict]) -> Dict[str, Any]:
    df = logs_frame(logs)
    total = len(df)
    confirmed = int((df["confirmation"] == CONFIRMED).sum())
    not_confirmed = int((df["confirmation"] == NOT_CONFIRMED).sum())
    reviewed = confirmed + not_confirmed
    return {
        "total": total,
        "reviewed": reviewed,
        "confirmed": confirmed,
        "not_confirmed": not_confirmed,
        "review_rate_pct": _pct(reviewed, total),
        # no reviews -> credibility has no meaning, not 0%
        "credibility_pct": _pct(confirmed, reviewed) if reviewed else None,
    }


def compliance(logs: Iterable[dict]) -> Dict[str, Any]:
    df = logs_frame(logs)
    total = len(df)
    ok = int((df["status"] == STATUS_OK).sum())
    delay = int((df["status"] == STATUS_DELAY).sum())
    return {
        "ok": ok,
        "delay": delay,
        "ok_rate_pct": _pct(ok, total),
        "delay_rate_pct": _pct(delay, total),
    }


# ---------------- session aggregates ----------------

def session_duration_ms(session: dict) -> float:
    """ended_at - started_at in ms; 0 when unparsable or negative."""
    start = to_epoch_ms(session.get("started_at"))
    end = to_epoch_ms(session.get("ended_at"))
    if start is None or end is None:
        return 0.0
    return max(end - start, 0.0)


def session_metrics(sessions: Optional[Iterable[dict]], config: Optional[MetricConfig] = None) -> Dict[str, Any]:
    config = config or MetricConfig.from_settings()
    rows = _rows(sessions)
    durations = np.array([session_duration_ms(s) for s in rows], dtype="float64")
    total_ms = float(durations.sum()) if durations.size else 0.0
    active = {normalize_id(s.get("operator_id")) for s in rows} - {None}
    capacity = config.capacity_ms
    return {
        "sessions": len(rows),
        "active_operators": len(active),
        "total_duration_ms": total_ms,
        "avg_work_ms": total_ms / len(active) if active else 0.0,
        "utilization_pct": (total_ms / capacity * 100.0) if capacity > 0 else 0.0,
        "machine_count": config.machine_count,
        "shift_hours": config.shift_hours,
    }


def working_time_by_operator(sessions: Optional[Iterable[dict]]) -> Dict[Any, float]:
    out: Dict[Any, float] = {}
    for s in _rows(sessions):
        op_id = normalize_id(s.get("operator_id"))
        if op_id is None:
            continue
        out[op_id] = out.get(op_id, 0.0) + session_duration_ms(s)
    return out


# ---------------- rollups ----------------

def operator_rollup(logs: Iterable[dict], sessions: Optional[Iterable[dict]] = None) -> List[Dict[str, Any]]:
    """Per-operator counters, ranked by total cycles (desc).

    Keyed by operator id; the display name is the key only for logs that
    carry no id at all, so one operator is never counted under two keys.
    """
    stats: Dict[Any, Dict[str, Any]] = {}
    for log in _rows(logs):
        ident = operator_identity(log)
        if ident is None:
            continue
        op_id, name = ident
        key = ("id", op_id) if op_id is not None else ("name", name)
        row = stats.get(key)
        if row is None:
            row = stats[key] = {"operator_id": op_id, "name": name, "total": 0, "ok": 0, "delay": 0, "confirmed": 0}
        elif row["name"].startswith("ID ") and not name.startswith("ID "):
            row["name"] = name
        row["total"] += 1
        row["ok"] += log.get("status") == STATUS_OK
        row["delay"] += log.get("status") == STATUS_DELAY
        row["confirmed"] += log.get("supervisor_confirmation") == CONFIRMED

    worked = working_time_by_operator(sessions)
    out = []
    for row in stats.values():
        ms = worked.get(row["operator_id"], 0.0) if row["operator_id"] is not None else 0.0
        out.append({**row, "working_time_ms": ms, "working_time": format_duration_hm(ms)})
    out.sort(key=lambda r: r["total"], reverse=True)
    return out


def supervisor_rollup(logs: Iterable[dict]) -> List[Dict[str, Any]]:
    """Reviewed-log count per supervisor, ranked (desc)."""
    stats: Dict[Any, Dict[str, Any]] = {}
    for log in _rows(logs):
        if log.get("supervisor_confirmation") not in REVIEWED:
            continue
        ident = supervisor_identity(log)
        if ident is None:
            continue
        sup_id, name = ident
        key = ("id", sup_id) if sup_id is not None else ("name", name)
        row = stats.setdefault(key, {"supervisor_id": sup_id, "name": name, "reviewed": 0})
        row["reviewed"] += 1
    return sorted(stats.values(), key=lambda r: r["reviewed"], reverse=True)


# ---------------- summaries ----------------

def summarize(
    logs: Iterable[dict],
    sessions: Optional[Iterable[dict]] = None,
    config: Optional[MetricConfig] = None,
) -> Dict[str, Any]:
    """Scalar KPIs for one window (no per-person tables)."""
    logs = _rows(logs)
    reviews = review_stats(logs)
    comp = compliance(logs)
    return {
        "total_logs": reviews["total"],
        "status_breakdown": {"ok": comp["ok"], "delay": comp["delay"]},
        "ok_rate_pct": comp["ok_rate_pct"],
        "delay_rate_pct": comp["delay_rate_pct"],
        "reviewed": reviews["reviewed"],
        "confirmed": reviews["confirmed"],
        "review_rate_pct": reviews["review_rate_pct"],
        "credibility_pct": reviews["credibility_pct"],
        "response": response_latency(logs),
        "session_metrics": session_metrics(sessions, config),
    }


def compute_kpis(
    logs: Iterable[dict],
    sessions: Optional[Iterable[dict]] = None,
    config: Optional[MetricConfig] = None,
) -> Dict[str, Any]:
    logs = _rows(logs)
    sessions = _rows(sessions)
    out = summarize(logs, sessions, config)
    operators = operator_rollup(logs, sessions)
    supervisors = supervisor_rollup(logs)
    out["operators"] = operators
    out["supervisors"] = supervisors
    out["top_operator"] = operators[0] if operators else None
    out["top_supervisor"] = supervisors[0] if supervisors else None
    logger.debug("kpis | logs=%d sessions=%d operators=%d", len(logs), len(sessions), len(operators))
    return out


PERIODS = ("day", "month")

def period_key(value: Any, period: str = "day") -> Optional[str]:
    day = local_day(value)
    if day is None:
        return None
    if period == "day":
        return day
    if period == "month":
        return day[:7]
    raise ValueError(f"Unsupported period: {period}")


def period_rollups(
    logs: Iterable[dict],
    sessions: Optional[Iterable[dict]] = None,
    config: Optional[MetricConfig] = None,
    period: str = "day",
) -> List[Dict[str, Any]]:
    """Same summary computed per calendar bucket, ascending by bucket.

    Logs bucket on cycle_start_time, sessions on started_at; entries without a
    usable timestamp are left out.
    """
    if period not in PERIODS:
        raise ValueError(f"Unsupported period: {period}")
    log_buckets: Dict[str, List[dict]] = {}
    for log in _rows(logs):
        key = period_key(log.get("cycle_start_time"), period)
        if key is not None:
            log_buckets.setdefault(key, []).append(log)
    session_buckets: Dict[str, List[dict]] = {}
    for s in _rows(sessions):
        key = period_key(s.get("started_at"), period)
        if key is not None:
            session_buckets.setdefault(key, []).append(s)

    out = []
    for key in sorted(set(log_buckets) | set(session_buckets)):
        point = summarize(log_buckets.get(key, []), session_buckets.get(key, []), config)
        out.append({"period": key, **point})
    return out


def daily_rollups(logs, sessions=None, config=None) -> List[Dict[str, Any]]:
    return period_rollups(logs, sessions, config, period="day")


# ---------------- display ----------------

def format_duration_hm(ms: Optional[float]) -> str:
    """'Xh Ym' (floored), as shown on the dashboard cards."""
    if not ms or ms <= 0:
        return "0h 0m"
    total_min = int(ms // 60_000)
    return f"{total_min // 60}h {total_min % 60}m"


def format_pct(value: Optional[float]) -> str:
    return "N/A" if value is None else f"{value:.1f}"
