# =============================
# ======== queries.py =========
# =============================
"""
Query orchestration:
- Resolves the window (explicit dates or the bounded default)
- Reads logs + sessions concurrently, waits for both
- Joins operator / supervisor names onto raw logs
- Sorts for presentation
- Calls the metric engine and shapes payloads for the API
"""
from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
import asyncio
import logging

from starlette.concurrency import run_in_threadpool

from needle_api.config import SETTINGS
from needle_api.dates import default_date_window
from needle_api.metadata import MetadataCache
from needle_api.metrics import MetricConfig, compute_kpis, period_rollups
from needle_api.store import LogStore, SessionStore, sort_logs
from needle_api.utils import normalize_id

logger = logging.getLogger("needle.queries")


@dataclass
class AppContext:
    """Everything a request needs, built once per data root."""
    data_root: Path
    metadata: MetadataCache
    logs: LogStore
    sessions: SessionStore
    metric_config: MetricConfig = field(default_factory=MetricConfig.from_settings)

    @classmethod
    def build(cls, data_root: Optional[str | Path] = None, metric_config: Optional[MetricConfig] = None,
              **metadata_kwargs) -> "AppContext":
        root = Path(data_root or SETTINGS.DATA_PATH)
        metadata = MetadataCache(root, **metadata_kwargs)
        return cls(
            data_root=root,
            metadata=metadata,
            logs=LogStore(root, metadata=metadata),
            sessions=SessionStore(root),
            metric_config=metric_config or MetricConfig.from_settings(),
        )


def resolve_window(start_date: Optional[str], end_date: Optional[str]) -> Tuple[str, str]:
    """Missing ends fall back to the default window (last N days through today)."""
    default_start, default_end = default_date_window()
    return start_date or default_start, end_date or default_end


# ---------------- join ----------------

def _index(rows: List[dict], id_field: str) -> Dict[str, dict]:
    return {str(r.get(id_field)): r for r in rows if isinstance(r, dict) and r.get(id_field) is not None}


def join_metadata(logs: List[dict], operators: List[dict], supervisors: List[dict]) -> List[dict]:
    """Attach display names; keep the raw ids next to them."""
    ops = _index(operators, "operator_id")
    sups = _index(supervisors, "supervisor_id")
    out = []
    for log in logs:
        op_id = normalize_id(log.get("operator_id"))
        sup_id = normalize_id(log.get("supervisor_id"))
        op = ops.get(str(op_id)) if op_id is not None else None
        sup = sups.get(str(sup_id)) if sup_id is not None else None
        out.append({
            "log_id": log.get("log_id"),
            "machine": log.get("machine_id"),
            "operator_id": op_id,
            "supervisor_id": sup_id,
            "operator": {"operator_id": op_id, "name": op.get("name"), "badge": op.get("badge")} if op else None,
            "supervisor": (
                {"supervisor_id": sup_id, "name": sup.get("supervisor_name"), "badge": sup.get("badge")}
                if sup else None
            ),
            "color": log.get("color"),
            "status": log.get("status"),
            "operator_press_time": log.get("operator_press_time"),
            "supervisor_confirmation": log.get("supervisor_confirmation"),
            "supervisor_scan_time": log.get("supervisor_scan_time"),
            "cycle_start_time": log.get("cycle_start_time"),
            "cycle_end_time": log.get("cycle_end_time"),
        })
    return out


# ---------------- reads ----------------

def load_logs(ctx: AppContext, start_date: str, end_date: str, machines: Optional[List[int]] = None) -> List[dict]:
    raw = ctx.logs.get_logs(start_date, end_date)
    if machines:
        wanted = {str(m) for m in machines}
        raw = [log for log in raw if str(log.get("machine_id")) in wanted]
    joined = join_metadata(raw, ctx.metadata.get_operators(), ctx.metadata.get_supervisors())
    return sort_logs(joined)


async def fetch_logs_and_sessions(
    ctx: AppContext, start_date: str, end_date: str, machines: Optional[List[int]] = None
) -> Tuple[List[dict], List[dict]]:
    logs, sessions = await asyncio.gather(
        run_in_threadpool(load_logs, ctx, start_date, end_date, machines),
        run_in_threadpool(ctx.sessions.read_sessions, start_date, end_date),
    )
    if machines:
        wanted = {str(m) for m in machines}
        sessions = [s for s in sessions if str(s.get("machine_id")) in wanted]
    return logs, sessions


# ---------------- payloads ----------------

async def build_logs_payload(ctx: AppContext, start_date: Optional[str], end_date: Optional[str],
                             machines: Optional[List[int]] = None) -> List[dict]:
    start_date, end_date = resolve_window(start_date, end_date)
    logs = await run_in_threadpool(load_logs, ctx, start_date, end_date, machines)
    logger.info("logs | %s .. %s machines=%s -> %d", start_date, end_date, machines or "ALL", len(logs))
    return logs


async def build_sessions_payload(ctx: AppContext, start_date: Optional[str], end_date: Optional[str]) -> List[dict]:
    # no window -> whole sessions file (it is a small derived cache)
    sessions = await run_in_threadpool(ctx.sessions.read_sessions, start_date, end_date)
    logger.info("sessions | %s .. %s -> %d", start_date, end_date, len(sessions))
    return sessions


async def build_kpi_payload(ctx: AppContext, start_date: Optional[str], end_date: Optional[str],
                            machines: Optional[List[int]] = None) -> Dict[str, Any]:
    start_date, end_date = resolve_window(start_date, end_date)
    logs, sessions = await fetch_logs_and_sessions(ctx, start_date, end_date, machines)
    kpis = compute_kpis(logs, sessions, ctx.metric_config)
    logger.info("kpi | %s .. %s logs=%d sessions=%d", start_date, end_date, len(logs), len(sessions))
    return {"meta": {"start_date": start_date, "end_date": end_date}, **kpis}


async def build_stats_payload(ctx: AppContext, start_date: Optional[str], end_date: Optional[str],
                              period: str = "day", machines: Optional[List[int]] = None) -> Dict[str, Any]:
    start_date, end_date = resolve_window(start_date, end_date)
    logs, sessions = await fetch_logs_and_sessions(ctx, start_date, end_date, machines)
    points = period_rollups(logs, sessions, ctx.metric_config, period=period)
    logger.info("stats | %s .. %s period=%s -> points=%d", start_date, end_date, period, len(points))
    return {"meta": {"start_date": start_date, "end_date": end_date, "period": period}, "points": points}
