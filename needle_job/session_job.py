"""
session_job.py

Operator session rebuild:
- Walk every <data_root>/machine_<id>/*.json day-file
- Inside each file, group logs by operator_id (logs without one are ignored)
- One session per (file, operator): started_at = earliest cycle_start_time,
  ended_at = latest cycle_end_time, last_heartbeat = ended_at
- Sort all sessions by started_at desc and overwrite machine_sessions.json

session_id comes from a counter over the whole run, so ids change between
runs. The output is a cache: delete it and re-run to get it back.

Run on a schedule (cron / Task Scheduler) or by hand:
    python -m needle_job.session_job --data-root ./data
"""
from __future__ import annotations
import argparse
import logging
import re
import sys
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

import pandas as pd

from needle_api.config import SETTINGS
from needle_api.db import read_json_list, write_json_atomic
from needle_api.errors import FileParseFailure
from needle_api.metadata import MetadataCache, badge_map
from needle_api.store import SESSIONS_FILE
from needle_api.utils import normalize_id, to_epoch_ms

logger = logging.getLogger("needle.job.sessions")

UNKNOWN_BADGE = "UNKNOWN"
_MACHINE_DIR = re.compile(r"^machine_(\d+)$")

# ============================================================
# DISCOVERY
# ============================================================
def iter_machine_dirs(data_root: Path) -> Iterator[Tuple[int, Path]]:
    """(machine_id, dir) for every machine_<int> folder, by machine id."""
    if not data_root.is_dir():
        return
    found = []
    for p in data_root.iterdir():
        m = _MACHINE_DIR.match(p.name)
        if m and p.is_dir():
            found.append((int(m.group(1)), p))
    yield from sorted(found)


def iter_day_files(data_root: Path) -> Iterator[Tuple[int, Path]]:
    for machine_id, mdir in iter_machine_dirs(data_root):
        for f in sorted(mdir.glob("*.json")):
            yield machine_id, f

# ============================================================
# GROUP LOGS -> SESSIONS
# ============================================================
def _pick(g: pd.DataFrame, ms_col: str, raw_col: str, largest: bool) -> Any:
    valid = g.dropna(subset=[ms_col])
    if valid.empty:
        return None
    idx = valid[ms_col].idxmax() if largest else valid[ms_col].idxmin()
    v = valid.at[idx, raw_col]
    # epoch numbers come back as numpy scalars
    return v.item() if hasattr(v, "item") else v


def sessions_for_file(machine_id: int, logs: List[dict], badges: Dict[str, str]) -> List[dict]:
    """
    Sessions (without session_id) for one day-file, in first-seen operator order.
    started_at / ended_at keep the original timestamp strings.
    """
    rows = [log for log in logs if isinstance(log, dict) and normalize_id(log.get("operator_id")) is not None]
    if not rows:
        return []

    df = pd.DataFrame({
        "operator_id": [normalize_id(log.get("operator_id")) for log in rows],
        "start_raw": [log.get("cycle_start_time") for log in rows],
        "end_raw": [log.get("cycle_end_time") for log in rows],
    })
    df["start_ms"] = pd.to_numeric(df["start_raw"].map(to_epoch_ms), errors="coerce")
    df["end_ms"] = pd.to_numeric(df["end_raw"].map(to_epoch_ms), errors="coerce")

    out = []
    for op_id, g in df.groupby("operator_id", sort=False):
        op_id = normalize_id(op_id)
        ended_at = _pick(g, "end_ms", "end_raw", largest=True)
        out.append({
            "machine_id": machine_id,
            "operator_id": op_id,
            "badge": badges.get(str(op_id)) or UNKNOWN_BADGE,
            "started_at": _pick(g, "start_ms", "start_raw", largest=False),
            "ended_at": ended_at,
            "last_heartbeat": ended_at,
        })
    return out


def _started_key(session: dict) -> tuple:
    ms = to_epoch_ms(session.get("started_at"))
    return (0, 0.0) if ms is None else (1, ms)


def generate_sessions(data_root: Path, operators: Optional[List[dict]] = None) -> List[dict]:
    """Full pass over every day-file; returns sessions sorted by started_at desc."""
    data_root = Path(data_root)
    if operators is None:
        operators = MetadataCache(data_root).get_operators()
    badges = badge_map(operators)

    sessions: List[dict] = []
    next_id = 1
    files = skipped = 0
    for machine_id, path in iter_day_files(data_root):
        files += 1
        try:
            logs = read_json_list(path)
        except FileParseFailure as e:
            skipped += 1
            logger.warning("skip unreadable day-file: %s", e)
            continue
        for s in sessions_for_file(machine_id, logs, badges):
            sessions.append({"session_id": next_id, **s})
            next_id += 1

    # None started_at sorts last
    sessions.sort(key=_started_key, reverse=True)
    logger.info("Generated %d sessions from %d files (%d skipped)", len(sessions), files, skipped)
    return sessions


def write_sessions(data_root: Path, sessions: List[dict]) -> Path:
    path = Path(data_root) / SESSIONS_FILE
    write_json_atomic(path, sessions)
    logger.info("Wrote %s", path)
    return path


def run(data_root: Path) -> int:
    sessions = generate_sessions(data_root)
    write_sessions(data_root, sessions)
    return len(sessions)

# ============================================================
# MAIN
# ============================================================
def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Rebuild machine_sessions.json from the day-files.")
    parser.add_argument("--data-root", default=SETTINGS.DATA_PATH, help="Data folder (default: DATA_PATH)")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [session_job] %(levelname)s: %(message)s",
    )
    try:
        n = run(Path(args.data_root))
        logger.info("session_job finished (%d sessions).", n)
        return 0
    except Exception as e:
        logger.exception("Unhandled exception in session_job: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
