"""
Log store: one JSON array per machine per day.

    <data_root>/machine_<machine_id>/<YYYY-MM-DD>.json

- append(log): validate, pick the day-file from cycle_start_time, assign
  log_id = 1 + max(existing) (or 1), stamp updated_at, rewrite the file.
- scan(machines, days): read every (machine, day) pair, fan-out per machine on
  a thread pool, flatten. Missing files contribute nothing.
- get_logs(start, end): resolve days, enumerate machines from metadata, scan.

log_id is only unique inside its own file. Across the archive a log is
identified by (machine_id, day, log_id).

The session store reads the consolidated `machine_sessions.json` written by
the session job.
"""
from __future__ import annotations
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, List, Optional
import logging

from needle_api.config import SETTINGS
from needle_api.dates import day_file_name, parse_date_range, resolve_files
from needle_api.db import file_lock, read_json_lenient, write_json_atomic
from needle_api.errors import InvalidDateRange, InvalidLogField, MissingRequiredField
from needle_api.metadata import MetadataCache
from needle_api.utils import local_day, normalize_id, now_utc, parse_timestamp, to_epoch_ms, to_utc_iso

logger = logging.getLogger("needle.store")

SESSIONS_FILE = "machine_sessions.json"
MACHINE_DIR_PREFIX = "machine_"


def machine_dir_name(machine_id: Any) -> str:
    return f"{MACHINE_DIR_PREFIX}{machine_id}"


def normalize_machine_id(value: Any) -> Optional[int]:
    """Positive integer machine id, or None. The id becomes a folder name
    (machine_<id>), so anything else is refused."""
    v = normalize_id(value)
    if isinstance(v, int) and not isinstance(v, bool) and v > 0:
        return v
    return None


def next_log_id(logs: Iterable[dict]) -> int:
    ids = []
    for log in logs:
        if not isinstance(log, dict):
            continue
        v = log.get("log_id")
        if isinstance(v, bool):
            continue
        if isinstance(v, (int, float)):
            ids.append(int(v))
    return max(ids) + 1 if ids else 1


class LogStore:
    def __init__(
        self,
        data_root: Optional[str | Path] = None,
        metadata: Optional[MetadataCache] = None,
        clock: Callable[[], datetime] = now_utc,
        max_workers: Optional[int] = None,
    ):
        self.data_root = Path(data_root or SETTINGS.DATA_PATH)
        self.metadata = metadata
        self._clock = clock
        self.max_workers = max_workers or SETTINGS.SCAN_MAX_WORKERS

    # ---------- paths ----------

    def machine_dir(self, machine_id: Any) -> Path:
        return self.data_root / machine_dir_name(machine_id)

    def day_file(self, machine_id: Any, day: str) -> Path:
        return self.machine_dir(machine_id) / day_file_name(day)

    # ---------- write ----------

    def append(self, log: dict) -> int:
        """Append one cycle log to its machine-day file and return its log_id."""
        raw_machine = log.get("machine_id")
        start = log.get("cycle_start_time")
        missing = [name for name, v in (("machine_id", raw_machine), ("cycle_start_time", start)) if v in (None, "")]
        if missing:
            raise MissingRequiredField(*missing)
        machine_id = normalize_machine_id(raw_machine)
        if machine_id is None:
            raise InvalidLogField("machine_id", raw_machine)
        day = local_day(start)
        if day is None:
            raise InvalidLogField("cycle_start_time", start)

        path = self.day_file(machine_id, day)
        path.parent.mkdir(parents=True, exist_ok=True)

        with file_lock(path):
            logs = read_json_lenient(path)
            log_id = next_log_id(logs)
            new_log = {**log, "machine_id": machine_id, "log_id": log_id, "updated_at": to_utc_iso(self._clock())}
            logs.append(new_log)
            write_json_atomic(path, logs)

        logger.info("append | machine=%s day=%s log_id=%s", machine_id, day, log_id)
        return log_id

    # ---------- read ----------

    def read_day(self, machine_id: Any, day_file: str) -> List[dict]:
        path = self.machine_dir(machine_id) / day_file
        return [x for x in read_json_lenient(path) if isinstance(x, dict)]

    def _read_machine(self, machine_id: Any, file_names: List[str]) -> List[dict]:
        out: List[dict] = []
        for name in file_names:
            out.extend(self.read_day(machine_id, name))
        return out

    def scan(self, machine_ids: Iterable[Any], file_names: Iterable[str]) -> List[dict]:
        """Read every (machine, file) pair; unordered, flattened result.

        `file_names` are day names ('YYYY-MM-DD') or day-file names
        ('YYYY-MM-DD.json').
        """
        machine_ids = list(machine_ids)
        names = [n if n.endswith(".json") else day_file_name(n) for n in file_names]
        if not machine_ids or not names:
            return []

        workers = max(1, min(self.max_workers, len(machine_ids)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="logscan") as pool:
            futures = [pool.submit(self._read_machine, mid, names) for mid in machine_ids]
            # result() re-raises anything that is not a miss / parse failure
            groups = [f.result() for f in futures]

        logs = [log for group in groups for log in group]
        logger.info("scan | machines=%d files=%d -> logs=%d", len(machine_ids), len(names), len(logs))
        return logs

    def get_logs(self, start_date: Optional[str], end_date: Optional[str]) -> List[dict]:
        days = resolve_files(start_date, end_date)
        if not days:
            return []
        if self.metadata is None:
            raise RuntimeError("LogStore.get_logs needs a MetadataCache to enumerate machines")
        machine_ids = [m.get("machine_id") for m in self.metadata.get_machines() if m.get("machine_id") is not None]
        return self.scan(machine_ids, days)


def _sort_key(value: Any) -> tuple:
    ms = to_epoch_ms(value)
    return (0, 0.0) if ms is None else (1, ms)


def sort_logs(logs: Iterable[dict]) -> List[dict]:
    """Most recent first: cycle_start_time desc, then operator_press_time desc.

    Stable for ties; logs without timestamps go last.
    """
    return sorted(
        logs,
        key=lambda log: (_sort_key(log.get("cycle_start_time")), _sort_key(log.get("operator_press_time"))),
        reverse=True,
    )


class SessionStore:
    """Read side of the consolidated sessions file (a rebuildable cache)."""

    def __init__(self, data_root: Optional[str | Path] = None):
        self.data_root = Path(data_root or SETTINGS.DATA_PATH)

    @property
    def path(self) -> Path:
        return self.data_root / SESSIONS_FILE

    def read_sessions(self, start_date: Optional[str] = None, end_date: Optional[str] = None) -> List[dict]:
        sessions = [s for s in read_json_lenient(self.path) if isinstance(s, dict)]
        if not (start_date and end_date):
            return sessions
        try:
            start, end = parse_date_range(start_date, end_date)
        except InvalidDateRange as e:
            logger.warning("read_sessions: %s -> no sessions", e)
            return []

        out = []
        for s in sessions:
            started = parse_timestamp(s.get("started_at"))
            # compare local calendar days, end inclusive
            if started is not None and start <= started.date() <= end:
                out.append(s)
        return out
