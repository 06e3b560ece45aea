"""
Metadata cache for the reference tables (machines / operators / supervisors).

One explicit cache object, handed to whoever needs it:
- snapshot is loaded from <data_root>/{machines,operators,supervisors}.json
- refreshed at most once per `ttl_sec` (default 1 hour), checked on read
- `clock` is injectable (seconds, monotonic) so staleness is testable
- CRUD helpers rewrite the whole table file, then update the snapshot
"""
from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple
import copy
import logging
import threading
import time

from needle_api.config import SETTINGS
from needle_api.db import read_json_list, write_json_atomic, file_lock
from needle_api.errors import (
    DuplicateRecord,
    FileParseFailure,
    MissingRequiredField,
    RecordNotFound,
)

logger = logging.getLogger("needle.metadata")


@dataclass(frozen=True)
class TableSpec:
    file_name: str
    id_field: str
    required: Tuple[str, ...]
    editable: Tuple[str, ...]


TABLES: Dict[str, TableSpec] = {
    "machines": TableSpec("machines.json", "machine_id", ("machine_id", "code"), ("code",)),
    "operators": TableSpec("operators.json", "operator_id", ("operator_id", "name"), ("name", "badge")),
    "supervisors": TableSpec(
        "supervisors.json", "supervisor_id", ("supervisor_id", "supervisor_name"), ("supervisor_name", "badge")
    ),
}


def _same_id(a: Any, b: Any) -> bool:
    return str(a) == str(b)


class MetadataCache:
    def __init__(
        self,
        data_root: Optional[str | Path] = None,
        ttl_sec: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.data_root = Path(data_root or SETTINGS.DATA_PATH)
        self.ttl_sec = float(SETTINGS.METADATA_TTL_SEC if ttl_sec is None else ttl_sec)
        self._clock = clock
        self._snapshot: Dict[str, List[dict]] = {kind: [] for kind in TABLES}
        self._loaded_at: Optional[float] = None
        self._lock = threading.RLock()

    # ---------- cache control ----------

    def is_stale(self) -> bool:
        if self._loaded_at is None:
            return True
        return (self._clock() - self._loaded_at) >= self.ttl_sec

    def invalidate(self) -> None:
        with self._lock:
            self._loaded_at = None

    def refresh(self) -> None:
        """Reload all three tables. On failure the previous snapshot is kept."""
        with self._lock:
            try:
                fresh = {kind: self._read_table(kind) for kind in TABLES}
            except FileParseFailure as e:
                logger.error("metadata reload failed, keeping previous snapshot: %s", e)
                # avoid hammering a broken file on every request
                self._loaded_at = self._clock()
                return
            self._snapshot = fresh
            self._loaded_at = self._clock()
            logger.info(
                "metadata loaded | machines=%d operators=%d supervisors=%d",
                len(fresh["machines"]), len(fresh["operators"]), len(fresh["supervisors"]),
            )

    def refresh_if_stale(self) -> bool:
        with self._lock:
            if not self.is_stale():
                return False
            self.refresh()
            return True

    # ---------- reads ----------

    def get(self, kind: str) -> List[dict]:
        if kind not in TABLES:
            raise KeyError(kind)
        self.refresh_if_stale()
        return self._snapshot[kind]

    def get_machines(self) -> List[dict]:
        return self.get("machines")

    def get_operators(self) -> List[dict]:
        return self.get("operators")

    def get_supervisors(self) -> List[dict]:
        return self.get("supervisors")

    def find(self, kind: str, record_id: Any) -> Optional[dict]:
        id_field = TABLES[kind].id_field
        for rec in self.get(kind):
            if _same_id(rec.get(id_field), record_id):
                return rec
        return None

    # ---------- CRUD (whole-file read/modify/write) ----------

    def add(self, kind: str, record: dict) -> dict:
        table = TABLES[kind]
        missing = [f for f in table.required if record.get(f) in (None, "")]
        if missing:
            raise MissingRequiredField(*missing)
        with file_lock(self._path(kind)):
            rows = self._read_table(kind)
            if any(_same_id(r.get(table.id_field), record[table.id_field]) for r in rows):
                raise DuplicateRecord(kind, record[table.id_field])
            new_rec = dict(record)
            rows.append(new_rec)
            self._save(kind, rows)
        logger.info("%s: added id=%s", kind, new_rec[table.id_field])
        return new_rec

    def update(self, kind: str, record_id: Any, fields: dict) -> dict:
        table = TABLES[kind]
        with file_lock(self._path(kind)):
            rows = self._read_table(kind)
            for i, r in enumerate(rows):
                if _same_id(r.get(table.id_field), record_id):
                    changes = {k: fields.get(k) for k in table.editable if k in fields}
                    rows[i] = {**r, **changes}
                    self._save(kind, rows)
                    logger.info("%s: updated id=%s fields=%s", kind, record_id, sorted(changes))
                    return rows[i]
        raise RecordNotFound(kind, record_id)

    def delete(self, kind: str, record_id: Any) -> None:
        table = TABLES[kind]
        with file_lock(self._path(kind)):
            rows = self._read_table(kind)
            kept = [r for r in rows if not _same_id(r.get(table.id_field), record_id)]
            if len(kept) == len(rows):
                raise RecordNotFound(kind, record_id)
            self._save(kind, kept)
        logger.info("%s: deleted id=%s", kind, record_id)

    # ---------- internals ----------

    def _path(self, kind: str) -> Path:
        return self.data_root / TABLES[kind].file_name

    def _read_table(self, kind: str) -> List[dict]:
        return [r for r in read_json_list(self._path(kind)) if isinstance(r, dict)]

    def _save(self, kind: str, rows: List[dict]) -> None:
        write_json_atomic(self._path(kind), rows)
        with self._lock:
            self._snapshot[kind] = copy.deepcopy(rows)


def badge_map(operators: List[dict]) -> Dict[Any, str]:
    """operator_id -> badge, ids folded to str so 7 and "7" match."""
    return {str(o.get("operator_id")): o.get("badge") for o in operators if isinstance(o, dict)}
