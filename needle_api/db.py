# db.py
"""
Flat-file "database": JSON arrays on disk.
- read_json_list(path): strict read, FileNotFoundError -> [], bad JSON -> FileParseFailure
- read_json_lenient(path): same, but a parse failure is logged and treated as a miss
- write_json_atomic(path, data): temp file in the same folder + os.replace
- file_lock(path): in-process lock per file path (serialises read-modify-write)
"""
from __future__ import annotations
from pathlib import Path
from typing import Any, Union
import contextlib
import json
import logging
import os
import tempfile
import threading
import weakref

from needle_api.errors import FileParseFailure

logger = logging.getLogger("needle.db")

PathLike = Union[str, Path]

# ---------- Reads ----------

def read_json_list(path: PathLike) -> list:
    """Return the JSON array stored at `path`; a missing file is an empty array."""
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        return []
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise FileParseFailure(path, e) from e
    if not isinstance(data, list):
        raise FileParseFailure(path, f"expected a JSON array, got {type(data).__name__}")
    return data


def read_json_lenient(path: PathLike) -> list:
    try:
        return read_json_list(path)
    except FileParseFailure as e:
        logger.warning("treating unreadable file as empty: %s", e)
        return []

# ---------- Writes ----------

def write_json_atomic(path: PathLike, data: Any) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        os.replace(tmp, path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp)
        raise
    logger.debug("wrote %s", path)

# ---------- Locks ----------

class PathLock:
    """Context-manager lock for one file path (weak-referenceable, unlike threading.Lock)."""
    __slots__ = ("_lock", "__weakref__")

    def __init__(self):
        self._lock = threading.Lock()

    def __enter__(self) -> "PathLock":
        self._lock.acquire()
        return self

    def __exit__(self, *exc) -> None:
        self._lock.release()


# entries vanish once no caller holds the lock object
_LOCKS: "weakref.WeakValueDictionary[str, PathLock]" = weakref.WeakValueDictionary()
_LOCKS_GUARD = threading.Lock()

def file_lock(path: PathLike) -> PathLock:
    """Same lock object for the same resolved path while anyone holds it.

    Only covers writers inside this process; another process writing the same
    day-file can still interleave with us.
    """
    key = str(Path(path).resolve())
    with _LOCKS_GUARD:
        lock = _LOCKS.get(key)
        if lock is None:
            lock = _LOCKS[key] = PathLock()
        return lock
