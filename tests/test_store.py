import gc
import json
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

import pytest

from needle_api import db
from needle_api.errors import InvalidLogField, MissingRequiredField
from needle_api.metadata import MetadataCache
from needle_api.store import LogStore, SessionStore, next_log_id, sort_logs


FIXED_NOW = datetime(2024, 1, 1, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def store(data_root):
    return LogStore(data_root, metadata=MetadataCache(data_root), clock=lambda: FIXED_NOW)


def _log(machine_id=1, start="2024-01-01T08:00:00.000Z", **kw):
    return {"machine_id": machine_id, "operator_id": 7, "cycle_start_time": start,
            "cycle_end_time": "2024-01-01T08:10:00.000Z", "status": "OK", **kw}


def _read(path):
    return json.loads(path.read_text(encoding="utf-8"))


def test_append_to_empty_file(store, data_root):
    assert store.append(_log()) == 1
    path = data_root / "machine_1" / "2024-01-01.json"
    logs = _read(path)
    assert len(logs) == 1
    assert logs[0]["log_id"] == 1
    assert logs[0]["updated_at"] == "2024-01-01T09:30:00.000Z"
    assert logs[0]["operator_id"] == 7
    # file is a pretty-printed array
    assert path.read_text(encoding="utf-8").startswith("[\n  {")


def test_append_uses_max_plus_one(store, write_day):
    write_day(1, "2024-01-01", [{"log_id": 2}, {"log_id": 5}, {"log_id": 3}])
    assert store.append(_log()) == 6


def test_append_picks_day_from_cycle_start(store, data_root):
    store.append(_log(machine_id=2, start="2024-01-02T23:59:00.000Z"))
    assert (data_root / "machine_2" / "2024-01-02.json").exists()


def test_append_ids_are_per_file(store):
    assert store.append(_log(machine_id=1)) == 1
    assert store.append(_log(machine_id=2)) == 1
    assert store.append(_log(machine_id=1)) == 2


@pytest.mark.parametrize("bad", [
    {"machine_id": None},
    {"machine_id": ""},
    {"cycle_start_time": None},
])
def test_append_rejects_missing_fields(store, data_root, bad):
    with pytest.raises(MissingRequiredField):
        store.append({**_log(), **bad})
    assert not list(data_root.glob("machine_*/*.json"))


def test_append_rejects_unparsable_start(store, data_root):
    with pytest.raises(InvalidLogField):
        store.append(_log(start="yesterday-ish"))
    assert not list(data_root.glob("machine_*/*.json"))


def test_concurrent_appends_get_unique_ids(store, data_root):
    with ThreadPoolExecutor(max_workers=8) as pool:
        ids = list(pool.map(lambda _: store.append(_log()), range(20)))
    assert sorted(ids) == list(range(1, 21))
    assert len(_read(data_root / "machine_1" / "2024-01-01.json")) == 20


def test_next_log_id_ignores_junk():
    assert next_log_id([]) == 1
    assert next_log_id([{"log_id": None}, {"log_id": "9"}, "x", {"log_id": True}]) == 1
    assert next_log_id([{"log_id": 4}, {}]) == 5


def test_get_logs_over_machines_and_days(store, write_day):
    write_day(1, "2024-01-01", [_log(log_id=1)])
    write_day(1, "2024-01-03", [_log(log_id=1), _log(log_id=2)])
    write_day(2, "2024-01-02", [_log(machine_id=2, log_id=1)])
    write_day(1, "2024-01-09", [_log(log_id=1)])  # outside the window
    logs = store.get_logs("2024-01-01", "2024-01-03")
    assert len(logs) == 4


def test_get_logs_missing_and_corrupt_files_are_empty(store, write_day, data_root):
    write_day(1, "2024-01-01", [_log(log_id=1)])
    bad = data_root / "machine_2" / "2024-01-01.json"
    bad.parent.mkdir(parents=True)
    bad.write_text("{not json", encoding="utf-8")
    assert len(store.get_logs("2024-01-01", "2024-01-05")) == 1


def test_get_logs_invalid_window(store, write_day):
    write_day(1, "2024-01-01", [_log(log_id=1)])
    assert store.get_logs(None, None) == []
    assert store.get_logs("2024-01-02", "2024-01-01") == []


def test_scan_accepts_file_names(store, write_day):
    write_day(1, "2024-01-01", [_log(log_id=1)])
    assert len(store.scan([1, 2], ["2024-01-01.json"])) == 1
    assert len(store.scan([1, 2], ["2024-01-01"])) == 1
    assert store.scan([], ["2024-01-01"]) == []


def test_get_logs_needs_metadata(data_root):
    with pytest.raises(RuntimeError):
        LogStore(data_root).get_logs("2024-01-01", "2024-01-01")


def test_sort_logs_recent_first():
    logs = [
        {"log_id": 1, "cycle_start_time": "2024-01-01T08:00:00Z", "operator_press_time": "2024-01-01T08:01:00Z"},
        {"log_id": 2, "cycle_start_time": "2024-01-01T09:00:00Z"},
        {"log_id": 3, "cycle_start_time": "2024-01-01T08:00:00Z", "operator_press_time": "2024-01-01T08:05:00Z"},
        {"log_id": 4},
    ]
    assert [x["log_id"] for x in sort_logs(logs)] == [2, 3, 1, 4]


def _sessions(data_root, sessions):
    (data_root / "machine_sessions.json").write_text(json.dumps(sessions), encoding="utf-8")


def test_read_sessions_filters_by_started_at(data_root):
    _sessions(data_root, [
        {"session_id": 1, "started_at": "2024-01-03T23:59:59.999Z"},
        {"session_id": 2, "started_at": "2024-01-01T00:00:00.000Z"},
        {"session_id": 3, "started_at": "2024-01-04T00:00:00.000Z"},
        {"session_id": 4, "started_at": None},
    ])
    ss = SessionStore(data_root)
    assert [s["session_id"] for s in ss.read_sessions("2024-01-01", "2024-01-03")] == [1, 2]
    assert len(ss.read_sessions()) == 4
    assert ss.read_sessions("2024-01-03", "2024-01-01") == []


def test_read_sessions_missing_or_corrupt(data_root):
    ss = SessionStore(data_root)
    assert ss.read_sessions("2024-01-01", "2024-01-03") == []
    (data_root / "machine_sessions.json").write_text("oops", encoding="utf-8")
    assert ss.read_sessions() == []


def test_read_sessions_last_calendar_day(data_root):
    _sessions(data_root, [
        {"session_id": 1, "started_at": "9999-12-31T08:00:00.000Z"},
        {"session_id": 2, "started_at": "2024-01-01T08:00:00.000Z"},
    ])
    ss = SessionStore(data_root)
    assert [s["session_id"] for s in ss.read_sessions("9999-12-30", "9999-12-31")] == [1]


@pytest.mark.parametrize("machine_id", ["A1", "../x", "../..", 0, -3, 1.5, True])
def test_append_rejects_unusable_machine_ids(store, data_root, machine_id):
    with pytest.raises(InvalidLogField):
        store.append(_log(machine_id=machine_id))
    # nothing but the metadata tables, nothing outside data_root
    assert sorted(p.name for p in data_root.iterdir()) == ["machines.json", "operators.json", "supervisors.json"]
    assert not list(data_root.parent.glob("*.json"))


def test_append_folds_numeric_machine_id(store, data_root):
    assert store.append(_log(machine_id="2")) == 1
    logs = _read(data_root / "machine_2" / "2024-01-01.json")
    assert logs[0]["machine_id"] == 2


def test_scan_propagates_os_errors(store, data_root):
    # a directory where the day-file should be: neither a miss nor bad JSON
    (data_root / "machine_1" / "2024-01-01.json").mkdir(parents=True)
    with pytest.raises(IsADirectoryError):
        store.get_logs("2024-01-01", "2024-01-01")


def test_file_lock_shared_while_held_then_released(data_root):
    path = data_root / "machine_1" / "2024-01-01.json"
    key = str(path.resolve())
    lock = db.file_lock(path)
    assert db.file_lock(path) is lock
    with lock:
        assert key in db._LOCKS
    del lock
    gc.collect()
    assert key not in db._LOCKS
