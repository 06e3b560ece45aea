# tests/test_contract.py
"""
HTTP contract of the dashboard API:
- create -> list round trip, 400 on missing fields
- windows with no files -> [] (never an error)
- KPI / stats payload shape, null credibility when nothing reviewed
- metadata CRUD status codes
"""
import json

import pytest
from fastapi.testclient import TestClient

from needle_api.config import SETTINGS

WINDOW = {"startDate": "2024-01-01", "endDate": "2024-01-01"}

NEW_LOG = {
    "machine": 1,
    "operator": 7,
    "supervisor": 2,
    "color": "RED",
    "status": "OK",
    "operator_press_time": "2024-01-01T08:09:30.000Z",
    "cycle_start_time": "2024-01-01T08:00:00.000Z",
    "cycle_end_time": "2024-01-01T08:10:00.000Z",
}


def test_create_then_list(client: TestClient):
    r = client.post("/api/logs", json=NEW_LOG)
    assert r.status_code == 201
    assert r.json() == {"id": 1}

    r = client.get("/api/logs", params=WINDOW)
    assert r.status_code == 200
    logs = r.json()
    assert len(logs) == 1
    log = logs[0]
    assert log["log_id"] == 1
    assert log["machine"] == 1
    assert log["operator"] == {"operator_id": 7, "name": "Alice", "badge": "B-007"}
    assert log["supervisor"] == {"supervisor_id": 2, "name": "Sup Two", "badge": "200200200"}
    assert log["supervisor_confirmation"] is None


def test_create_keeps_extra_fields(client: TestClient, data_root):
    r = client.post("/api/logs", json={**NEW_LOG, "needle_type": "DBx1"})
    assert r.status_code == 201
    stored = json.loads((data_root / "machine_1" / "2024-01-01.json").read_text(encoding="utf-8"))
    assert stored[0]["needle_type"] == "DBx1"
    assert stored[0]["machine_id"] == 1
    assert stored[0]["updated_at"].endswith("Z")


@pytest.mark.parametrize("missing", ["machine", "cycle_start_time", "cycle_end_time"])
def test_create_missing_fields(client: TestClient, data_root, missing):
    body = {k: v for k, v in NEW_LOG.items() if k != missing}
    r = client.post("/api/logs", json=body)
    assert r.status_code == 400
    assert "Missing required fields" in r.json()["detail"]
    assert not list(data_root.glob("machine_*/*.json"))


def test_create_bad_start_time(client: TestClient):
    r = client.post("/api/logs", json={**NEW_LOG, "cycle_start_time": "soon"})
    assert r.status_code == 400


def test_list_sorted_and_filtered(client: TestClient):
    client.post("/api/logs", json=NEW_LOG)
    client.post("/api/logs", json={**NEW_LOG, "cycle_start_time": "2024-01-01T09:00:00.000Z"})
    client.post("/api/logs", json={**NEW_LOG, "machine": 2, "cycle_start_time": "2024-01-01T10:00:00.000Z"})

    logs = client.get("/api/logs", params=WINDOW).json()
    assert [x["cycle_start_time"] for x in logs] == [
        "2024-01-01T10:00:00.000Z",
        "2024-01-01T09:00:00.000Z",
        "2024-01-01T08:00:00.000Z",
    ]
    only_1 = client.get("/api/logs", params={**WINDOW, "machines": "1"}).json()
    assert {x["machine"] for x in only_1} == {1}


def test_window_without_files_is_empty(client: TestClient):
    r = client.get("/api/logs", params={"startDate": "2030-01-01", "endDate": "2030-01-31"})
    assert r.status_code == 200
    assert r.json() == []
    r = client.get("/api/logs", params={"startDate": "2024-01-05", "endDate": "2024-01-01"})
    assert r.status_code == 200
    assert r.json() == []


def test_default_window(client: TestClient):
    r = client.get("/api/logs")
    assert r.status_code == 200
    assert isinstance(r.json(), list)


def test_sessions_both_paths(client: TestClient, data_root):
    sessions = [
        {"session_id": 1, "machine_id": 1, "operator_id": 7, "badge": "B-007",
         "started_at": "2024-01-01T08:00:00.000Z", "ended_at": "2024-01-01T12:00:00.000Z",
         "last_heartbeat": "2024-01-01T12:00:00.000Z"},
        {"session_id": 2, "machine_id": 2, "operator_id": 8, "badge": "B-008",
         "started_at": "2024-02-01T08:00:00.000Z", "ended_at": "2024-02-01T09:00:00.000Z",
         "last_heartbeat": "2024-02-01T09:00:00.000Z"},
    ]
    (data_root / "machine_sessions.json").write_text(json.dumps(sessions), encoding="utf-8")
    for path in ("/api/logs/sessions", "/api/sessions"):
        r = client.get(path, params=WINDOW)
        assert r.status_code == 200
        assert [s["session_id"] for s in r.json()] == [1]
    assert len(client.get("/api/sessions").json()) == 2


def test_sessions_missing_file(client: TestClient):
    r = client.get("/api/sessions", params=WINDOW)
    assert r.status_code == 200
    assert r.json() == []


def test_kpi_payload(client: TestClient, data_root):
    client.post("/api/logs", json=NEW_LOG)
    client.post("/api/logs", json={**NEW_LOG, "status": "DELAY", "operator": 8})
    (data_root / "machine_sessions.json").write_text(json.dumps([
        {"session_id": 1, "machine_id": 1, "operator_id": 7,
         "started_at": "2024-01-01T08:00:00.000Z", "ended_at": "2024-01-01T12:00:00.000Z"},
    ]), encoding="utf-8")

    r = client.get("/api/kpi", params=WINDOW)
    assert r.status_code == 200
    k = r.json()
    assert k["meta"] == {"start_date": "2024-01-01", "end_date": "2024-01-01"}
    assert k["total_logs"] == 2
    assert k["status_breakdown"] == {"ok": 1, "delay": 1}
    assert k["ok_rate_pct"] == 50.0
    assert k["credibility_pct"] is None
    assert k["response"] == {"avg_ms": None, "count": 0}
    assert k["session_metrics"]["utilization_pct"] == pytest.approx(6.25)
    assert {o["name"] for o in k["operators"]} == {"Alice", "Bob"}
    alice = next(o for o in k["operators"] if o["name"] == "Alice")
    assert alice["working_time"] == "4h 0m"


def test_stats_day_and_month(client: TestClient):
    client.post("/api/logs", json=NEW_LOG)
    client.post("/api/logs", json={**NEW_LOG, "cycle_start_time": "2024-01-03T08:00:00.000Z"})
    window = {"startDate": "2024-01-01", "endDate": "2024-01-31"}

    r = client.get("/api/stats", params=window)
    assert r.status_code == 200
    body = r.json()
    assert body["meta"]["period"] == "day"
    assert [p["period"] for p in body["points"]] == ["2024-01-01", "2024-01-03"]

    r = client.get("/api/stats", params={**window, "period": "month"})
    assert [(p["period"], p["total_logs"]) for p in r.json()["points"]] == [("2024-01", 2)]

    assert client.get("/api/stats", params={**window, "period": "week"}).status_code == 422


# ---------------- metadata ----------------

def test_metadata_list(client: TestClient):
    r = client.get("/api/metadata/machines")
    assert r.status_code == 200
    assert [m["code"] for m in r.json()] == ["M-01", "M-02"]
    assert client.get("/api/metadata/shifts").status_code == 422


def test_metadata_add(client: TestClient):
    r = client.post("/api/metadata/machines", json={"machine_id": 3, "code": "M-03"})
    assert r.status_code == 201
    assert r.json() == {"machine_id": 3, "code": "M-03"}
    assert len(client.get("/api/metadata/machines").json()) == 3

    assert client.post("/api/metadata/machines", json={"machine_id": 3, "code": "dup"}).status_code == 400
    assert client.post("/api/metadata/operators", json={"operator_id": 10}).status_code == 400


def test_metadata_update(client: TestClient):
    r = client.put("/api/metadata/supervisors/1", json={"supervisor_name": "Chief", "supervisor_id": 50})
    assert r.status_code == 200
    assert r.json() == {"supervisor_id": 1, "supervisor_name": "Chief", "badge": "100100100"}
    assert client.put("/api/metadata/supervisors/77", json={"badge": "x"}).status_code == 404


def test_metadata_delete(client: TestClient):
    r = client.delete("/api/metadata/operators/8")
    assert r.status_code == 200
    assert r.json() == {"message": "Operator deleted"}
    assert [o["operator_id"] for o in client.get("/api/metadata/operators").json()] == [7]
    assert client.delete("/api/metadata/operators/8").status_code == 404


def test_api_key(client: TestClient, monkeypatch):
    monkeypatch.setattr(SETTINGS, "API_KEY", "secret")
    assert client.get("/api/logs", params=WINDOW).status_code == 401
    r = client.get("/api/logs", params=WINDOW, headers={"x-api-key": "secret"})
    assert r.status_code == 200


@pytest.mark.parametrize("machine", [0, "A1", "../x"])
def test_create_rejects_unusable_machine(client: TestClient, data_root, machine):
    r = client.post("/api/logs", json={**NEW_LOG, "machine": machine})
    assert r.status_code == 400
    assert not list(data_root.glob("machine_*"))


def test_last_calendar_day_window_is_empty_not_500(client: TestClient, data_root):
    (data_root / "machine_sessions.json").write_text("[]", encoding="utf-8")
    window = {"startDate": "9999-12-31", "endDate": "9999-12-31"}
    for path in ("/api/sessions", "/api/logs", "/api/kpi", "/api/stats"):
        r = client.get(path, params=window)
        assert r.status_code == 200, path
    assert client.get("/api/sessions", params=window).json() == []
    assert client.get("/api/stats", params=window).json()["points"] == []
