# tests/conftest.py
"""
Shared fixtures for every test:
- data_root: tmp folder with machines / operators / supervisors JSON
- write_day: drop a day-file into machine_<id>/
- ctx: AppContext over data_root (8 machines x 8h capacity)
- client: FastAPI TestClient with get_context overridden to ctx
"""
import json
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from needle_api.config import SETTINGS
from needle_api.metrics import MetricConfig
from needle_api.queries import AppContext


MACHINES = [
    {"machine_id": 1, "code": "M-01"},
    {"machine_id": 2, "code": "M-02"},
]
OPERATORS = [
    {"operator_id": 7, "name": "Alice", "badge": "B-007"},
    {"operator_id": 8, "name": "Bob", "badge": "B-008"},
]
SUPERVISORS = [
    {"supervisor_id": 1, "supervisor_name": "Sup One", "badge": "100100100"},
    {"supervisor_id": 2, "supervisor_name": "Sup Two", "badge": "200200200"},
]


def dump(path: Path, data) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def fixed_settings(monkeypatch):
    """Tests never depend on the caller's environment."""
    monkeypatch.setattr(SETTINGS, "TIMEZONE", "UTC")
    monkeypatch.setattr(SETTINGS, "API_KEY", "")
    monkeypatch.setattr(SETTINGS, "DEFAULT_LOOKBACK_DAYS", 7)


@pytest.fixture
def data_root(tmp_path: Path) -> Path:
    dump(tmp_path / "machines.json", MACHINES)
    dump(tmp_path / "operators.json", OPERATORS)
    dump(tmp_path / "supervisors.json", SUPERVISORS)
    return tmp_path


@pytest.fixture
def write_day(data_root: Path):
    def _write(machine_id, day: str, logs) -> Path:
        return dump(data_root / f"machine_{machine_id}" / f"{day}.json", logs)
    return _write


@pytest.fixture
def ctx(data_root: Path) -> AppContext:
    return AppContext.build(data_root, metric_config=MetricConfig(machine_count=8, shift_hours=8.0))


@pytest.fixture
def client(ctx: AppContext):
    from needle_api.api import app, get_context  # real app
    app.dependency_overrides[get_context] = lambda: ctx
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
