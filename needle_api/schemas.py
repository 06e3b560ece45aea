# needle_api/schemas.py
from __future__ import annotations
from typing import Optional, List, Union
from enum import Enum
from pydantic import BaseModel, Field, ConfigDict

# Bucket size for trend views ("contract" with the FE)
class Period(str, Enum):
    day = "day"
    month = "month"

class MetadataKind(str, Enum):
    machines = "machines"
    operators = "operators"
    supervisors = "supervisors"

Id = Union[int, str]

class LogCreate(BaseModel):
    """
    Body of POST /api/logs. Only machine / cycle_start_time / cycle_end_time
    are required; any extra key is stored as-is.
    """
    model_config = ConfigDict(
        extra="allow",
        json_schema_extra={
            "example": {
                "machine": 3,
                "operator": 7,
                "supervisor": 2,
                "color": "RED",
                "status": "OK",
                "operator_press_time": "2024-01-01T08:09:30.000Z",
                "cycle_start_time": "2024-01-01T08:00:00.000Z",
                "cycle_end_time": "2024-01-01T08:10:00.000Z",
            }
        },
    )

    machine: Optional[Id] = None
    operator: Optional[Id] = None
    supervisor: Optional[Id] = None
    color: Optional[str] = None
    status: Optional[str] = None
    operator_press_time: Optional[str] = None
    cycle_start_time: Optional[str] = None
    cycle_end_time: Optional[str] = None

class LogCreated(BaseModel):
    id: int

class Person(BaseModel):
    name: Optional[str] = None
    badge: Optional[str] = None

class OperatorRef(Person):
    operator_id: Optional[Id] = None

class SupervisorRef(Person):
    supervisor_id: Optional[Id] = None

class LogOut(BaseModel):
    log_id: Optional[int] = None
    machine: Optional[Id] = None
    operator_id: Optional[Id] = None
    supervisor_id: Optional[Id] = None
    operator: Optional[OperatorRef] = None
    supervisor: Optional[SupervisorRef] = None
    color: Optional[str] = None
    status: Optional[str] = None
    operator_press_time: Optional[str] = None
    supervisor_confirmation: Optional[str] = None
    supervisor_scan_time: Optional[str] = None
    cycle_start_time: Optional[str] = None
    cycle_end_time: Optional[str] = None

class SessionOut(BaseModel):
    model_config = ConfigDict(extra="allow")

    session_id: int
    machine_id: Id
    operator_id: Id
    badge: str = "UNKNOWN"
    started_at: Optional[str] = None
    ended_at: Optional[str] = None
    last_heartbeat: Optional[str] = None

class ResponseLatency(BaseModel):
    avg_ms: Optional[float] = Field(default=None, description="Mean scan - press (ms); null when no valid pair.")
    count: int

class SessionMetrics(BaseModel):
    sessions: int
    active_operators: int
    total_duration_ms: float
    avg_work_ms: float
    utilization_pct: float
    machine_count: int
    shift_hours: float

class StatusBreakdown(BaseModel):
    ok: int
    delay: int

class Summary(BaseModel):
    total_logs: int
    status_breakdown: StatusBreakdown
    ok_rate_pct: float
    delay_rate_pct: float
    reviewed: int
    confirmed: int
    review_rate_pct: float
    # null = not applicable (nothing reviewed)
    credibility_pct: Optional[float] = None
    response: ResponseLatency
    session_metrics: SessionMetrics

class OperatorStats(BaseModel):
    operator_id: Optional[Id] = None
    name: str
    total: int
    ok: int
    delay: int
    confirmed: int
    working_time_ms: float
    working_time: str

class SupervisorStats(BaseModel):
    supervisor_id: Optional[Id] = None
    name: str
    reviewed: int

class WindowMeta(BaseModel):
    start_date: str
    end_date: str
    period: Optional[Period] = None

class KpiPayload(Summary):
    meta: WindowMeta
    operators: List[OperatorStats]
    supervisors: List[SupervisorStats]
    top_operator: Optional[OperatorStats] = None
    top_supervisor: Optional[SupervisorStats] = None

class PeriodPoint(Summary):
    period: str = Field(description="'YYYY-MM-DD' (day) or 'YYYY-MM' (month).")

class StatsPayload(BaseModel):
    meta: WindowMeta
    points: List[PeriodPoint]

class MetadataRecord(BaseModel):
    """Machines: machine_id+code; operators: operator_id+name+badge;
    supervisors: supervisor_id+supervisor_name+badge."""
    model_config = ConfigDict(extra="allow")

class Message(BaseModel):
    message: str
