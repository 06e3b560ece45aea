# =============================
# ========== api.py ==========
# =============================
"""
FastAPI application for the needle-change log dashboard.
- /api/logs           : joined + sorted cycle logs for a date window (GET), create a log (POST)
- /api/logs/sessions  : operator sessions for a window (also served at /api/sessions)
- /api/kpi            : KPI cards + operator / supervisor tables
- /api/stats          : per-day or per-month rollups for trend charts
- /api/metadata/{kind}: machines / operators / supervisors CRUD
- Windows are 'YYYY-MM-DD' startDate/endDate; when absent: last N days through today
- A window that matches no file returns an empty result, never an error
"""
from fastapi import FastAPI, Depends, Query, Path, Header, HTTPException, Body
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from typing import Optional, List
import logging

from needle_api.config import SETTINGS
from needle_api.errors import DuplicateRecord, MissingRequiredField, RecordNotFound
from needle_api.queries import (
    AppContext,
    build_logs_payload,
    build_sessions_payload,
    build_kpi_payload,
    build_stats_payload,
)
from needle_api.schemas import (
    KpiPayload,
    LogCreate,
    LogCreated,
    LogOut,
    Message,
    MetadataKind,
    MetadataRecord,
    Period,
    SessionOut,
    StatsPayload,
)
from needle_api.utils import now_local, parse_csv_int, sanitize_json_deep, to_local_str

from starlette.concurrency import run_in_threadpool

# --------------------------------------------------------------
# Logging
# --------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)
logger = logging.getLogger("needle.api")

app = FastAPI(
    title="Needle Log Service",
    version="1.0",
    openapi_tags=[
        {"name": "logs", "description": "Needle-change cycle logs, one JSON file per machine per day."},
        {"name": "kpi", "description": "Supervisor response, review rate, credibility, compliance and utilization."},
        {"name": "metadata", "description": "Machines, operators and supervisors reference tables."},
    ],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=SETTINGS.CORS_ALLOW_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --------------------------------------------------------------
# Shared context (overridable in tests via app.dependency_overrides)
# --------------------------------------------------------------
_CONTEXT: Optional[AppContext] = None

def get_context() -> AppContext:
    global _CONTEXT
    if _CONTEXT is None:
        _CONTEXT = AppContext.build()
        logger.info("context ready | data_root=%s", _CONTEXT.data_root)
    return _CONTEXT

# --------------------------------------------------------------
# Optional API key (disabled if not set)
# --------------------------------------------------------------
async def _check_api_key(x_api_key: Optional[str] = Header(None)):
    if not SETTINGS.API_KEY:
        return  # feature disabled
    if x_api_key != SETTINGS.API_KEY:
        raise HTTPException(status_code=401, detail="Invalid API key")

START_Q = Query(None, alias="startDate", description="'YYYY-MM-DD'. Default: today - DEFAULT_LOOKBACK_DAYS.",
                openapi_examples={"day": {"summary": "Single day", "value": "2024-01-01"}})
END_Q = Query(None, alias="endDate", description="'YYYY-MM-DD' (inclusive). Default: today.",
              openapi_examples={"day": {"summary": "Single day", "value": "2024-01-01"}})
MACHINES_Q = Query(None, description="CSV machine ids to keep, e.g. 1,2,3. Default: all machines.")


@app.get("/health")
def health():
    """Simple health check."""
    return {"status": "ok", "time": to_local_str(now_local())}

# --------------------------------------------------------------
# Logs
# --------------------------------------------------------------
@app.get("/api/logs", response_model=List[LogOut], tags=["logs"], dependencies=[Depends(_check_api_key)],
         summary="Cycle logs in a date window, most recent first.")
async def get_logs(
    start_date: Optional[str] = START_Q,
    end_date: Optional[str] = END_Q,
    machines: Optional[str] = MACHINES_Q,
    ctx: AppContext = Depends(get_context),
):
    logs = await build_logs_payload(ctx, start_date, end_date, parse_csv_int(machines))
    return JSONResponse(sanitize_json_deep(logs))


@app.post("/api/logs", response_model=LogCreated, status_code=201, tags=["logs"],
          dependencies=[Depends(_check_api_key)], summary="Append one cycle log.")
async def create_log(body: LogCreate, ctx: AppContext = Depends(get_context)):
    if body.machine in (None, "") or not body.cycle_start_time or not body.cycle_end_time:
        raise HTTPException(status_code=400, detail="Missing required fields")

    log_data = {
        **(body.model_extra or {}),
        "machine_id": body.machine,
        "operator_id": body.operator,
        "supervisor_id": body.supervisor,
        "color": body.color,
        "status": body.status,
        "operator_press_time": body.operator_press_time,
        "cycle_start_time": body.cycle_start_time,
        "cycle_end_time": body.cycle_end_time,
    }
    try:
        log_id = await run_in_threadpool(ctx.logs.append, log_data)
    except MissingRequiredField as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return JSONResponse({"id": log_id}, status_code=201)


@app.get("/api/logs/sessions", response_model=List[SessionOut], tags=["logs"],
         dependencies=[Depends(_check_api_key)], summary="Operator sessions (derived) in a date window.")
@app.get("/api/sessions", response_model=List[SessionOut], tags=["logs"],
         dependencies=[Depends(_check_api_key)], include_in_schema=False)
async def get_sessions(
    start_date: Optional[str] = START_Q,
    end_date: Optional[str] = END_Q,
    ctx: AppContext = Depends(get_context),
):
    sessions = await build_sessions_payload(ctx, start_date, end_date)
    return JSONResponse(sanitize_json_deep(sessions))

# --------------------------------------------------------------
# KPI / statistics
# --------------------------------------------------------------
@app.get("/api/kpi", response_model=KpiPayload, tags=["kpi"], dependencies=[Depends(_check_api_key)],
         summary="KPI summary for a date window.")
async def get_kpi(
    start_date: Optional[str] = START_Q,
    end_date: Optional[str] = END_Q,
    machines: Optional[str] = MACHINES_Q,
    ctx: AppContext = Depends(get_context),
):
    payload = await build_kpi_payload(ctx, start_date, end_date, parse_csv_int(machines))
    return JSONResponse(sanitize_json_deep(payload))


@app.get("/api/stats", response_model=StatsPayload, tags=["kpi"], dependencies=[Depends(_check_api_key)],
         summary="Per-day or per-month rollups for trend charts.")
async def get_stats(
    start_date: Optional[str] = START_Q,
    end_date: Optional[str] = END_Q,
    period: Period = Query(Period.day, description="day | month"),
    machines: Optional[str] = MACHINES_Q,
    ctx: AppContext = Depends(get_context),
):
    payload = await build_stats_payload(ctx, start_date, end_date, period.value, parse_csv_int(machines))
    return JSONResponse(sanitize_json_deep(payload))

# --------------------------------------------------------------
# Metadata
# --------------------------------------------------------------
@app.get("/api/metadata/{kind}", response_model=List[MetadataRecord], tags=["metadata"],
         dependencies=[Depends(_check_api_key)])
async def list_metadata(kind: MetadataKind = Path(...), ctx: AppContext = Depends(get_context)):
    rows = await run_in_threadpool(ctx.metadata.get, kind.value)
    return JSONResponse(sanitize_json_deep(rows))


@app.post("/api/metadata/{kind}", response_model=MetadataRecord, status_code=201, tags=["metadata"],
          dependencies=[Depends(_check_api_key)])
async def add_metadata(
    kind: MetadataKind = Path(...),
    body: dict = Body(...),
    ctx: AppContext = Depends(get_context),
):
    try:
        rec = await run_in_threadpool(ctx.metadata.add, kind.value, body)
    except MissingRequiredField as e:
        raise HTTPException(status_code=400, detail="Missing required fields") from e
    except DuplicateRecord as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return JSONResponse(sanitize_json_deep(rec), status_code=201)


@app.put("/api/metadata/{kind}/{record_id}", response_model=MetadataRecord, tags=["metadata"],
         dependencies=[Depends(_check_api_key)])
async def update_metadata(
    kind: MetadataKind = Path(...),
    record_id: str = Path(...),
    body: dict = Body(...),
    ctx: AppContext = Depends(get_context),
):
    try:
        rec = await run_in_threadpool(ctx.metadata.update, kind.value, record_id, body)
    except RecordNotFound as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    return JSONResponse(sanitize_json_deep(rec))


@app.delete("/api/metadata/{kind}/{record_id}", response_model=Message, tags=["metadata"],
            dependencies=[Depends(_check_api_key)])
async def delete_metadata(
    kind: MetadataKind = Path(...),
    record_id: str = Path(...),
    ctx: AppContext = Depends(get_context),
):
    try:
        await run_in_threadpool(ctx.metadata.delete, kind.value, record_id)
    except RecordNotFound as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    return {"message": f"{kind.value[:-1].capitalize()} deleted"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("needle_api.api:app", host="0.0.0.0", port=3001)
