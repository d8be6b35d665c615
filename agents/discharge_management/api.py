"""
Discharge Management Agent - FastAPI Application

This module exposes the discharge panel over REST. The panel front-end
renders what these endpoints return; all state changes go through the
``DischargeWorkflow``.

================================================================================
PANEL WORKFLOW
================================================================================

1. On startup the active records and today's statistics are loaded
2. Staff search/filter the list (``GET /records``)
3. Staff select a record (``PUT /selection``)
4. Staff submit the discharge form naming that record (``POST /discharge``)
5. The record leaves the list and the statistics are refreshed

Failures are reported through the notification feed
(``GET /notifications``) and as structured HTTP errors.

================================================================================
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import settings
from .notifications import RecentNotifications
from .records import ActiveRecord, DailySpecialtyStatistic, DischargeForm, RecordKind
from .store import build_store
from .workflow import (
    DischargeValidationError,
    DischargeWorkflow,
    RecordNotFoundError,
    RemoteCountError,
    RemoteReadError,
    RemoteWriteError,
)

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# =============================================================================
# PYDANTIC MODELS (Request/Response Schemas)
# =============================================================================

class ActiveRecordResponse(BaseModel):
    """One row of the active-record list."""

    kind: RecordKind
    kind_label: str = Field(description="Admission or Consultation")
    mrn: str
    patient_name: str
    specialty: str = Field(description="Specialty or consultation specialty")
    display_date: str = Field(description="Admission date or request date")
    requesting_department: Optional[str] = None
    accepts_discharge_note: bool


class RecordListResponse(BaseModel):
    loading: bool
    total_active: int
    total_shown: int
    records: List[ActiveRecordResponse]


class StatisticResponse(BaseModel):
    specialty: str
    admissions: int = Field(ge=0, description="Admissions discharged today")
    consultations: int = Field(ge=0, description="Consultations completed today")


class StatisticsResponse(BaseModel):
    computed_at: Optional[datetime] = None
    statistics: List[StatisticResponse]


class SelectionRequest(BaseModel):
    """Record chosen on the panel; MRNs may repeat across kinds."""

    kind: RecordKind
    mrn: str = Field(..., min_length=1)


class SelectionResponse(BaseModel):
    record: Optional[ActiveRecordResponse] = None
    discharge_date: str = ""
    discharge_time: str = ""
    discharge_note: str = ""


class DischargeRequest(BaseModel):
    """
    Discharge form for one named record.

    The record is identified in the request itself, so concurrent staff
    sessions never submit against each other's panel selection. Date and
    time are required; the workflow reports missing values so the failure
    shows up in the notification feed as well.
    """

    kind: RecordKind
    mrn: str = Field(..., min_length=1)
    discharge_date: str = Field(default="", description="YYYY-MM-DD")
    discharge_time: str = Field(default="", description="HH:MM")
    discharge_note: Optional[str] = Field(
        default=None,
        description="Admissions only; ignored for consultations",
    )

    class Config:
        json_schema_extra = {
            "example": {
                "kind": "admission",
                "mrn": "MRN-100",
                "discharge_date": "2024-03-01",
                "discharge_time": "10:00",
                "discharge_note": "stable",
            }
        }


class DischargeResponse(BaseModel):
    request_id: str
    message: str
    discharged: ActiveRecordResponse
    statistics: List[StatisticResponse]


class NotificationResponse(BaseModel):
    level: str
    message: str
    created_at: datetime


class HealthResponse(BaseModel):
    """Response schema for health checks."""

    status: str
    service: str
    version: str
    timestamp: datetime
    checks: Dict[str, Dict[str, Any]]


# =============================================================================
# APPLICATION STATE
# =============================================================================

class AppState:
    """
    Application state management.

    Holds the single panel workflow shared by every request.
    """

    def __init__(self):
        self.workflow: Optional[DischargeWorkflow] = None
        self.notifications: Optional[RecentNotifications] = None
        self.started_at: Optional[datetime] = None
        self._lock = asyncio.Lock()

    async def get_workflow(self) -> DischargeWorkflow:
        """Get or build the workflow from settings."""
        async with self._lock:
            if self.workflow is None:
                self.notifications = RecentNotifications(settings.notification_history_size)
                self.workflow = DischargeWorkflow(
                    store=build_store(),
                    notifier=self.notifications,
                    specialties=settings.specialties,
                    admissions_table=settings.admissions_table,
                    consultations_table=settings.consultations_table,
                )
                self.started_at = datetime.utcnow()
                logger.info(f"DischargeWorkflow initialized ({settings.store_backend} store)")
            return self.workflow


# Global application state
app_state = AppState()


# =============================================================================
# LIFESPAN MANAGEMENT
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info(f"Starting {settings.service_name} v{settings.service_version}")

    workflow = await app_state.get_workflow()
    await workflow.load()

    yield

    dispose = getattr(workflow.store, "dispose", None)
    if callable(dispose):
        dispose()
    logger.info("Shutting down discharge management agent")


# =============================================================================
# FASTAPI APPLICATION
# =============================================================================

app = FastAPI(
    title="Discharge Management Agent",
    description="""
    Backend of the ward discharge panel.

    ## Features
    - **Active records**: active admissions and consultations in one list
    - **Search**: by patient name or MRN, filtered by specialty
    - **Discharge**: admissions are discharged, consultations completed
    - **Daily statistics**: discharges and completions per specialty today
    """,
    version=settings.service_version,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def _record_response(record: ActiveRecord) -> ActiveRecordResponse:
    return ActiveRecordResponse(
        kind=record.kind,
        kind_label=record.kind_label,
        mrn=record.mrn,
        patient_name=record.patient_name,
        specialty=record.specialty_name,
        display_date=record.display_date,
        requesting_department=record.requesting_department,
        accepts_discharge_note=record.accepts_discharge_note,
    )


def _statistic_response(stat: DailySpecialtyStatistic) -> StatisticResponse:
    return StatisticResponse(
        specialty=stat.specialty,
        admissions=stat.admissions,
        consultations=stat.consultations,
    )


def _selection_response(workflow: DischargeWorkflow) -> SelectionResponse:
    record = workflow.selected
    return SelectionResponse(
        record=_record_response(record) if record else None,
        discharge_date=workflow.form.discharge_date,
        discharge_time=workflow.form.discharge_time,
        discharge_note=workflow.form.discharge_note,
    )


def _error(status_code: int, error: str, exc: Exception) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={"error": error, "message": str(exc)},
    )


# =============================================================================
# ENDPOINTS
# =============================================================================

@app.get("/health", response_model=HealthResponse, tags=["Operations"])
async def health_check() -> HealthResponse:
    """Health check endpoint for Kubernetes probes."""
    checks = {}
    overall_status = "healthy"

    workflow = await app_state.get_workflow()
    checks["workflow"] = {
        "status": "ok",
        "loading": workflow.loading,
        "active_records": len(workflow.records),
        "specialties": len(workflow.specialties),
    }

    store_check: Dict[str, Any] = {"status": "ok", "backend": settings.store_backend}
    try:
        await workflow.store.ping()
    except Exception as e:
        store_check["status"] = "error"
        store_check["message"] = str(e)
        overall_status = "degraded"
    checks["store"] = store_check

    return HealthResponse(
        status=overall_status,
        service=settings.service_name,
        version=settings.service_version,
        timestamp=datetime.utcnow(),
        checks=checks,
    )


@app.get("/specialties", tags=["Records"])
async def list_specialties() -> Dict[str, List[str]]:
    """Specialties offered in the filter dropdown."""
    workflow = await app_state.get_workflow()
    return {"specialties": workflow.specialties}


@app.get("/records", response_model=RecordListResponse, tags=["Records"])
async def list_records(
    search: str = Query(default="", description="Patient name or MRN"),
    specialty: Optional[str] = Query(default=None, description="Exact specialty"),
) -> RecordListResponse:
    """Active records matching the search box and specialty filter."""
    workflow = await app_state.get_workflow()
    shown = workflow.filtered_records(search, specialty)
    return RecordListResponse(
        loading=workflow.loading,
        total_active=len(workflow.records),
        total_shown=len(shown),
        records=[_record_response(r) for r in shown],
    )


@app.post("/records/refresh", response_model=RecordListResponse, tags=["Records"])
async def refresh_records() -> RecordListResponse:
    """Reload active admissions and consultations from the store."""
    workflow = await app_state.get_workflow()
    try:
        records = await workflow.fetch_active_records()
    except RemoteReadError as e:
        raise _error(status.HTTP_502_BAD_GATEWAY, "store_unavailable", e)
    return RecordListResponse(
        loading=workflow.loading,
        total_active=len(records),
        total_shown=len(records),
        records=[_record_response(r) for r in records],
    )


@app.get("/statistics", response_model=StatisticsResponse, tags=["Statistics"])
async def get_statistics() -> StatisticsResponse:
    """Today's discharges per specialty, as last computed."""
    workflow = await app_state.get_workflow()
    return StatisticsResponse(
        computed_at=workflow.statistics_computed_at,
        statistics=[_statistic_response(s) for s in workflow.statistics],
    )


@app.post("/statistics/refresh", response_model=StatisticsResponse, tags=["Statistics"])
async def refresh_statistics() -> StatisticsResponse:
    workflow = await app_state.get_workflow()
    try:
        stats = await workflow.fetch_discharge_stats()
    except RemoteCountError as e:
        raise _error(status.HTTP_502_BAD_GATEWAY, "store_unavailable", e)
    return StatisticsResponse(
        computed_at=workflow.statistics_computed_at,
        statistics=[_statistic_response(s) for s in stats],
    )


@app.get("/selection", response_model=SelectionResponse, tags=["Discharge"])
async def get_selection() -> SelectionResponse:
    workflow = await app_state.get_workflow()
    return _selection_response(workflow)


@app.put("/selection", response_model=SelectionResponse, tags=["Discharge"])
async def set_selection(request: SelectionRequest) -> SelectionResponse:
    """Select the record the discharge form applies to."""
    workflow = await app_state.get_workflow()
    try:
        workflow.select(request.kind, request.mrn)
    except RecordNotFoundError as e:
        raise _error(status.HTTP_404_NOT_FOUND, "record_not_found", e)
    return _selection_response(workflow)


@app.delete("/selection", response_model=SelectionResponse, tags=["Discharge"])
async def clear_selection() -> SelectionResponse:
    workflow = await app_state.get_workflow()
    workflow.clear_selection()
    return _selection_response(workflow)


@app.post(
    "/discharge",
    response_model=DischargeResponse,
    tags=["Discharge"],
    summary="Discharge an admission or complete a consultation",
)
async def discharge(request: DischargeRequest) -> DischargeResponse:
    """
    Submit the discharge form for the record named in the request.

    **Errors:**
    - 422 when the record is not active, is already being discharged, or
      date/time is missing (no write is made)
    - 502 when the store rejects the update (the list is left unchanged)
    """
    request_id = str(uuid.uuid4())
    workflow = await app_state.get_workflow()

    logger.info(
        f"Discharge request: {request_id}",
        extra={"kind": request.kind.value, "mrn": request.mrn},
    )

    try:
        record = await workflow.discharge_record(
            request.kind,
            request.mrn,
            DischargeForm(
                discharge_date=request.discharge_date,
                discharge_time=request.discharge_time,
                discharge_note=request.discharge_note or "",
            ),
        )
    except DischargeValidationError as e:
        raise _error(status.HTTP_422_UNPROCESSABLE_ENTITY, "validation_failed", e)
    except RemoteWriteError as e:
        raise _error(status.HTTP_502_BAD_GATEWAY, "discharge_failed", e)

    return DischargeResponse(
        request_id=request_id,
        message="Record discharged successfully",
        discharged=_record_response(record),
        statistics=[_statistic_response(s) for s in workflow.statistics],
    )


@app.get("/notifications", response_model=List[NotificationResponse], tags=["Operations"])
async def list_notifications(
    limit: int = Query(default=20, ge=1, le=1000),
) -> List[NotificationResponse]:
    """Most recent success/failure messages, newest first."""
    await app_state.get_workflow()
    items = app_state.notifications.recent(limit) if app_state.notifications else []
    return [NotificationResponse(**n.to_dict()) for n in items]


# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================

@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Handle uncaught exceptions."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred",
            "detail": str(exc) if settings.debug else None,
        },
    )


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "agents.discharge_management.api:app",
        host=settings.api_host,
        port=settings.api_port,
        workers=settings.api_workers,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
