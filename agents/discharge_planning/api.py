"""
Discharge Planning Agent - FastAPI Application

This module provides the REST API for the discharge planning workflow. It
exposes one endpoint per workflow operation plus read and health endpoints.

================================================================================
API DESIGN FOR THE DISCHARGE WORKFLOW
================================================================================

This API is designed for integration with:
1. Case management dashboards used by discharge coordinators
2. Hospital EMR systems pushing orders and education records
3. Home health / DME / SNF partner portals
4. The central orchestrator for multi-agent coordination

Key Design Principles:
─────────────────────
1. ALL-OR-NOTHING: A rejected request never leaves partial records behind
2. EXPLICIT ERRORS: Every rejection names the violated precondition
3. CALLER IDENTITY: Every mutation carries the X-Caller-Id header
4. AUDIT TRAIL: Every accepted mutation emits a notification event

Error mapping:
    PlanNotFound      -> 404
    AlreadyCompleted  -> 409
    Unauthorized      -> 403
    InvalidDate / InvalidScore / InvalidInput -> 400

================================================================================
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Header, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .codes import U32_MAX, describe_tables
from .config import settings
from .errors import DischargeWorkflowError, ErrorKind
from .records import (
    DischargeCompletion,
    DischargeOrder,
    DmeOrder,
    EducationRecord,
    HomeHealthArrangement,
    PlanState,
    PlanSummary,
    ReadinessScore,
    ReadmissionRisk,
    SnfCoordination,
)
from .workflow import DischargeWorkflow

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format=settings.log_format,
)
logger = logging.getLogger(__name__)


# =============================================================================
# PYDANTIC MODELS (Request/Response Schemas)
# =============================================================================
# Codes only need to be unsigned 32-bit integers; values missing from the
# published tables are accepted and stored as given. References and dates are
# passed through untouched so that the workflow reports the same error kinds
# to every caller, HTTP or not.

class CreatePlanRequest(BaseModel):
    """Request schema for opening a discharge plan."""

    patient_ref: str = Field(
        ...,
        description="32-byte patient reference as 64 hex characters"
    )
    admission_date: int = Field(
        ...,
        description="Admission time (clock ticks)"
    )
    expected_discharge_date: int = Field(
        ...,
        description="Expected discharge time; must be after admission"
    )
    discharge_destination: int = Field(
        default=0,
        ge=0,
        le=U32_MAX,
        description="0=Home, 1=SNF, 2=Rehab, 3=Other"
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "patient_ref": "01" + "00" * 31,
                "admission_date": 1000,
                "expected_discharge_date": 5000,
                "discharge_destination": 0,
            }
        }
    )


class CreatePlanResponse(BaseModel):
    plan_id: int
    state: PlanState


class ReadinessRequest(BaseModel):
    """Four 0-100 sub-scores; the total is their floored mean."""

    medical_stability_score: int
    functional_status_score: int
    support_system_score: int
    education_completion_score: int


class OrderRequest(BaseModel):
    order_type: int = Field(
        ...,
        ge=0,
        le=U32_MAX,
        description="0=Medication, 1=DME, 2=HomeHealth, 3=Lab"
    )
    order_details_ref: str


class HomeHealthRequest(BaseModel):
    agency_ref: str
    service_type: int = Field(
        ...,
        ge=0,
        le=U32_MAX,
        description="0=Nursing, 1=PT, 2=OT, 3=SpeechTherapy"
    )
    frequency_per_week: int
    duration_weeks: int


class DmeOrderRequest(BaseModel):
    equipment_type: int = Field(
        ...,
        ge=0,
        le=U32_MAX,
        description="0=Walker, 1=Wheelchair, 2=OxygenConcentrator, 3=HospitalBed"
    )
    supplier_ref: str
    delivery_date: int = Field(..., description="Must be in the future")


class AppointmentRequest(BaseModel):
    provider_ref: str
    specialty: int = Field(
        ...,
        ge=0,
        le=U32_MAX,
        description="0=PrimaryCare, 1=Cardiology, 2=Surgery, 3=Other"
    )
    scheduled_time: int = Field(..., description="Must be in the future")
    location_ref: str


class ScheduleAppointmentsRequest(BaseModel):
    """A batch of follow-ups; scheduled together or not at all."""

    appointments: List[AppointmentRequest]


class ScheduleAppointmentsResponse(BaseModel):
    plan_id: int
    appointment_ids: List[int]


class EducationRequest(BaseModel):
    education_topic: int = Field(
        ...,
        ge=0,
        le=U32_MAX,
        description="0=Medications, 1=WoundCare, 2=DietNutrition, 3=ActivityRestrictions"
    )
    materials_ref: str
    completed: bool = False


class SnfCoordinationRequest(BaseModel):
    snf_ref: str
    bed_reserved: bool
    transfer_date: int = Field(..., description="Must be in the future")
    medical_summary_ref: str


class CompletionRequest(BaseModel):
    actual_discharge_date: int
    discharge_summary_ref: str


class ReadmissionRiskRequest(BaseModel):
    risk_factors: int = Field(
        default=0,
        ge=0,
        le=U32_MAX,
        description="Bitmap: 1=MultipleComorbidities, 2=PoorSocialSupport, "
                    "4=MedicationNonCompliance, 8=RecentReadmission"
    )
    risk_score: int = Field(..., description="0-100")


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

    Holds the discharge workflow and counts handled requests.
    """

    def __init__(self):
        self.workflow: Optional[DischargeWorkflow] = None
        self.started_at: Optional[datetime] = None
        self.operations_performed: int = 0
        self._lock = asyncio.Lock()

    async def get_workflow(self) -> DischargeWorkflow:
        """Get or initialize the discharge workflow."""
        async with self._lock:
            if self.workflow is None:
                self.workflow = DischargeWorkflow.from_settings(settings)
                self.started_at = datetime.now(timezone.utc)
                logger.info("DischargeWorkflow initialized")
            return self.workflow


# Global application state
app_state = AppState()


# =============================================================================
# LIFESPAN MANAGEMENT
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info(f"Starting {settings.service_name} v{settings.service_version}")

    try:
        await app_state.get_workflow()
    except Exception as e:
        logger.warning(f"Could not initialize record store at startup: {e}")

    yield

    # Shutdown
    if app_state.workflow is not None:
        app_state.workflow.store.engine.dispose()
    logger.info("Shutting down discharge planning agent")


# =============================================================================
# FASTAPI APPLICATION
# =============================================================================

app = FastAPI(
    title="Discharge Planning Agent",
    description="""
    Hospital discharge workflow service: the system of record for discharge plans.

    ## Overview
    A discharge plan is opened at admission and closed exactly once when the
    patient leaves. In between, the care team records readiness assessments,
    orders, home health, DME, follow-up appointments, education, SNF
    coordination and readmission risk against it.

    ## Guarantees
    - **All-or-nothing**: a rejected request leaves no partial records
    - **Unique IDs**: plan and appointment IDs are never reused
    - **Single completion**: a plan can be completed only once

    ## Caller identity
    Every mutating request must carry an `X-Caller-Id` header.
    """,
    version=settings.service_version,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

_STATUS_BY_KIND = {
    ErrorKind.PLAN_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.ALREADY_COMPLETED: status.HTTP_409_CONFLICT,
    ErrorKind.UNAUTHORIZED: status.HTTP_403_FORBIDDEN,
    ErrorKind.INVALID_DATE: status.HTTP_400_BAD_REQUEST,
    ErrorKind.INVALID_SCORE: status.HTTP_400_BAD_REQUEST,
    ErrorKind.INVALID_INPUT: status.HTTP_400_BAD_REQUEST,
}

CallerHeader = Header(default="", alias="X-Caller-Id")


async def _workflow() -> DischargeWorkflow:
    workflow = await app_state.get_workflow()
    app_state.operations_performed += 1
    return workflow


# =============================================================================
# ENDPOINTS
# =============================================================================

@app.get("/health", response_model=HealthResponse, tags=["Operations"])
async def health_check() -> HealthResponse:
    """
    Health check endpoint for Kubernetes probes.

    Checks that the record store is reachable.
    """
    checks = {}
    overall_status = "healthy"

    store_check: Dict[str, Any] = {"status": "ok"}
    try:
        workflow = await app_state.get_workflow()
        store_check["records"] = workflow.store.ping()
        store_check["started_at"] = app_state.started_at.isoformat() if app_state.started_at else None
        store_check["operations_performed"] = app_state.operations_performed
    except Exception as e:
        store_check["status"] = "error"
        store_check["message"] = str(e)
        overall_status = "unhealthy"
    checks["record_store"] = store_check

    return HealthResponse(
        status=overall_status,
        service=settings.service_name,
        version=settings.service_version,
        timestamp=datetime.now(timezone.utc),
        checks=checks,
    )


@app.post(
    "/plans",
    response_model=CreatePlanResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Plans"],
    summary="Open a discharge plan",
)
async def create_plan(
    request: CreatePlanRequest,
    caller: str = CallerHeader,
) -> CreatePlanResponse:
    workflow = await _workflow()
    plan_id = workflow.create_plan(
        caller,
        request.patient_ref,
        request.admission_date,
        request.expected_discharge_date,
        request.discharge_destination,
    )
    return CreatePlanResponse(plan_id=plan_id, state=PlanState.INITIATED)


@app.get(
    "/plans/{plan_id}",
    response_model=PlanSummary,
    tags=["Plans"],
    summary="Everything recorded against a plan",
)
async def get_plan(plan_id: int) -> PlanSummary:
    workflow = await app_state.get_workflow()
    return workflow.get_plan_summary(plan_id)


@app.post("/plans/{plan_id}/readiness", response_model=ReadinessScore, tags=["Workflow"])
async def assess_readiness(
    plan_id: int,
    request: ReadinessRequest,
    caller: str = CallerHeader,
) -> ReadinessScore:
    """
    Assess discharge readiness.

    **Example:** scores (80, 75, 85, 70) give total 77, which is ready
    (threshold 75).
    """
    workflow = await _workflow()
    return workflow.assess_readiness(
        caller,
        plan_id,
        request.medical_stability_score,
        request.functional_status_score,
        request.support_system_score,
        request.education_completion_score,
    )


@app.post(
    "/plans/{plan_id}/orders",
    response_model=DischargeOrder,
    status_code=status.HTTP_201_CREATED,
    tags=["Workflow"],
)
async def create_order(
    plan_id: int,
    request: OrderRequest,
    caller: str = CallerHeader,
) -> DischargeOrder:
    workflow = await _workflow()
    return workflow.create_order(caller, plan_id, request.order_type, request.order_details_ref)


@app.put("/plans/{plan_id}/home-health", response_model=HomeHealthArrangement, tags=["Workflow"])
async def arrange_home_health(
    plan_id: int,
    request: HomeHealthRequest,
    caller: str = CallerHeader,
) -> HomeHealthArrangement:
    workflow = await _workflow()
    return workflow.arrange_home_health(
        caller,
        plan_id,
        request.agency_ref,
        request.service_type,
        request.frequency_per_week,
        request.duration_weeks,
    )


@app.post(
    "/plans/{plan_id}/dme-orders",
    response_model=DmeOrder,
    status_code=status.HTTP_201_CREATED,
    tags=["Workflow"],
)
async def order_dme(
    plan_id: int,
    request: DmeOrderRequest,
    caller: str = CallerHeader,
) -> DmeOrder:
    workflow = await _workflow()
    return workflow.order_dme(
        caller,
        plan_id,
        request.equipment_type,
        request.supplier_ref,
        request.delivery_date,
    )


@app.post(
    "/plans/{plan_id}/appointments",
    response_model=ScheduleAppointmentsResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Workflow"],
)
async def schedule_appointments(
    plan_id: int,
    request: ScheduleAppointmentsRequest,
    caller: str = CallerHeader,
) -> ScheduleAppointmentsResponse:
    """
    Schedule a batch of follow-up appointments.

    If any appointment is rejected, none of the batch is scheduled.
    """
    workflow = await _workflow()
    appointment_ids = workflow.schedule_appointments(
        caller,
        plan_id,
        [appointment.model_dump() for appointment in request.appointments],
    )
    return ScheduleAppointmentsResponse(plan_id=plan_id, appointment_ids=appointment_ids)


@app.post(
    "/plans/{plan_id}/education",
    response_model=EducationRecord,
    status_code=status.HTTP_201_CREATED,
    tags=["Workflow"],
)
async def provide_education(
    plan_id: int,
    request: EducationRequest,
    caller: str = CallerHeader,
) -> EducationRecord:
    workflow = await _workflow()
    return workflow.provide_education(
        caller,
        plan_id,
        request.education_topic,
        request.materials_ref,
        request.completed,
    )


@app.put("/plans/{plan_id}/snf-coordination", response_model=SnfCoordination, tags=["Workflow"])
async def coordinate_snf(
    plan_id: int,
    request: SnfCoordinationRequest,
    caller: str = CallerHeader,
) -> SnfCoordination:
    workflow = await _workflow()
    return workflow.coordinate_snf(
        caller,
        plan_id,
        request.snf_ref,
        request.bed_reserved,
        request.transfer_date,
        request.medical_summary_ref,
    )


@app.post("/plans/{plan_id}/completion", response_model=DischargeCompletion, tags=["Workflow"])
async def complete_discharge(
    plan_id: int,
    request: CompletionRequest,
    caller: str = CallerHeader,
) -> DischargeCompletion:
    workflow = await _workflow()
    return workflow.complete_discharge(
        caller,
        plan_id,
        request.actual_discharge_date,
        request.discharge_summary_ref,
    )


@app.put("/plans/{plan_id}/readmission-risk", response_model=ReadmissionRisk, tags=["Workflow"])
async def track_risk(
    plan_id: int,
    request: ReadmissionRiskRequest,
    caller: str = CallerHeader,
) -> ReadmissionRisk:
    workflow = await _workflow()
    return workflow.track_risk(caller, plan_id, request.risk_factors, request.risk_score)


@app.get("/codes", tags=["Information"], summary="Numeric code tables")
async def list_codes() -> Dict[str, Any]:
    """Code tables shared with integrators; values are stable."""
    return describe_tables()


# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================

@app.exception_handler(DischargeWorkflowError)
async def workflow_exception_handler(request, exc: DischargeWorkflowError):
    """Map rejected operations onto HTTP status codes."""
    return JSONResponse(
        status_code=_STATUS_BY_KIND[exc.kind],
        content=exc.to_dict(),
    )


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
        "agents.discharge_planning.api:app",
        host=settings.api_host,
        port=settings.api_port,
        workers=settings.api_workers,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
