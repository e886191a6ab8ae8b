"""
Discharge Planning Agent - Record Types

Typed payloads held by the record store. Every record is a frozen pydantic
model: the store serializes it to JSON on write and parses a fresh instance
on every read, so no two readers ever share an object.

Timestamps are integer clock ticks (seconds). References are opaque 32-byte
content identifiers (document hashes, registry IDs) carried as 64-character
lowercase hex strings; the workflow stores them verbatim and never
interprets them.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Annotated, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

from .codes import (
    ALL_RISK_FACTORS,
    Code,
    DischargeDestination,
    EducationTopic,
    EquipmentType,
    HomeHealthService,
    OrderType,
    RiskFactor,
    Specialty,
)
from .errors import InvalidInput

REF_PATTERN = r"^[0-9a-f]{64}$"
REF_BYTES = 32

Ref = Annotated[str, StringConstraints(pattern=REF_PATTERN)]
Timestamp = Annotated[int, Field(ge=0)]
Percentage = Annotated[int, Field(ge=0, le=100)]

_REF_RE = re.compile(REF_PATTERN)


def to_ref(value: Union[str, bytes], field_name: str = "reference") -> str:
    """
    Normalize a reference to its canonical hex form.

    Accepts raw 32-byte values or 64-character hex strings (any case).

    Raises:
        InvalidInput: If the value is not a 32-byte reference
    """
    if isinstance(value, (bytes, bytearray)):
        if len(value) != REF_BYTES:
            raise InvalidInput(f"{field_name} must be {REF_BYTES} bytes, got {len(value)}")
        return bytes(value).hex()
    if isinstance(value, str):
        normalized = value.lower()
        if _REF_RE.match(normalized):
            return normalized
    raise InvalidInput(f"{field_name} must be a {REF_BYTES}-byte hex reference")


class PlanState(str, Enum):
    """
    Lifecycle state of a discharge plan.

    Readiness, orders, arrangements and the rest are annotations on an
    INITIATED plan, not states of their own.
    """
    INITIATED = "INITIATED"
    COMPLETED = "COMPLETED"


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True)


class DischargePlan(_Record):
    discharge_plan_id: int = Field(ge=0)
    patient_ref: Ref
    admission_date: Timestamp
    expected_discharge_date: Timestamp
    discharge_destination: Union[DischargeDestination, Code] = Field(union_mode="left_to_right")
    created_at: Timestamp
    is_completed: bool = False

    @property
    def state(self) -> PlanState:
        return PlanState.COMPLETED if self.is_completed else PlanState.INITIATED


class ReadinessScore(_Record):
    discharge_plan_id: int = Field(ge=0)
    medical_stability_score: Percentage
    functional_status_score: Percentage
    support_system_score: Percentage
    education_completion_score: Percentage
    total_score: Percentage
    is_ready: bool
    assessed_at: Timestamp


class DischargeOrder(_Record):
    order_type: Union[OrderType, Code] = Field(union_mode="left_to_right")
    order_details_ref: Ref
    created_at: Timestamp


class HomeHealthArrangement(_Record):
    agency_ref: Ref
    service_type: Union[HomeHealthService, Code] = Field(union_mode="left_to_right")
    frequency_per_week: int = Field(gt=0)
    duration_weeks: int = Field(gt=0)
    arranged_at: Timestamp


class DmeOrder(_Record):
    equipment_type: Union[EquipmentType, Code] = Field(union_mode="left_to_right")
    supplier_ref: Ref
    delivery_date: Timestamp
    ordered_at: Timestamp


class FollowUpAppointment(_Record):
    """A follow-up appointment as requested by the caller."""
    provider_ref: Ref
    specialty: Union[Specialty, Code] = Field(union_mode="left_to_right")
    scheduled_time: Timestamp
    location_ref: Ref


class ScheduledAppointment(FollowUpAppointment):
    """A follow-up appointment after it has been assigned its global ID."""
    appointment_id: int = Field(ge=0)


class EducationRecord(_Record):
    education_topic: Union[EducationTopic, Code] = Field(union_mode="left_to_right")
    materials_ref: Ref
    completed: bool
    provided_at: Timestamp


class SnfCoordination(_Record):
    snf_ref: Ref
    bed_reserved: bool
    transfer_date: Timestamp
    medical_summary_ref: Ref
    coordinated_at: Timestamp


class ReadmissionRisk(_Record):
    risk_factors: Code
    risk_score: Percentage
    tracked_at: Timestamp

    @property
    def factors(self) -> RiskFactor:
        """Known flags only; bits the table does not name are ignored."""
        return RiskFactor(self.risk_factors & int(ALL_RISK_FACTORS))


class DischargeCompletion(_Record):
    actual_discharge_date: Timestamp
    discharge_summary_ref: Ref


class PlanSummary(_Record):
    """Everything recorded against one plan, as of the last commit."""
    plan: DischargePlan
    state: PlanState
    readiness: Optional[ReadinessScore] = None
    orders: List[DischargeOrder] = Field(default_factory=list)
    home_health: Optional[HomeHealthArrangement] = None
    dme_orders: List[DmeOrder] = Field(default_factory=list)
    appointments: List[ScheduledAppointment] = Field(default_factory=list)
    education: List[EducationRecord] = Field(default_factory=list)
    snf_coordination: Optional[SnfCoordination] = None
    readmission_risk: Optional[ReadmissionRisk] = None
    completion: Optional[DischargeCompletion] = None
