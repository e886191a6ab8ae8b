"""
Discharge Planning Agent - Workflow Operations

This module implements the entry points of the discharge workflow. Every
mutating operation follows the same template:

    1. AUTHORIZE   the caller (always first, before any validation)
    2. LOCATE      the plan (every operation except plan creation)
    3. VALIDATE    the inputs against the clinical workflow rules
    4. STAGE       the record writes in the invocation's transaction
    5. COMMIT      all staged writes together
    6. PUBLISH     the notification event(s), only after the commit

A failure at any step before COMMIT raises a DischargeWorkflowError, the
staged writes are discarded and nothing is published. The caller receives
the exact violated precondition; there are no silent corrections.

Example:
    >>> workflow = DischargeWorkflow(RecordStore.from_url("sqlite://", ManualClock(100)))
    >>> plan_id = workflow.create_plan("case-manager-1", patient_ref, 1000, 5000, 0)
    >>> score = workflow.assess_readiness("case-manager-1", plan_id, 85, 80, 90, 75)
    >>> score.total_score, score.is_ready
    (82, True)
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator, List, Mapping, Optional, Sequence, Union

from pydantic import ValidationError

from .allocator import CounterName, IdAllocator
from .auth import AllowAllAuthorizer, Authorizer, authorizer_for
from .clock import Clock, SystemClock
from .codes import (
    DischargeDestination,
    EducationTopic,
    EquipmentType,
    HomeHealthService,
    OrderType,
    decode,
)
from .config import Settings
from .errors import DischargeWorkflowError, InvalidInput
from .events import (
    DischargeEvent,
    EventSink,
    EventType,
    LoggingEventSink,
    publish_all,
    sink_for,
)
from .lifecycle import (
    PlanLifecycle,
    require_admission_window,
    require_future,
    require_percentage,
    require_positive,
    require_timestamp,
)
from .records import (
    DischargeCompletion,
    DischargeOrder,
    DmeOrder,
    EducationRecord,
    FollowUpAppointment,
    HomeHealthArrangement,
    PlanState,
    PlanSummary,
    ReadinessScore,
    ReadmissionRisk,
    ScheduledAppointment,
    SnfCoordination,
    to_ref,
)
from .storage import RecordStore, StagedTransaction, StorageKey

logger = logging.getLogger(__name__)

RefLike = Union[str, bytes]
AppointmentLike = Union[FollowUpAppointment, Mapping[str, Any]]


@dataclass
class Invocation:
    """
    Per-call context: the staged transaction, the single clock reading,
    and the events waiting for the commit.
    """
    operation: str
    caller: str
    txn: StagedTransaction
    now: int
    events: List[DischargeEvent] = field(default_factory=list)

    @property
    def lifecycle(self) -> PlanLifecycle:
        return PlanLifecycle(self.txn)

    @property
    def ids(self) -> IdAllocator:
        return IdAllocator(self.txn)

    def emit(self, event_type: EventType, plan_id: int, **data: Any) -> None:
        self.events.append(
            DischargeEvent(event_type=event_type, plan_id=plan_id, timestamp=self.now, data=data)
        )


class DischargeWorkflow:
    """
    The discharge workflow service.

    Invocations are serialized by an internal lock, so the store always
    observes them in a single total order even when the HTTP layer runs
    handlers on several threads.
    """

    def __init__(
        self,
        store: RecordStore,
        authorizer: Optional[Authorizer] = None,
        events: Optional[EventSink] = None,
        readiness_threshold: int = 75,
    ) -> None:
        self.store = store
        self.clock: Clock = store.clock
        self.authorizer = authorizer or AllowAllAuthorizer()
        self.events = events or LoggingEventSink()
        self.readiness_threshold = readiness_threshold
        self._lock = threading.RLock()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        clock: Optional[Clock] = None,
    ) -> "DischargeWorkflow":
        """Wire store, authorizer and event sink from configuration."""
        store = RecordStore.from_url(
            settings.database_url,
            clock=clock or SystemClock(),
            ttl_seconds=settings.record_ttl_seconds,
            echo=settings.db_echo,
        )
        return cls(
            store,
            authorizer=authorizer_for(settings.authorized_callers),
            events=sink_for(settings.event_sink),
            readiness_threshold=settings.readiness_threshold,
        )

    # =========================================================================
    # INVOCATION ENVELOPE
    # =========================================================================

    @contextmanager
    def _invoke(
        self,
        operation: str,
        caller: str,
        plan_id: Optional[int] = None,
    ) -> Iterator[Invocation]:
        with self._lock:
            try:
                self.authorizer.require_auth(caller)
                with self.store.transaction(now=self.clock.now()) as txn:
                    invocation = Invocation(operation, caller, txn, txn.now)
                    yield invocation
            except DischargeWorkflowError as e:
                if e.plan_id is None:
                    e.plan_id = plan_id
                logger.warning(
                    f"{operation} rejected: {e.kind.name} - {e.message}",
                    extra={"operation": operation, "plan_id": plan_id, "error_code": e.code},
                )
                raise

            publish_all(self.events, invocation.events)

        logger.info(
            f"{operation} committed for plan {invocation.events[0].plan_id}"
            if invocation.events else f"{operation} committed",
            extra={"operation": operation, "caller": caller, "events": len(invocation.events)},
        )

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    def create_plan(
        self,
        caller: str,
        patient_ref: RefLike,
        admission_date: int,
        expected_discharge_date: int,
        discharge_destination: Union[DischargeDestination, int],
    ) -> int:
        """
        Open a new discharge plan.

        Returns:
            The new plan's ID (0 for the first plan ever created)

        Raises:
            InvalidDate: If expected discharge is not after admission
        """
        with self._invoke("create_plan", caller) as inv:
            require_admission_window(admission_date, expected_discharge_date)
            patient_ref = to_ref(patient_ref, "patient_ref")
            destination = decode(DischargeDestination, discharge_destination)

            plan_id = inv.ids.next(CounterName.PLAN)
            inv.lifecycle.initiate(
                plan_id,
                patient_ref,
                admission_date,
                expected_discharge_date,
                destination,
                now=inv.now,
            )
            inv.emit(EventType.PLAN_INITIATED, plan_id, patient_ref=patient_ref, caller=caller)
        return plan_id

    def assess_readiness(
        self,
        caller: str,
        plan_id: int,
        medical_stability_score: int,
        functional_status_score: int,
        support_system_score: int,
        education_completion_score: int,
    ) -> ReadinessScore:
        """
        Record the plan's discharge readiness, replacing any earlier assessment.

        The total is the floor of the mean of the four sub-scores; a total at
        or above the configured threshold marks the patient as ready.
        """
        with self._invoke("assess_readiness", caller, plan_id) as inv:
            inv.lifecycle.require_plan(plan_id)
            scores = [
                require_percentage(medical_stability_score, "medical_stability_score"),
                require_percentage(functional_status_score, "functional_status_score"),
                require_percentage(support_system_score, "support_system_score"),
                require_percentage(education_completion_score, "education_completion_score"),
            ]
            total_score = sum(scores) // 4

            readiness = ReadinessScore(
                discharge_plan_id=plan_id,
                medical_stability_score=medical_stability_score,
                functional_status_score=functional_status_score,
                support_system_score=support_system_score,
                education_completion_score=education_completion_score,
                total_score=total_score,
                is_ready=total_score >= self.readiness_threshold,
                assessed_at=inv.now,
            )
            inv.txn.set(StorageKey.readiness(plan_id), readiness)
            inv.emit(
                EventType.READINESS_ASSESSED,
                plan_id,
                total_score=readiness.total_score,
                is_ready=readiness.is_ready,
            )
        return readiness

    def create_order(
        self,
        caller: str,
        plan_id: int,
        order_type: Union[OrderType, int],
        order_details_ref: RefLike,
    ) -> DischargeOrder:
        """Append a discharge order (medication, DME, home health, lab)."""
        with self._invoke("create_order", caller, plan_id) as inv:
            inv.lifecycle.require_plan(plan_id)
            order = DischargeOrder(
                order_type=decode(OrderType, order_type),
                order_details_ref=to_ref(order_details_ref, "order_details_ref"),
                created_at=inv.now,
            )
            inv.txn.append(StorageKey.orders(plan_id), order)
            inv.emit(
                EventType.ORDER_CREATED,
                plan_id,
                order_type=int(order.order_type),
                order_details_ref=order.order_details_ref,
            )
        return order

    def arrange_home_health(
        self,
        caller: str,
        plan_id: int,
        agency_ref: RefLike,
        service_type: Union[HomeHealthService, int],
        frequency_per_week: int,
        duration_weeks: int,
    ) -> HomeHealthArrangement:
        """Record the home health arrangement, replacing any earlier one."""
        with self._invoke("arrange_home_health", caller, plan_id) as inv:
            inv.lifecycle.require_plan(plan_id)
            require_positive(frequency_per_week, "frequency_per_week")
            require_positive(duration_weeks, "duration_weeks")

            arrangement = HomeHealthArrangement(
                agency_ref=to_ref(agency_ref, "agency_ref"),
                service_type=decode(HomeHealthService, service_type),
                frequency_per_week=frequency_per_week,
                duration_weeks=duration_weeks,
                arranged_at=inv.now,
            )
            inv.txn.set(StorageKey.home_health(plan_id), arrangement)
            inv.emit(
                EventType.HOME_HEALTH_ARRANGED,
                plan_id,
                agency_ref=arrangement.agency_ref,
                service_type=int(arrangement.service_type),
            )
        return arrangement

    def order_dme(
        self,
        caller: str,
        plan_id: int,
        equipment_type: Union[EquipmentType, int],
        supplier_ref: RefLike,
        delivery_date: int,
    ) -> DmeOrder:
        """Append a durable medical equipment order; delivery must be in the future."""
        with self._invoke("order_dme", caller, plan_id) as inv:
            inv.lifecycle.require_plan(plan_id)
            require_future(delivery_date, inv.now, "delivery_date")

            dme = DmeOrder(
                equipment_type=decode(EquipmentType, equipment_type),
                supplier_ref=to_ref(supplier_ref, "supplier_ref"),
                delivery_date=delivery_date,
                ordered_at=inv.now,
            )
            inv.txn.append(StorageKey.dme(plan_id), dme)
            inv.emit(
                EventType.DME_ORDERED,
                plan_id,
                equipment_type=int(dme.equipment_type),
                supplier_ref=dme.supplier_ref,
            )
        return dme

    def schedule_appointments(
        self,
        caller: str,
        plan_id: int,
        appointments: Sequence[AppointmentLike],
    ) -> List[int]:
        """
        Schedule a batch of follow-up appointments.

        Each appointment gets the next globally unique appointment ID, in
        batch order. The batch is all-or-nothing: if any appointment is
        rejected, none of them (and none of their IDs) are kept.

        Returns:
            The assigned appointment IDs, in batch order

        Raises:
            PlanNotFound: If the plan does not exist
            InvalidInput: If the batch is empty or an entry is malformed
            InvalidDate: If any appointment is not in the future
        """
        with self._invoke("schedule_appointments", caller, plan_id) as inv:
            inv.lifecycle.require_plan(plan_id)
            if not appointments:
                raise InvalidInput("At least one appointment is required", plan_id=plan_id)

            appointment_ids: List[int] = []
            for position, requested in enumerate(appointments):
                appointment = _coerce_appointment(requested, position, inv.now)

                appointment_id = inv.ids.next(CounterName.APPOINTMENT)
                scheduled = ScheduledAppointment(
                    appointment_id=appointment_id,
                    **appointment.model_dump(),
                )
                inv.txn.append(StorageKey.appointments(plan_id), scheduled)
                appointment_ids.append(appointment_id)
                inv.emit(
                    EventType.APPOINTMENT_SCHEDULED,
                    plan_id,
                    appointment_id=appointment_id,
                    provider_ref=scheduled.provider_ref,
                )
        return appointment_ids

    def provide_education(
        self,
        caller: str,
        plan_id: int,
        education_topic: Union[EducationTopic, int],
        materials_ref: RefLike,
        completed: bool,
    ) -> EducationRecord:
        """Append a patient/family education record."""
        with self._invoke("provide_education", caller, plan_id) as inv:
            inv.lifecycle.require_plan(plan_id)
            record = EducationRecord(
                education_topic=decode(EducationTopic, education_topic),
                materials_ref=to_ref(materials_ref, "materials_ref"),
                completed=completed,
                provided_at=inv.now,
            )
            inv.txn.append(StorageKey.education(plan_id), record)
            inv.emit(
                EventType.EDUCATION_PROVIDED,
                plan_id,
                education_topic=int(record.education_topic),
                completed=record.completed,
            )
        return record

    def coordinate_snf(
        self,
        caller: str,
        plan_id: int,
        snf_ref: RefLike,
        bed_reserved: bool,
        transfer_date: int,
        medical_summary_ref: RefLike,
    ) -> SnfCoordination:
        """Record skilled nursing facility coordination, replacing any earlier one."""
        with self._invoke("coordinate_snf", caller, plan_id) as inv:
            inv.lifecycle.require_plan(plan_id)
            require_future(transfer_date, inv.now, "transfer_date")

            coordination = SnfCoordination(
                snf_ref=to_ref(snf_ref, "snf_ref"),
                bed_reserved=bed_reserved,
                transfer_date=transfer_date,
                medical_summary_ref=to_ref(medical_summary_ref, "medical_summary_ref"),
                coordinated_at=inv.now,
            )
            inv.txn.set(StorageKey.snf_coord(plan_id), coordination)
            inv.emit(
                EventType.SNF_COORDINATED,
                plan_id,
                snf_ref=coordination.snf_ref,
                bed_reserved=coordination.bed_reserved,
            )
        return coordination

    def complete_discharge(
        self,
        caller: str,
        plan_id: int,
        actual_discharge_date: int,
        discharge_summary_ref: RefLike,
    ) -> DischargeCompletion:
        """
        Close the plan. Allowed exactly once per plan.

        Raises:
            PlanNotFound: If the plan does not exist
            AlreadyCompleted: If the plan was completed before, whatever the
                arguments of this call
        """
        with self._invoke("complete_discharge", caller, plan_id) as inv:
            inv.lifecycle.require_initiated(plan_id)
            require_timestamp(actual_discharge_date, "actual_discharge_date")
            completion = inv.lifecycle.complete(
                plan_id,
                actual_discharge_date,
                to_ref(discharge_summary_ref, "discharge_summary_ref"),
            )
            inv.emit(
                EventType.DISCHARGE_COMPLETED,
                plan_id,
                actual_discharge_date=completion.actual_discharge_date,
            )
        return completion

    def track_risk(
        self,
        caller: str,
        plan_id: int,
        risk_factors: int,
        risk_score: int,
    ) -> ReadmissionRisk:
        """Record readmission risk factors (bitmap) and score, replacing any earlier entry."""
        with self._invoke("track_risk", caller, plan_id) as inv:
            inv.lifecycle.require_plan(plan_id)
            require_percentage(risk_score, "risk_score")

            risk = ReadmissionRisk(
                risk_factors=risk_factors,
                risk_score=risk_score,
                tracked_at=inv.now,
            )
            inv.txn.set(StorageKey.risk(plan_id), risk)
            inv.emit(EventType.RISK_TRACKED, plan_id, risk_score=risk.risk_score)
        return risk

    # =========================================================================
    # READS
    # =========================================================================

    def plan_state(self, plan_id: int) -> PlanState:
        with self._lock:
            return PlanLifecycle(self.store).state(plan_id)

    def get_plan_summary(self, plan_id: int) -> PlanSummary:
        """
        Everything recorded against a plan, as of the last commit.

        Raises:
            PlanNotFound: If the plan does not exist
        """
        with self._lock:
            plan = PlanLifecycle(self.store).require_plan(plan_id)
            get = self.store.get
            return PlanSummary(
                plan=plan,
                state=plan.state,
                readiness=get(StorageKey.readiness(plan_id)),
                orders=get(StorageKey.orders(plan_id)) or [],
                home_health=get(StorageKey.home_health(plan_id)),
                dme_orders=get(StorageKey.dme(plan_id)) or [],
                appointments=get(StorageKey.appointments(plan_id)) or [],
                education=get(StorageKey.education(plan_id)) or [],
                snf_coordination=get(StorageKey.snf_coord(plan_id)),
                readmission_risk=get(StorageKey.risk(plan_id)),
                completion=get(StorageKey.completed(plan_id)),
            )


def _coerce_appointment(
    requested: AppointmentLike,
    position: int,
    now: int,
) -> FollowUpAppointment:
    """
    Accept a FollowUpAppointment or a plain mapping with the same fields.

    The scheduled time is checked before anything else, so a past or
    malformed time is always an InvalidDate.
    """
    time_field = f"appointments[{position}].scheduled_time"
    if isinstance(requested, FollowUpAppointment):
        require_future(requested.scheduled_time, now, time_field)
        return requested
    if not isinstance(requested, Mapping):
        raise InvalidInput(f"appointments[{position}] must be an appointment, got {requested!r}")

    data = dict(requested)
    require_future(data.get("scheduled_time"), now, time_field)
    for ref_field in ("provider_ref", "location_ref"):
        if ref_field in data:
            data[ref_field] = to_ref(data[ref_field], f"appointments[{position}].{ref_field}")
    try:
        return FollowUpAppointment.model_validate(data)
    except ValidationError as e:
        raise InvalidInput(f"appointments[{position}] is invalid: {e.errors()[0]['msg']}") from None
