"""
Discharge Planning Agent - Plan Lifecycle and Validation Rules

================================================================================
LIFECYCLE
================================================================================

    create_plan                    complete_discharge (exactly once)
  ─────────────►  INITIATED  ─────────────────────────────────►  COMPLETED
                     │  ▲
                     └──┘  readiness, orders, home health, DME,
                           follow-ups, education, SNF, risk
                           (any order, any number of times)

There is no transition out of COMPLETED and no way to delete a plan.
Completing an already completed plan is rejected, never ignored.

================================================================================
VALIDATION RULES
================================================================================

Rules reject; they never clamp or correct. Each one maps onto exactly one
error kind so the caller knows which precondition was violated.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

from .codes import DischargeDestination
from .errors import AlreadyCompleted, InvalidDate, InvalidInput, InvalidScore, PlanNotFound
from .records import DischargeCompletion, DischargePlan, PlanState
from .storage import MAX_U64, StorageKey

logger = logging.getLogger(__name__)


# =============================================================================
# VALIDATION RULES
# =============================================================================

def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def require_timestamp(value: Any, name: str) -> int:
    if not _is_int(value) or not 0 <= value <= MAX_U64:
        raise InvalidDate(f"{name} must be a non-negative integer timestamp, got {value!r}")
    return value


def require_admission_window(admission_date: int, expected_discharge_date: int) -> None:
    """Expected discharge must fall strictly after admission."""
    require_timestamp(admission_date, "admission_date")
    require_timestamp(expected_discharge_date, "expected_discharge_date")
    if expected_discharge_date <= admission_date:
        raise InvalidDate(
            f"Expected discharge ({expected_discharge_date}) must be after "
            f"admission ({admission_date})"
        )


def require_future(value: Any, now: int, name: str) -> int:
    """The target time must be strictly later than the invocation's clock reading."""
    require_timestamp(value, name)
    if value <= now:
        raise InvalidDate(f"{name} ({value}) must be in the future (now={now})")
    return value


def require_percentage(value: Any, name: str) -> int:
    if not _is_int(value) or not 0 <= value <= 100:
        raise InvalidScore(f"{name} must be between 0 and 100, got {value!r}")
    return value


def require_positive(value: Any, name: str) -> int:
    if not _is_int(value) or value <= 0:
        raise InvalidInput(f"{name} must be a positive integer, got {value!r}")
    return value


# =============================================================================
# LIFECYCLE
# =============================================================================

class PlanRecords(Protocol):
    def get(self, key: StorageKey) -> Optional[Any]: ...

    def has(self, key: StorageKey) -> bool: ...

    def set(self, key: StorageKey, value: Any) -> None: ...


class PlanLifecycle:
    """
    State machine of a single discharge plan, read and advanced through a
    record view (normally the invocation's StagedTransaction).
    """

    def __init__(self, records: PlanRecords) -> None:
        self.records = records

    def exists(self, plan_id: Any) -> bool:
        if not _is_int(plan_id) or not 0 <= plan_id <= MAX_U64:
            return False
        return self.records.has(StorageKey.plan(plan_id))

    def require_plan(self, plan_id: Any) -> DischargePlan:
        """
        Load a plan that must exist.

        Raises:
            PlanNotFound: If ``plan_id`` was never issued
        """
        plan = None
        if _is_int(plan_id) and 0 <= plan_id <= MAX_U64:
            plan = self.records.get(StorageKey.plan(plan_id))
        if plan is None:
            raise PlanNotFound(f"Discharge plan {plan_id!r} not found", plan_id=plan_id)
        return plan

    def state(self, plan_id: Any) -> PlanState:
        return self.require_plan(plan_id).state

    def require_initiated(self, plan_id: Any) -> DischargePlan:
        """
        Load a plan that must still be INITIATED.

        Raises:
            PlanNotFound: If the plan does not exist
            AlreadyCompleted: If the plan already left INITIATED
        """
        plan = self.require_plan(plan_id)
        if plan.state is PlanState.COMPLETED or self.records.has(StorageKey.completed(plan_id)):
            raise AlreadyCompleted(
                f"Discharge plan {plan_id} is already completed", plan_id=plan_id
            )
        return plan

    def initiate(
        self,
        plan_id: int,
        patient_ref: str,
        admission_date: int,
        expected_discharge_date: int,
        discharge_destination: DischargeDestination,
        now: int,
    ) -> DischargePlan:
        """Enter INITIATED. Only plan creation calls this, with a fresh ID."""
        plan = DischargePlan(
            discharge_plan_id=plan_id,
            patient_ref=patient_ref,
            admission_date=admission_date,
            expected_discharge_date=expected_discharge_date,
            discharge_destination=discharge_destination,
            created_at=now,
            is_completed=False,
        )
        self.records.set(StorageKey.plan(plan_id), plan)
        return plan

    def complete(
        self,
        plan_id: int,
        actual_discharge_date: int,
        discharge_summary_ref: str,
    ) -> DischargeCompletion:
        """
        INITIATED -> COMPLETED, writing the write-once completion record.

        Raises:
            PlanNotFound: If the plan does not exist
            AlreadyCompleted: If the plan already left INITIATED
        """
        plan = self.require_initiated(plan_id)
        completion = DischargeCompletion(
            actual_discharge_date=actual_discharge_date,
            discharge_summary_ref=discharge_summary_ref,
        )
        self.records.set(StorageKey.plan(plan_id), plan.model_copy(update={"is_completed": True}))
        self.records.set(StorageKey.completed(plan_id), completion)
        logger.debug(f"Plan {plan_id} moved to {PlanState.COMPLETED.value}")
        return completion
