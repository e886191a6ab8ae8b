"""
Discharge Planning Agent - Error Taxonomy

Every rejected operation raises exactly one of the errors below. The set is
closed and each kind carries a stable numeric code, so external consumers
(HTTP clients, event processors, the legacy ledger integration) can match on
the number rather than on the message text.

    ┌──────────────────────┬──────┬──────────────────────────────────────────┐
    │ Kind                 │ Code │ Raised when                              │
    ├──────────────────────┼──────┼──────────────────────────────────────────┤
    │ PLAN_NOT_FOUND       │  1   │ plan_id was never issued                 │
    │ INVALID_DATE         │  2   │ date ordering / future-date rule broken  │
    │ INVALID_SCORE        │  3   │ score outside 0-100                      │
    │ INVALID_INPUT        │  4   │ empty batch, zero counts, unknown code   │
    │ ALREADY_COMPLETED    │  5   │ plan discharge was already completed     │
    │ UNAUTHORIZED         │  6   │ caller rejected by the authorizer        │
    └──────────────────────┴──────┴──────────────────────────────────────────┘

None of these are retried internally. Raising inside an invocation discards
everything the invocation staged.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Dict, Optional


class ErrorKind(IntEnum):
    """Closed set of rejection reasons with their wire codes."""
    PLAN_NOT_FOUND = 1
    INVALID_DATE = 2
    INVALID_SCORE = 3
    INVALID_INPUT = 4
    ALREADY_COMPLETED = 5
    UNAUTHORIZED = 6

    @property
    def slug(self) -> str:
        return self.name.lower()


class DischargeWorkflowError(Exception):
    """
    Base class for all rejected discharge workflow operations.

    Attributes:
        kind: The violated precondition
        plan_id: Plan the operation targeted, when there was one
    """

    kind: ErrorKind

    def __init__(self, message: str, plan_id: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.plan_id = plan_id

    @property
    def code(self) -> int:
        return int(self.kind)

    def to_dict(self) -> Dict[str, object]:
        """Serialize for API error bodies."""
        return {
            "error": self.kind.slug,
            "code": self.code,
            "message": self.message,
            "plan_id": self.plan_id,
        }


class PlanNotFound(DischargeWorkflowError):
    kind = ErrorKind.PLAN_NOT_FOUND


class InvalidDate(DischargeWorkflowError):
    kind = ErrorKind.INVALID_DATE


class InvalidScore(DischargeWorkflowError):
    kind = ErrorKind.INVALID_SCORE


class InvalidInput(DischargeWorkflowError):
    kind = ErrorKind.INVALID_INPUT


class AlreadyCompleted(DischargeWorkflowError):
    kind = ErrorKind.ALREADY_COMPLETED


class Unauthorized(DischargeWorkflowError):
    kind = ErrorKind.UNAUTHORIZED

