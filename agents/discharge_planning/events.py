"""
Discharge Planning Agent - Notification Events

Every accepted operation publishes one event (one per appointment when a
batch of follow-ups is scheduled). Events are published only after the
operation's writes have been committed; a rejected operation publishes
nothing.

Topics keep the two-part form used by the downstream consumers:

    ("discharge", "init")      plan_id, patient_ref, caller
    ("discharge", "ready")     plan_id, total_score, is_ready
    ("discharge", "order")     plan_id, order_type, order_details_ref
    ("discharge", "homeheal")  plan_id, agency_ref, service_type
    ("discharge", "dme")       plan_id, equipment_type, supplier_ref
    ("discharge", "appt")      plan_id, appointment_id, provider_ref
    ("discharge", "edu")       plan_id, education_topic, completed
    ("discharge", "snf")       plan_id, snf_ref, bed_reserved
    ("discharge", "complete")  plan_id, actual_discharge_date
    ("discharge", "risk")      plan_id, risk_score

Sinks are fire-and-forget: a failing sink is logged, it never undoes the
operation that produced the event.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Protocol, Sequence, Tuple

logger = logging.getLogger(__name__)

TOPIC_NAMESPACE = "discharge"


class EventType(str, Enum):
    PLAN_INITIATED = "init"
    READINESS_ASSESSED = "ready"
    ORDER_CREATED = "order"
    HOME_HEALTH_ARRANGED = "homeheal"
    DME_ORDERED = "dme"
    APPOINTMENT_SCHEDULED = "appt"
    EDUCATION_PROVIDED = "edu"
    SNF_COORDINATED = "snf"
    DISCHARGE_COMPLETED = "complete"
    RISK_TRACKED = "risk"


@dataclass(frozen=True)
class DischargeEvent:
    """
    A notification about one committed change to a discharge plan.

    Attributes:
        event_type: What happened
        plan_id: The discharge plan the change belongs to
        timestamp: Clock reading of the invocation that produced it
        data: Operation-specific fields (codes as ints, refs as hex)
    """
    event_type: EventType
    plan_id: int
    timestamp: int
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def topic(self) -> Tuple[str, str]:
        return (TOPIC_NAMESPACE, self.event_type.value)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "topic": list(self.topic),
            "event_type": self.event_type.name,
            "plan_id": self.plan_id,
            "timestamp": self.timestamp,
            "data": dict(self.data),
        }


class EventSink(Protocol):
    def publish(self, event: DischargeEvent) -> None: ...


class LoggingEventSink:
    """Writes each event as one JSON log line on the ``events`` logger."""

    def __init__(self, logger_name: str = "discharge_planning.events") -> None:
        self._logger = logging.getLogger(logger_name)

    def publish(self, event: DischargeEvent) -> None:
        self._logger.info(json.dumps(event.to_dict(), sort_keys=True))


class InMemoryEventSink:
    """Keeps published events in order; used by tests and polling hosts."""

    def __init__(self) -> None:
        self.events: List[DischargeEvent] = []

    def publish(self, event: DischargeEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: EventType) -> List[DischargeEvent]:
        return [e for e in self.events if e.event_type == event_type]

    def clear(self) -> None:
        self.events.clear()


def sink_for(name: str) -> EventSink:
    if name == "memory":
        return InMemoryEventSink()
    return LoggingEventSink()


def publish_all(sink: EventSink, events: Sequence[DischargeEvent]) -> None:
    """Publish committed events, logging (not raising) sink failures."""
    for event in events:
        try:
            sink.publish(event)
        except Exception:
            logger.exception(
                f"Event sink failed for {event.event_type.name} on plan {event.plan_id}"
            )
