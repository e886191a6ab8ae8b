"""
Discharge Planning Agent
========================

System of record for hospital discharge plans, from admission to the moment
the patient leaves.

A plan is opened at admission (INITIATED) and closed exactly once when the
discharge happens (COMPLETED). In between, the care team records:
1. Readiness assessments (four sub-scores, floored mean, ready at >= 75)
2. Discharge orders, DME orders and follow-up appointments (append-only)
3. Home health, SNF coordination and readmission risk (latest wins)
4. Patient and family education

Key Design Principle:
    Every operation is all-or-nothing. A rejected call leaves no partial
    records, consumes no IDs and publishes no events.

Components:
-----------
- config: Environment configuration (DISCHARGE_* variables)
- storage: RecordStore, StagedTransaction, StorageKey
- workflow: DischargeWorkflow, the operation entry points
- api: FastAPI REST endpoints

Usage Example:
--------------
```python
from agents.discharge_planning import DischargeWorkflow, ManualClock, RecordStore

store = RecordStore.from_url("sqlite://", clock=ManualClock(100))
workflow = DischargeWorkflow(store)
plan_id = workflow.create_plan("case-manager-1", "ab" * 32, 1000, 5000, 0)
ids = workflow.schedule_appointments("case-manager-1", plan_id, [
    {"provider_ref": "cd" * 32, "specialty": 1,
     "scheduled_time": 9000, "location_ref": "ef" * 32},
])
workflow.complete_discharge("case-manager-1", plan_id, 5200, "12" * 32)
print(workflow.get_plan_summary(plan_id).state)
```

Port: 8004

Version: 2.0.0
"""

from .clock import ManualClock, SystemClock
from .errors import (
    AlreadyCompleted,
    DischargeWorkflowError,
    ErrorKind,
    InvalidDate,
    InvalidInput,
    InvalidScore,
    PlanNotFound,
    Unauthorized,
)
from .records import PlanState, PlanSummary
from .storage import RecordStore, StorageKey
from .workflow import DischargeWorkflow

__version__ = "2.0.0"
__author__ = "Hospital AI Team"

__all__ = [
    "AlreadyCompleted",
    "DischargeWorkflow",
    "DischargeWorkflowError",
    "ErrorKind",
    "InvalidDate",
    "InvalidInput",
    "InvalidScore",
    "ManualClock",
    "PlanNotFound",
    "PlanState",
    "PlanSummary",
    "RecordStore",
    "StorageKey",
    "SystemClock",
    "Unauthorized",
]
