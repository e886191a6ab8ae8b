"""
Shared fixtures for the discharge planning tests.

Every test gets its own in-memory SQLite record store driven by a manual
clock, so time only moves when a test moves it.
"""

import pytest
from fastapi.testclient import TestClient

from agents.discharge_planning.api import app, app_state
from agents.discharge_planning.auth import AllowListAuthorizer
from agents.discharge_planning.clock import ManualClock
from agents.discharge_planning.events import InMemoryEventSink
from agents.discharge_planning.storage import RecordStore
from agents.discharge_planning.workflow import DischargeWorkflow

CALLER = "case-manager-1"
START_TIME = 1_000


def ref(n: int) -> str:
    """A distinct 32-byte reference for every integer."""
    return "%064x" % n


@pytest.fixture
def clock():
    return ManualClock(START_TIME)


@pytest.fixture
def store(clock):
    store = RecordStore.from_url("sqlite://", clock=clock)
    yield store
    store.engine.dispose()


@pytest.fixture
def sink():
    return InMemoryEventSink()


@pytest.fixture
def workflow(store, sink):
    return DischargeWorkflow(store, events=sink)


@pytest.fixture
def guarded_workflow(store, sink):
    """Workflow that only accepts CALLER."""
    return DischargeWorkflow(store, authorizer=AllowListAuthorizer([CALLER]), events=sink)


@pytest.fixture
def plan_id(workflow):
    """A freshly created plan: admitted at 500, expected out at 5000."""
    return workflow.create_plan(CALLER, ref(1), 500, 5_000, 0)


@pytest.fixture
def client(workflow):
    """Test client bound to the per-test workflow."""
    app_state.workflow = workflow
    app_state.operations_performed = 0
    yield TestClient(app)
    app_state.workflow = None
