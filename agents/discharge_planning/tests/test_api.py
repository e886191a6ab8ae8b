"""
Discharge Planning Agent - API Unit Tests

Tests for the FastAPI endpoints using TestClient.
Run with: pytest agents/discharge_planning/tests/test_api.py -v
"""

import pytest

CALLER = "case-manager-1"
HEADERS = {"X-Caller-Id": CALLER}


def ref(n: int) -> str:
    return "%064x" % n


@pytest.fixture
def created_plan(client):
    """Create a plan through the API and return its ID."""
    response = client.post(
        "/plans",
        json={
            "patient_ref": ref(1),
            "admission_date": 500,
            "expected_discharge_date": 5_000,
            "discharge_destination": 0,
        },
        headers=HEADERS,
    )
    assert response.status_code == 201
    return response.json()["plan_id"]


class TestHealthEndpoint:
    """Tests for the /health endpoint."""

    def test_health_check_returns_200(self, client):
        """Health endpoint should return 200 OK."""
        response = client.get("/health")
        assert response.status_code == 200

    def test_health_check_returns_valid_structure(self, client):
        """Health endpoint should return expected JSON structure."""
        data = client.get("/health").json()

        assert data["status"] == "healthy"
        assert "service" in data
        assert "version" in data
        assert "timestamp" in data
        assert data["checks"]["record_store"]["status"] == "ok"


class TestPlanEndpoints:
    """Tests for creating and reading plans."""

    def test_create_plan_returns_id_and_state(self, client):
        """First plan gets ID 0 and starts INITIATED."""
        response = client.post(
            "/plans",
            json={"patient_ref": ref(1), "admission_date": 500, "expected_discharge_date": 5_000},
            headers=HEADERS,
        )
        assert response.status_code == 201
        assert response.json() == {"plan_id": 0, "state": "INITIATED"}

    def test_get_plan_summary(self, client, created_plan):
        """Summary should echo the stored plan."""
        response = client.get(f"/plans/{created_plan}")
        data = response.json()

        assert response.status_code == 200
        assert data["state"] == "INITIATED"
        assert data["plan"]["patient_ref"] == ref(1)
        assert data["orders"] == []
        assert data["completion"] is None

    def test_unknown_plan_returns_404(self, client):
        """Missing plans map onto 404 with the stable error code."""
        response = client.get("/plans/12")
        assert response.status_code == 404
        assert response.json()["code"] == 1
        assert response.json()["error"] == "plan_not_found"

    def test_bad_dates_return_400(self, client):
        """Expected discharge before admission is an InvalidDate."""
        response = client.post(
            "/plans",
            json={"patient_ref": ref(1), "admission_date": 5_000, "expected_discharge_date": 500},
            headers=HEADERS,
        )
        assert response.status_code == 400
        assert response.json()["code"] == 2

    def test_malformed_body_returns_422(self, client):
        """Shape errors are reported by request validation."""
        response = client.post("/plans", json={"patient_ref": ref(1)}, headers=HEADERS)
        assert response.status_code == 422

    def test_missing_caller_returns_403(self, client):
        """Mutations without a caller identity are unauthorized."""
        response = client.post(
            "/plans",
            json={"patient_ref": ref(1), "admission_date": 500, "expected_discharge_date": 5_000},
        )
        assert response.status_code == 403
        assert response.json()["code"] == 6


class TestWorkflowEndpoints:
    """Tests for the per-operation endpoints."""

    def test_assess_readiness(self, client, created_plan):
        response = client.post(
            f"/plans/{created_plan}/readiness",
            json={
                "medical_stability_score": 80,
                "functional_status_score": 75,
                "support_system_score": 85,
                "education_completion_score": 70,
            },
            headers=HEADERS,
        )
        assert response.status_code == 200
        assert response.json()["total_score"] == 77
        assert response.json()["is_ready"] is True

    def test_invalid_score_returns_400(self, client, created_plan):
        response = client.post(
            f"/plans/{created_plan}/readiness",
            json={
                "medical_stability_score": 180,
                "functional_status_score": 75,
                "support_system_score": 85,
                "education_completion_score": 70,
            },
            headers=HEADERS,
        )
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_score"

    def test_create_order(self, client, created_plan):
        response = client.post(
            f"/plans/{created_plan}/orders",
            json={"order_type": 3, "order_details_ref": ref(2)},
            headers=HEADERS,
        )
        assert response.status_code == 201
        assert response.json()["order_type"] == 3

    def test_unknown_order_type_is_accepted(self, client, created_plan):
        """Codes missing from the published table are stored as given."""
        response = client.post(
            f"/plans/{created_plan}/orders",
            json={"order_type": 7, "order_details_ref": ref(2)},
            headers=HEADERS,
        )
        assert response.status_code == 201
        assert response.json()["order_type"] == 7
        assert client.get(f"/plans/{created_plan}").json()["orders"][0]["order_type"] == 7

    def test_negative_code_fails_request_validation(self, client, created_plan):
        """Codes must be unsigned 32-bit integers."""
        response = client.post(
            f"/plans/{created_plan}/orders",
            json={"order_type": -1, "order_details_ref": ref(2)},
            headers=HEADERS,
        )
        assert response.status_code == 422

    def test_arrange_home_health_rejects_zero_frequency(self, client, created_plan):
        response = client.put(
            f"/plans/{created_plan}/home-health",
            json={
                "agency_ref": ref(3),
                "service_type": 0,
                "frequency_per_week": 0,
                "duration_weeks": 4,
            },
            headers=HEADERS,
        )
        assert response.status_code == 400
        assert response.json()["code"] == 4

    def test_order_dme(self, client, created_plan, clock):
        response = client.post(
            f"/plans/{created_plan}/dme-orders",
            json={"equipment_type": 1, "supplier_ref": ref(4), "delivery_date": clock.now() + 60},
            headers=HEADERS,
        )
        assert response.status_code == 201
        assert response.json()["ordered_at"] == clock.now()

    def test_schedule_appointments(self, client, created_plan, clock):
        appointment = {
            "provider_ref": ref(5),
            "specialty": 1,
            "scheduled_time": clock.now() + 600,
            "location_ref": ref(6),
        }
        response = client.post(
            f"/plans/{created_plan}/appointments",
            json={"appointments": [appointment, appointment]},
            headers=HEADERS,
        )
        assert response.status_code == 201
        assert response.json() == {"plan_id": created_plan, "appointment_ids": [0, 1]}

    def test_empty_appointment_batch_returns_400(self, client, created_plan):
        response = client.post(
            f"/plans/{created_plan}/appointments",
            json={"appointments": []},
            headers=HEADERS,
        )
        assert response.status_code == 400

    def test_provide_education_and_coordinate_snf(self, client, created_plan, clock):
        education = client.post(
            f"/plans/{created_plan}/education",
            json={"education_topic": 2, "materials_ref": ref(7), "completed": True},
            headers=HEADERS,
        )
        snf = client.put(
            f"/plans/{created_plan}/snf-coordination",
            json={
                "snf_ref": ref(8),
                "bed_reserved": True,
                "transfer_date": clock.now() + 3_600,
                "medical_summary_ref": ref(9),
            },
            headers=HEADERS,
        )
        assert education.status_code == 201
        assert snf.status_code == 200
        assert snf.json()["bed_reserved"] is True

    def test_track_risk(self, client, created_plan):
        response = client.put(
            f"/plans/{created_plan}/readmission-risk",
            json={"risk_factors": 5, "risk_score": 40},
            headers=HEADERS,
        )
        assert response.status_code == 200
        assert response.json()["risk_factors"] == 5

    def test_complete_twice_returns_409(self, client, created_plan):
        body = {"actual_discharge_date": 4_800, "discharge_summary_ref": ref(10)}
        first = client.post(f"/plans/{created_plan}/completion", json=body, headers=HEADERS)
        second = client.post(f"/plans/{created_plan}/completion", json=body, headers=HEADERS)

        assert first.status_code == 200
        assert second.status_code == 409
        assert second.json()["code"] == 5
        assert client.get(f"/plans/{created_plan}").json()["state"] == "COMPLETED"


class TestCodesEndpoint:
    """Tests for the /codes endpoint."""

    def test_lists_all_code_tables(self, client):
        data = client.get("/codes").json()

        assert set(data) == {
            "discharge_destination",
            "order_type",
            "home_health_service",
            "equipment_type",
            "specialty",
            "education_topic",
            "risk_factor",
        }
        assert {"code": 3, "name": "HOSPITAL_BED"} in data["equipment_type"]
        assert [entry["code"] for entry in data["risk_factor"]] == [1, 2, 4, 8]
