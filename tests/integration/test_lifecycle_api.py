# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Integration tests for the lifecycle API endpoints.

The application runs against a SQLite record store and in-memory
collaborators.
"""

import pytest
from fastapi.testclient import TestClient

from src.api import create_app
from src.core.config import clear_settings_cache
from src.models.lifecycle import ExamResult
from tests.conftest import SOURCE_CLASS, SOURCE_YEAR, TARGET_CLASS, TARGET_YEAR
from tests.fakes import member

PROMOTIONS = "/api/v1/promotions"


@pytest.fixture
def client(monkeypatch, tmp_path, collaborators, loaded_roster):
    """Create test client with the lifespan running."""
    monkeypatch.setenv("ENVIRONMENT", "test")
    monkeypatch.setenv("LIFECYCLE_DB_URL", f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
    monkeypatch.setenv("LIFECYCLE_DB_CREATE_SCHEMA", "true")
    clear_settings_cache()

    with TestClient(create_app(collaborators=collaborators)) as test_client:
        yield test_client


def _create_batch(client: TestClient) -> dict:
    response = client.post(
        f"{PROMOTIONS}/batches",
        json={"actor": "registrar", "source_class": SOURCE_CLASS, "source_year": SOURCE_YEAR},
    )
    assert response.status_code == 201
    return response.json()


def _set_target(client: TestClient, batch: dict) -> dict:
    response = client.put(
        f"{PROMOTIONS}/batches/{batch['id']}/target",
        json={
            "actor": "registrar",
            "version": batch["version"],
            "target_class": TARGET_CLASS,
            "target_year": TARGET_YEAR,
        },
    )
    assert response.status_code == 200
    return response.json()


class TestLifecycleAPIRouting:
    """Tests for route registration."""

    def test_routes_registered(self, client):
        routes = client.app.openapi()["paths"]

        assert "/health" in routes
        assert f"{PROMOTIONS}/batches" in routes
        assert f"{PROMOTIONS}/batches/{{batch_id}}/execute" in routes
        assert "/api/v1/alumni/bulk-archive" in routes
        assert "/api/v1/alumni/students/{student_id}/reactivate" in routes
        assert "/api/v1/audit" in routes


class TestPromotionEndpoints:
    """End-to-end promotion flow over HTTP."""

    def test_promotion_flow(self, client, fee, notifier):
        batch = _create_batch(client)
        assert batch["status"] == "draft"
        assert batch["summary"] == {"total": 7, "promoting": 4, "retained": 3, "conditional": 0}

        batch = _set_target(client, batch)
        batch_id = batch["id"]

        response = client.post(
            f"{PROMOTIONS}/batches/{batch_id}/selection/toggle",
            json={"actor": "registrar", "version": batch["version"], "student_id": "S3"},
        )
        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "invalid_state"

        response = client.post(
            f"{PROMOTIONS}/batches/{batch_id}/overrides",
            json={
                "actor": "principal",
                "version": batch["version"],
                "student_id": "S5",
                "reason": "   ",
            },
        )
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "empty_reason"

        response = client.post(
            f"{PROMOTIONS}/batches/{batch_id}/overrides",
            json={
                "actor": "principal",
                "version": batch["version"],
                "student_id": "S5",
                "reason": "Medical exemption",
            },
        )
        assert response.status_code == 201
        assert response.json()["approved_by"] == "principal"

        response = client.post(
            f"{PROMOTIONS}/batches/{batch_id}/confirm",
            json={"actor": "principal", "version": batch["version"]},
        )
        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "conflict"

        batch = client.get(f"{PROMOTIONS}/batches/{batch_id}").json()
        response = client.post(
            f"{PROMOTIONS}/batches/{batch_id}/confirm",
            json={"actor": "principal", "version": batch["version"]},
        )
        assert response.status_code == 200
        batch = response.json()
        assert batch["status"] == "confirmed"
        rolls = sorted(c["proposed_roll"] for c in batch["candidates"] if c["selected_for_batch"])
        assert rolls == [13, 14, 15, 16, 17]

        preview = client.get(f"{PROMOTIONS}/batches/{batch_id}/capacity").json()
        assert preview["projected_enrollment"] == 17
        assert preview["is_over_capacity"] is False

        response = client.post(
            f"{PROMOTIONS}/batches/{batch_id}/execute",
            json={"actor": "principal", "version": batch["version"]},
        )
        assert response.status_code == 200
        result = response.json()
        assert result["outcome"] == "executed"
        assert sorted(result["promoted_student_ids"]) == ["S1", "S2", "S4", "S5", "S7"]
        assert sorted(result["retained_student_ids"]) == ["S3", "S6"]
        assert len(fee.assigned) == 5
        assert len(notifier.promotion_notices) == 5

        response = client.post(
            f"{PROMOTIONS}/batches/{batch_id}/execute",
            json={"actor": "principal", "version": result["version"]},
        )
        assert response.status_code == 200
        assert response.json()["outcome"] == "already_executed"
        assert len(fee.assigned) == 5

        overrides = client.get(f"{PROMOTIONS}/students/S5/overrides").json()
        assert [o["reason"] for o in overrides] == ["Medical exemption"]

    def test_over_capacity_confirm(self, client, capacity):
        capacity.set_class(TARGET_CLASS, TARGET_YEAR, capacity=15, enrolled=12)
        batch = _set_target(client, _create_batch(client))

        response = client.post(
            f"{PROMOTIONS}/batches/{batch['id']}/confirm",
            json={"actor": "principal", "version": batch["version"]},
        )

        assert response.status_code == 409
        detail = response.json()["detail"]
        assert detail["code"] == "capacity_exceeded"
        assert detail["projected"] == 16
        assert detail["capacity"] == 15

    def test_unknown_batch(self, client):
        response = client.get(f"{PROMOTIONS}/batches/does-not-exist")

        assert response.status_code == 404

    def test_request_validation(self, client):
        response = client.post(
            f"{PROMOTIONS}/batches/anything/execute",
            json={"actor": "principal", "version": 0},
        )

        assert response.status_code == 422

    def test_reject(self, client):
        batch = _create_batch(client)

        response = client.post(
            f"{PROMOTIONS}/batches/{batch['id']}/reject",
            json={"actor": "registrar", "version": batch["version"], "reason": "Wrong cohort"},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "rejected"
        assert _create_batch(client)["id"] != batch["id"]


class TestAlumniEndpoints:
    """Archive and reactivation over HTTP."""

    def test_archive_and_reactivate(self, client, roster):
        roster.set_cohort(
            "10",
            "2024-2025",
            [member("G1", 90, ExamResult.PASS, roll=1), member("G2", 85, ExamResult.PASS, roll=2)],
        )

        response = client.post(
            "/api/v1/alumni/bulk-archive",
            json={
                "actor": "registrar",
                "source_class": "10",
                "source_year": "2024-2025",
                "exit_status": "graduated",
                "expected_count": 3,
            },
        )
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "count_mismatch"

        response = client.post(
            "/api/v1/alumni/bulk-archive",
            json={
                "actor": "registrar",
                "source_class": "10",
                "source_year": "2024-2025",
                "exit_status": "graduated",
                "expected_count": 2,
            },
        )
        assert response.status_code == 200
        assert response.json()["alumni_batch"] == "2025"

        alumni = client.get("/api/v1/alumni", params={"batch_year": "2025"}).json()
        assert alumni["total"] == 2

        response = client.post(
            "/api/v1/alumni/students/G1/reactivate",
            json={"actor": "principal", "reason": ""},
        )
        assert response.status_code == 422

        response = client.post(
            "/api/v1/alumni/students/G1/reactivate",
            json={"actor": "principal", "reason": "re-enrolled"},
        )
        assert response.status_code == 200
        assert response.json()["record"]["status"] == "eligible"

        response = client.post(
            "/api/v1/alumni/students/G1/reactivate",
            json={"actor": "principal", "reason": "again"},
        )
        assert response.status_code == 409

        directory = client.get(
            "/api/v1/alumni", params={"include_reactivated": "true", "search": "G1"}
        ).json()
        assert directory["total"] == 1
        entry_id = directory["items"][0]["id"]
        assert client.get(f"/api/v1/alumni/{entry_id}").json()["restored_by"] == "principal"


class TestAuditAndHealthEndpoints:
    """Audit log and health checks."""

    def test_audit_log(self, client):
        batch = _create_batch(client)
        _set_target(client, batch)

        response = client.get("/api/v1/audit", params={"entity_id": batch["id"]})

        assert response.status_code == 200
        actions = [item["action"] for item in response.json()["items"]]
        assert actions == ["select-cohort", "set-target"]

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["environment"] == "test"
        assert body["components"]["database"]["status"] == "healthy"

    def test_ready(self, client):
        response = client.get("/ready")

        assert response.json()["ready"] is True
