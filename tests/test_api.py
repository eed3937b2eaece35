"""
Tests for API endpoints in app/api/.

These tests verify the health, configuration, run control and automation
endpoints using the TestClient with the services patched out.
"""

from datetime import UTC, datetime, time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from app.errors import ConfigValidationError
from app.models.schemas import (
    FailureReason,
    ReservationConfig,
    RunResult,
    RunStage,
    RunState,
    RunStatus,
    RunType,
    Weekday,
)
from app.services.trigger_loop import TriggerLoop


@pytest.fixture
def test_client() -> TestClient:
    """Create a TestClient for the FastAPI app."""
    from app.main import app

    return TestClient(app)


@pytest.fixture
def sample_config() -> ReservationConfig:
    return ReservationConfig(
        id="cfg00001",
        name="Badminton evenings",
        facility_url="https://reservation.frontdesksuite.ca/rcfs/richcraftkanata",
        sport_name="Badminton",
        number_of_people=2,
        day_time_slots={Weekday.TUESDAY: [time(9, 30)], Weekday.THURSDAY: [time(19, 0)]},
    )


@pytest.fixture
def config_payload() -> dict:
    return {
        "name": "Badminton evenings",
        "facility_url": "https://reservation.frontdesksuite.ca/rcfs/richcraftkanata",
        "sport_name": "Badminton",
        "number_of_people": 2,
        "day_time_slots": {"tuesday": ["09:30"], "thursday": ["19:00"]},
    }


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    def test_health_check(self, test_client: TestClient) -> None:
        response = test_client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "service": "recbooker"}

    def test_root_endpoint(self, test_client: TestClient) -> None:
        response = test_client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["version"] == "0.1.0"
        assert data["endpoints"]["runs"] == "/runs/status"


class TestConfigurationEndpoints:
    """Tests for configuration CRUD endpoints."""

    def test_create_configuration(self, test_client: TestClient, config_payload: dict) -> None:
        with patch("app.api.configurations.database_service") as mock_service:
            mock_service.get_configuration = AsyncMock(return_value=None)
            mock_service.create_configuration = AsyncMock(side_effect=lambda c: c)

            response = test_client.post("/configurations/", json=config_payload)

            assert response.status_code == 201
            data = response.json()
            assert data["name"] == "Badminton evenings"
            assert len(data["id"]) == 8
            assert data["day_time_slots"]["tuesday"] == ["09:30:00"]

    def test_party_size_out_of_range_rejected(self, test_client: TestClient, config_payload: dict) -> None:
        config_payload["number_of_people"] = 3

        response = test_client.post("/configurations/", json=config_payload)

        assert response.status_code == 422

    def test_weekday_without_times_rejected(self, test_client: TestClient, config_payload: dict) -> None:
        config_payload["day_time_slots"]["friday"] = []

        response = test_client.post("/configurations/", json=config_payload)

        assert response.status_code == 422

    def test_get_configuration_not_found(self, test_client: TestClient) -> None:
        with patch("app.api.configurations.database_service") as mock_service:
            mock_service.get_configuration = AsyncMock(return_value=None)

            response = test_client.get("/configurations/missing1")

            assert response.status_code == 404

    def test_update_configuration_uses_path_id(
        self, test_client: TestClient, config_payload: dict
    ) -> None:
        with patch("app.api.configurations.database_service") as mock_service:
            mock_service.update_configuration = AsyncMock(side_effect=lambda c: c)

            response = test_client.put("/configurations/cfg00001", json=config_payload)

            assert response.status_code == 200
            assert response.json()["id"] == "cfg00001"

    def test_delete_configuration(self, test_client: TestClient) -> None:
        with patch("app.api.configurations.database_service") as mock_service:
            mock_service.delete_configuration = AsyncMock(return_value=True)

            response = test_client.delete("/configurations/cfg00001")

            assert response.status_code == 204

    def test_next_trigger(self, test_client: TestClient, sample_config: ReservationConfig) -> None:
        with patch("app.api.configurations.database_service") as mock_service:
            mock_service.get_configuration = AsyncMock(return_value=sample_config)

            response = test_client.get("/configurations/cfg00001/next-trigger")

            assert response.status_code == 200
            data = response.json()
            assert data["schedule"] == "Tue 9:30 AM • Thu 7:00 PM"
            assert data["trigger_at"] is not None
            assert data["weekday"] in ("tuesday", "thursday")

    def test_next_trigger_for_disabled_configuration(
        self, test_client: TestClient, sample_config: ReservationConfig
    ) -> None:
        disabled = sample_config.model_copy(update={"is_enabled": False})
        with patch("app.api.configurations.database_service") as mock_service:
            mock_service.get_configuration = AsyncMock(return_value=disabled)

            response = test_client.get("/configurations/cfg00001/next-trigger")

            assert response.status_code == 200
            assert response.json()["trigger_at"] is None


class TestRunEndpoints:
    """Tests for run control endpoints."""

    def test_get_status(self, test_client: TestClient) -> None:
        with patch("app.api.runs.automation_service") as mock_automation:
            mock_automation.orchestrator.status = RunStatus()

            response = test_client.get("/runs/status")

            assert response.status_code == 200
            assert response.json()["state"] == "idle"

    def test_start_run(self, test_client: TestClient, sample_config: ReservationConfig) -> None:
        running = RunStatus(
            state=RunState.RUNNING,
            config_id="cfg00001",
            config_name="Badminton evenings",
            run_type=RunType.MANUAL,
        )
        with (
            patch("app.api.runs.database_service") as mock_db,
            patch("app.api.runs.automation_service") as mock_automation,
        ):
            mock_db.get_configuration = AsyncMock(return_value=sample_config)
            mock_automation.orchestrator.run_now = MagicMock(return_value=True)
            mock_automation.orchestrator.status = running

            response = test_client.post("/runs/cfg00001")

            assert response.status_code == 202
            assert response.json()["state"] == "running"
            mock_automation.orchestrator.run_now.assert_called_once_with(sample_config)

    def test_start_run_while_busy_returns_409(
        self, test_client: TestClient, sample_config: ReservationConfig
    ) -> None:
        with (
            patch("app.api.runs.database_service") as mock_db,
            patch("app.api.runs.automation_service") as mock_automation,
        ):
            mock_db.get_configuration = AsyncMock(return_value=sample_config)
            mock_automation.orchestrator.run_now = MagicMock(return_value=False)
            mock_automation.orchestrator.status = RunStatus(
                state=RunState.RUNNING, config_name="Other config"
            )

            response = test_client.post("/runs/cfg00001")

            assert response.status_code == 409
            assert "Other config" in response.json()["detail"]

    def test_start_run_with_invalid_settings_returns_422(
        self, test_client: TestClient, sample_config: ReservationConfig
    ) -> None:
        with (
            patch("app.api.runs.database_service") as mock_db,
            patch("app.api.runs.automation_service") as mock_automation,
        ):
            mock_db.get_configuration = AsyncMock(return_value=sample_config)
            mock_automation.orchestrator.run_now = MagicMock(
                side_effect=ConfigValidationError(["Contact email is not configured"])
            )

            response = test_client.post("/runs/cfg00001")

            assert response.status_code == 422
            assert response.json()["detail"] == ["Contact email is not configured"]

    def test_start_run_unknown_configuration(self, test_client: TestClient) -> None:
        with patch("app.api.runs.database_service") as mock_db:
            mock_db.get_configuration = AsyncMock(return_value=None)

            response = test_client.post("/runs/missing1")

            assert response.status_code == 404

    def test_stop_run(self, test_client: TestClient) -> None:
        with patch("app.api.runs.automation_service") as mock_automation:
            mock_automation.orchestrator.stop = AsyncMock(return_value=True)
            mock_automation.orchestrator.status = RunStatus(
                state=RunState.FAILED, stage=RunStage.FAILED, reason="Cancelled during navigating: Run stopped"
            )

            response = test_client.post("/runs/stop")

            assert response.status_code == 200
            assert response.json()["state"] == "failed"

    def test_stop_when_idle_returns_409(self, test_client: TestClient) -> None:
        with patch("app.api.runs.automation_service") as mock_automation:
            mock_automation.orchestrator.stop = AsyncMock(return_value=False)

            response = test_client.post("/runs/stop")

            assert response.status_code == 409

    def test_history(self, test_client: TestClient) -> None:
        result = RunResult(
            success=False,
            message="Verification timeout during verifying_email: No code",
            config_id="cfg00001",
            reason=FailureReason.VERIFICATION_TIMEOUT,
            failed_stage=RunStage.VERIFYING_EMAIL,
            started_at=datetime(2025, 3, 9, 23, 0, tzinfo=UTC),
        )
        with patch("app.api.runs.database_service") as mock_db:
            mock_db.list_results = AsyncMock(return_value=[result])

            response = test_client.get("/runs/history?config_id=cfg00001&limit=10")

            assert response.status_code == 200
            assert response.json()[0]["reason"] == "verification_timeout"
            mock_db.list_results.assert_awaited_once_with(config_id="cfg00001", limit=10)


class TestAutomationEndpoints:
    """Tests for the global automation toggle."""

    def test_toggle_automation(self, test_client: TestClient) -> None:
        loop = TriggerLoop(AsyncMock(), MagicMock())
        with patch("app.api.automation.automation_service") as mock_automation:
            mock_automation.trigger_loop = loop

            assert test_client.get("/automation").json() == {"enabled": True}

            response = test_client.put("/automation", json={"enabled": False})

            assert response.status_code == 200
            assert response.json() == {"enabled": False}
            assert loop.enabled is False
