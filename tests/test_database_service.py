"""
Tests for DatabaseService in app/services/database_service.py.

These tests use an in-memory SQLite database to verify actual SQL behavior
for configuration CRUD and run history.
"""

from datetime import UTC, datetime, time

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from app.models.database import Base
from app.models.schemas import (
    FailureReason,
    ReservationConfig,
    RunResult,
    RunStage,
    RunType,
    Weekday,
)
from app.services.database_service import DatabaseService


@pytest_asyncio.fixture
async def test_engine():
    """Create an in-memory SQLite engine for testing."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def database_service(test_engine, monkeypatch):
    """Create a DatabaseService that uses the test database."""
    test_session_local = sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)
    monkeypatch.setattr("app.services.database_service.AsyncSessionLocal", test_session_local)
    return DatabaseService()


@pytest.fixture
def sample_config() -> ReservationConfig:
    return ReservationConfig(
        id="cfg00001",
        name="Pickleball mornings",
        facility_url="https://reservation.frontdesksuite.ca/rcfs/cardelrec",
        sport_name="Pickleball",
        number_of_people=2,
        day_time_slots={
            Weekday.MONDAY: [time(8, 30), time(7, 0)],
            Weekday.THURSDAY: [time(19, 0)],
        },
    )


def make_result(config_id: str, finished_minute: int, success: bool = True) -> RunResult:
    return RunResult(
        success=success,
        message="Reserved" if success else "Element not found during selecting_sport: failed",
        details={"facility": "Cardelrec", "sport": "Pickleball", "time": "7:00 AM"},
        config_id=config_id,
        config_name="Pickleball mornings",
        run_type=RunType.AUTOMATIC,
        reason=None if success else FailureReason.ELEMENT_NOT_FOUND,
        failed_stage=None if success else RunStage.SELECTING_SPORT,
        started_at=datetime(2025, 3, 9, 23, 0, tzinfo=UTC),
        finished_at=datetime(2025, 3, 9, 23, finished_minute, tzinfo=UTC),
    )


class TestConfigurationCRUD:
    """Tests for configuration persistence."""

    @pytest.mark.asyncio
    async def test_create_and_get_round_trip(
        self, database_service: DatabaseService, sample_config: ReservationConfig
    ) -> None:
        """Slots survive storage as JSON, sorted and typed."""
        await database_service.create_configuration(sample_config)

        loaded = await database_service.get_configuration("cfg00001")

        assert loaded == sample_config
        assert loaded.times_for(Weekday.MONDAY) == [time(7, 0), time(8, 30)]

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, database_service: DatabaseService) -> None:
        assert await database_service.get_configuration("nope") is None

    @pytest.mark.asyncio
    async def test_list_enabled_only(
        self, database_service: DatabaseService, sample_config: ReservationConfig
    ) -> None:
        await database_service.create_configuration(sample_config)
        await database_service.create_configuration(
            sample_config.model_copy(update={"id": "cfg00002", "is_enabled": False})
        )

        enabled = await database_service.list_enabled_configurations()
        everything = await database_service.list_configurations()

        assert [c.id for c in enabled] == ["cfg00001"]
        assert [c.id for c in everything] == ["cfg00001", "cfg00002"]

    @pytest.mark.asyncio
    async def test_update_replaces_fields(
        self, database_service: DatabaseService, sample_config: ReservationConfig
    ) -> None:
        await database_service.create_configuration(sample_config)
        edited = sample_config.model_copy(
            update={"sport_name": "Badminton", "day_time_slots": {Weekday.SATURDAY: [time(10, 0)]}}
        )

        updated = await database_service.update_configuration(edited)

        assert updated.sport_name == "Badminton"
        assert updated.day_time_slots == {Weekday.SATURDAY: [time(10, 0)]}

    @pytest.mark.asyncio
    async def test_update_missing_raises(
        self, database_service: DatabaseService, sample_config: ReservationConfig
    ) -> None:
        with pytest.raises(ValueError, match="not found"):
            await database_service.update_configuration(sample_config)

    @pytest.mark.asyncio
    async def test_delete(self, database_service: DatabaseService, sample_config: ReservationConfig) -> None:
        await database_service.create_configuration(sample_config)

        assert await database_service.delete_configuration("cfg00001") is True
        assert await database_service.delete_configuration("cfg00001") is False
        assert await database_service.get_configuration("cfg00001") is None


class TestRunHistory:
    """Tests for the run result sink."""

    @pytest.mark.asyncio
    async def test_record_and_list_newest_first(self, database_service: DatabaseService) -> None:
        await database_service.record_result(make_result("cfg00001", 1))
        await database_service.record_result(make_result("cfg00001", 3, success=False))

        results = await database_service.list_results()

        assert [r.success for r in results] == [False, True]
        failed = results[0]
        assert failed.reason == FailureReason.ELEMENT_NOT_FOUND
        assert failed.failed_stage == RunStage.SELECTING_SPORT
        assert failed.details["sport"] == "Pickleball"
        assert failed.finished_at == datetime(2025, 3, 9, 23, 3, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_filter_by_configuration_and_limit(self, database_service: DatabaseService) -> None:
        await database_service.record_result(make_result("cfg00001", 1))
        await database_service.record_result(make_result("cfg00002", 2))
        await database_service.record_result(make_result("cfg00002", 4))

        only_second = await database_service.list_results(config_id="cfg00002")
        limited = await database_service.list_results(limit=1)

        assert {r.config_id for r in only_second} == {"cfg00002"}
        assert len(only_second) == 2
        assert len(limited) == 1
        assert limited[0].finished_at.minute == 4
