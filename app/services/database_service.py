"""
Database service for reservation configurations and run history.

DatabaseService is both the ConfigurationStore the trigger loop reads from and
a ResultSink that appends every finished run to the history table.
"""

import json
import logging
from datetime import UTC, datetime, time

from sqlalchemy import select

from app.models.database import AsyncSessionLocal, ConfigurationRecord, RunResultRecord
from app.models.schemas import ReservationConfig, RunResult, Weekday
from app.providers.base import ConfigurationStore, ResultSink

logger = logging.getLogger(__name__)


def _naive_utc(value: datetime) -> datetime:
    """Columns are timestamp without time zone and always hold UTC."""
    if value.tzinfo is not None:
        value = value.astimezone(UTC)
    return value.replace(tzinfo=None)


def _slots_to_json(config: ReservationConfig) -> str:
    return json.dumps(
        {
            weekday.value: [t.strftime("%H:%M") for t in times]
            for weekday, times in config.day_time_slots.items()
        }
    )


def _slots_from_json(raw: str) -> dict[Weekday, list[time]]:
    data = json.loads(raw or "{}")
    return {Weekday(day): [time.fromisoformat(t) for t in times] for day, times in data.items()}


class DatabaseService(ConfigurationStore, ResultSink):
    """
    Provides database operations for configurations and run results.

    Handles conversion between the Pydantic models used in the application
    layer and the SQLAlchemy models used for persistence.
    """

    def _apply_config(self, record: ConfigurationRecord, config: ReservationConfig) -> None:
        record.name = config.name  # type: ignore[assignment]
        record.facility_url = config.facility_url  # type: ignore[assignment]
        record.sport_name = config.sport_name  # type: ignore[assignment]
        record.number_of_people = config.number_of_people  # type: ignore[assignment]
        record.is_enabled = config.is_enabled  # type: ignore[assignment]
        record.day_time_slots_json = _slots_to_json(config)  # type: ignore[assignment]

    def _record_to_config(self, record: ConfigurationRecord) -> ReservationConfig:
        return ReservationConfig(
            id=record.config_id,  # type: ignore[arg-type]
            name=record.name,  # type: ignore[arg-type]
            facility_url=record.facility_url,  # type: ignore[arg-type]
            sport_name=record.sport_name,  # type: ignore[arg-type]
            number_of_people=record.number_of_people,  # type: ignore[arg-type]
            is_enabled=record.is_enabled,  # type: ignore[arg-type]
            day_time_slots=_slots_from_json(record.day_time_slots_json),  # type: ignore[arg-type]
        )

    def _record_to_result(self, record: RunResultRecord) -> RunResult:
        return RunResult(
            success=record.success,  # type: ignore[arg-type]
            message=record.message,  # type: ignore[arg-type]
            details=json.loads(record.details_json or "{}"),  # type: ignore[arg-type]
            config_id=record.config_id,  # type: ignore[arg-type]
            config_name=record.config_name,  # type: ignore[arg-type]
            run_type=record.run_type,  # type: ignore[arg-type]
            reason=record.reason,  # type: ignore[arg-type]
            failed_stage=record.failed_stage,  # type: ignore[arg-type]
            started_at=record.started_at.replace(tzinfo=UTC),  # type: ignore[union-attr]
            finished_at=record.finished_at.replace(tzinfo=UTC),  # type: ignore[union-attr]
        )

    async def create_configuration(self, config: ReservationConfig) -> ReservationConfig:
        """Create a new configuration record in the database."""
        async with AsyncSessionLocal() as db:
            record = ConfigurationRecord(config_id=config.id)
            self._apply_config(record, config)
            db.add(record)
            await db.commit()
            await db.refresh(record)
            logger.info(f"Created configuration {config.id} ('{config.name}')")
            return self._record_to_config(record)

    async def get_configuration(self, config_id: str) -> ReservationConfig | None:
        """Get a configuration by its ID."""
        async with AsyncSessionLocal() as db:
            result = await db.execute(
                select(ConfigurationRecord).where(ConfigurationRecord.config_id == config_id)
            )
            record = result.scalar_one_or_none()
            if record:
                return self._record_to_config(record)
            return None

    async def list_configurations(self, enabled: bool | None = None) -> list[ReservationConfig]:
        async with AsyncSessionLocal() as db:
            query = select(ConfigurationRecord).order_by(ConfigurationRecord.id)
            if enabled is not None:
                query = query.where(ConfigurationRecord.is_enabled == enabled)
            result = await db.execute(query)
            return [self._record_to_config(r) for r in result.scalars().all()]

    async def list_enabled_configurations(self) -> list[ReservationConfig]:
        return await self.list_configurations(enabled=True)

    async def update_configuration(self, config: ReservationConfig) -> ReservationConfig:
        """Replace a stored configuration. Raises ValueError if it does not exist."""
        async with AsyncSessionLocal() as db:
            result = await db.execute(
                select(ConfigurationRecord).where(ConfigurationRecord.config_id == config.id)
            )
            record = result.scalar_one_or_none()
            if not record:
                raise ValueError(f"Configuration {config.id} not found")

            self._apply_config(record, config)
            record.updated_at = datetime.now(UTC).replace(tzinfo=None)  # type: ignore[assignment]
            await db.commit()
            await db.refresh(record)
            return self._record_to_config(record)

    async def delete_configuration(self, config_id: str) -> bool:
        async with AsyncSessionLocal() as db:
            result = await db.execute(
                select(ConfigurationRecord).where(ConfigurationRecord.config_id == config_id)
            )
            record = result.scalar_one_or_none()
            if not record:
                return False
            await db.delete(record)
            await db.commit()
            logger.info(f"Deleted configuration {config_id}")
            return True

    async def record_result(self, result: RunResult) -> None:
        """Append a finished run to the history table."""
        async with AsyncSessionLocal() as db:
            db.add(
                RunResultRecord(
                    config_id=result.config_id,
                    config_name=result.config_name,
                    run_type=result.run_type,
                    success=result.success,
                    message=result.message,
                    reason=result.reason,
                    failed_stage=result.failed_stage,
                    details_json=json.dumps(result.details),
                    started_at=_naive_utc(result.started_at),
                    finished_at=_naive_utc(result.finished_at),
                )
            )
            await db.commit()

    async def list_results(self, config_id: str | None = None, limit: int = 50) -> list[RunResult]:
        """Most recent run results first, optionally for one configuration."""
        async with AsyncSessionLocal() as db:
            query = select(RunResultRecord).order_by(
                RunResultRecord.finished_at.desc(), RunResultRecord.id.desc()
            )
            if config_id:
                query = query.where(RunResultRecord.config_id == config_id)
            result = await db.execute(query.limit(limit))
            return [self._record_to_result(r) for r in result.scalars().all()]


database_service = DatabaseService()
