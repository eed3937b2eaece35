"""
SQLAlchemy database models for persistent storage.

Reservation configurations and the run history live here. The models mirror
the Pydantic schemas; conversion happens in DatabaseService.
"""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Enum, Integer, String, Text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from app.config import settings
from app.models.schemas import FailureReason, RunStage, RunType


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class ConfigurationRecord(Base):
    """
    A stored reservation configuration.

    Columns:
        config_id: Application-level identifier (8-char UUID prefix).
        name: Display name chosen by the user.
        facility_url: Reservation page of the facility.
        sport_name: Sport label as shown on the portal.
        number_of_people: Party size (1-2).
        is_enabled: Disabled configurations are never triggered automatically.
        day_time_slots_json: JSON object mapping weekday names to lists of
            "HH:MM" strings.
    """

    __tablename__ = "configurations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    config_id = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String(60), nullable=False)
    facility_url = Column(Text, nullable=False)
    sport_name = Column(String(50), nullable=False)
    number_of_people = Column(Integer, default=1)
    is_enabled = Column(Boolean, default=True, index=True)
    day_time_slots_json = Column(Text, nullable=False, default="{}")
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class RunResultRecord(Base):
    """
    One row per finished run, successful or not.

    details_json holds the facility/sport/time/date summary shown to the user.
    """

    __tablename__ = "run_results"

    id = Column(Integer, primary_key=True, autoincrement=True)
    config_id = Column(String(50), nullable=False, index=True)
    config_name = Column(String(60), nullable=True)
    run_type = Column(Enum(RunType), nullable=False)
    success = Column(Boolean, nullable=False)
    message = Column(Text, nullable=False)
    reason = Column(Enum(FailureReason), nullable=True)
    failed_stage = Column(Enum(RunStage), nullable=True)
    details_json = Column(Text, nullable=False, default="{}")
    started_at = Column(DateTime, nullable=False)
    finished_at = Column(DateTime, nullable=False, index=True)


engine = create_async_engine(
    settings.database_url.replace("sqlite://", "sqlite+aiosqlite://")
    if settings.database_url.startswith("sqlite://")
    else settings.database_url,
    echo=False,
)

AsyncSessionLocal = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
