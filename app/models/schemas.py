import uuid
from dataclasses import dataclass
from datetime import UTC, date, datetime, time
from enum import Enum
from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator

MIN_NUMBER_OF_PEOPLE = 1
MAX_NUMBER_OF_PEOPLE = 2


class Weekday(str, Enum):
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @property
    def index(self) -> int:
        """Day index matching date.weekday() (Monday == 0)."""
        return list(Weekday).index(self)

    @property
    def short_name(self) -> str:
        return self.value[:3].capitalize()

    @classmethod
    def from_date(cls, value: date) -> "Weekday":
        return list(cls)[value.weekday()]


class RunState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class RunStage(str, Enum):
    IDLE = "idle"
    NAVIGATING = "navigating"
    SELECTING_SPORT = "selecting_sport"
    SELECTING_TIME_SLOT = "selecting_time_slot"
    FILLING_CONTACT = "filling_contact"
    VERIFYING_EMAIL = "verifying_email"
    SUBMITTING = "submitting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class RunType(str, Enum):
    MANUAL = "manual"
    AUTOMATIC = "automatic"


class FailureReason(str, Enum):
    VALIDATION_FAILED = "validation_failed"
    PAGE_LOAD_TIMEOUT = "page_load_timeout"
    ELEMENT_NOT_FOUND = "element_not_found"
    VERIFICATION_TIMEOUT = "verification_timeout"
    CANCELLED = "cancelled"
    RUN_TIMEOUT = "run_timeout"
    AUTOMATION_FAILED = "automation_failed"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").capitalize()


class ReservationConfig(BaseModel):
    """
    A recurring reservation preference for one facility and sport.

    day_time_slots maps each weekday the user wants to play on to the
    time(s) of day to book on that weekday.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4())[:8])
    name: str = Field(..., min_length=1, max_length=60)
    facility_url: str = Field(..., description="Reservation page of the facility")
    sport_name: str = Field(..., min_length=1, max_length=50)
    number_of_people: int = Field(
        default=1,
        ge=MIN_NUMBER_OF_PEOPLE,
        le=MAX_NUMBER_OF_PEOPLE,
        description="Party size (1-2)",
    )
    is_enabled: bool = True
    day_time_slots: dict[Weekday, list[time]] = Field(default_factory=dict)

    @field_validator("name", "sport_name")
    @classmethod
    def _strip_text(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("facility_url")
    @classmethod
    def _check_facility_url(cls, value: str) -> str:
        parsed = urlparse(value.strip())
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("facility_url must be an http(s) URL")
        return value.strip()

    @field_validator("day_time_slots")
    @classmethod
    def _check_day_time_slots(cls, value: dict[Weekday, list[time]]) -> dict[Weekday, list[time]]:
        normalized: dict[Weekday, list[time]] = {}
        for weekday, times in value.items():
            if not times:
                raise ValueError(f"No time slots selected for {weekday.value}")
            normalized[weekday] = sorted({t.replace(second=0, microsecond=0) for t in times})
        return normalized

    @property
    def facility_name(self) -> str:
        """Facility name from a /rcfs/<facility> URL, falling back to the hostname."""
        parsed = urlparse(self.facility_url)
        parts = [p for p in parsed.path.split("/") if p]
        if len(parts) >= 2 and parts[0] == "rcfs":
            return parts[1].replace("-", " ").title()
        return parsed.netloc

    def times_for(self, weekday: Weekday) -> list[time]:
        return self.day_time_slots.get(weekday, [])

    def first_slot(self) -> tuple[Weekday, time] | None:
        for weekday in Weekday:
            times = self.times_for(weekday)
            if times:
                return weekday, times[0]
        return None


@dataclass(frozen=True)
class TriggerInstant:
    at: datetime
    config_id: str
    weekday: Weekday
    slot_time: time
    reservation_date: date


class RunStatus(BaseModel):
    """Immutable snapshot of the current (or last) run."""

    model_config = ConfigDict(frozen=True)

    state: RunState = RunState.IDLE
    stage: RunStage = RunStage.IDLE
    reason: str | None = None
    config_id: str | None = None
    config_name: str | None = None
    run_type: RunType | None = None
    started_at: datetime | None = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_running(self) -> bool:
        return self.state == RunState.RUNNING


class RunResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    message: str
    details: dict[str, str] = Field(default_factory=dict)
    config_id: str
    config_name: str | None = None
    run_type: RunType = RunType.MANUAL
    reason: FailureReason | None = None
    failed_stage: RunStage | None = None
    started_at: datetime
    finished_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


@dataclass
class MailMessage:
    message_id: str
    sender: str
    subject: str
    received_at: datetime
    body: str


@dataclass(frozen=True)
class ContactInfo:
    name: str
    phone: str
    email: str

    def missing_fields(self) -> list[str]:
        return [field for field, value in vars(self).items() if not value.strip()]


def details_for(config: ReservationConfig, **extra: Any) -> dict[str, str]:
    details = {"facility": config.facility_name, "sport": config.sport_name}
    details.update({k: str(v) for k, v in extra.items() if v is not None})
    return details
