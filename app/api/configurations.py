from datetime import date, datetime, time

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from app.config import settings
from app.models.schemas import ReservationConfig, Weekday
from app.services.automation import get_timezone, get_trigger_time
from app.services.database_service import database_service
from app.services.schedule import format_schedule, next_trigger

router = APIRouter(prefix="/configurations", tags=["configurations"])


class NextTriggerResponse(BaseModel):
    config_id: str
    schedule: str
    trigger_at: datetime | None = None
    weekday: Weekday | None = None
    slot_time: time | None = None
    reservation_date: date | None = None


@router.get("/", response_model=list[ReservationConfig])
async def list_configurations(enabled: bool | None = None) -> list[ReservationConfig]:
    return await database_service.list_configurations(enabled=enabled)


@router.post("/", response_model=ReservationConfig, status_code=201)
async def create_configuration(config: ReservationConfig) -> ReservationConfig:
    if await database_service.get_configuration(config.id):
        raise HTTPException(status_code=409, detail=f"Configuration {config.id} already exists")
    return await database_service.create_configuration(config)


@router.get("/{config_id}", response_model=ReservationConfig)
async def get_configuration(config_id: str) -> ReservationConfig:
    config = await database_service.get_configuration(config_id)
    if not config:
        raise HTTPException(status_code=404, detail="Configuration not found")
    return config


@router.put("/{config_id}", response_model=ReservationConfig)
async def update_configuration(config_id: str, config: ReservationConfig) -> ReservationConfig:
    try:
        return await database_service.update_configuration(
            config.model_copy(update={"id": config_id})
        )
    except ValueError:
        raise HTTPException(status_code=404, detail="Configuration not found") from None


@router.delete("/{config_id}", status_code=204)
async def delete_configuration(config_id: str) -> None:
    if not await database_service.delete_configuration(config_id):
        raise HTTPException(status_code=404, detail="Configuration not found")


@router.get("/{config_id}/next-trigger", response_model=NextTriggerResponse)
async def get_next_trigger(config_id: str) -> NextTriggerResponse:
    """When the next automatic run for this configuration will start (None if disabled)."""
    config = await database_service.get_configuration(config_id)
    if not config:
        raise HTTPException(status_code=404, detail="Configuration not found")

    response = NextTriggerResponse(config_id=config.id, schedule=format_schedule(config))
    if not config.is_enabled:
        return response

    tz = get_timezone()
    trigger = next_trigger(
        config,
        datetime.now(tz),
        tz=tz,
        lead_days=settings.lead_days,
        trigger_time=get_trigger_time(),
        horizon_weeks=settings.schedule_horizon_weeks,
    )
    if trigger:
        response.trigger_at = trigger.at
        response.weekday = trigger.weekday
        response.slot_time = trigger.slot_time
        response.reservation_date = trigger.reservation_date
    return response
