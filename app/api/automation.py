from fastapi import APIRouter
from pydantic import BaseModel

from app.services.automation import automation_service

router = APIRouter(prefix="/automation", tags=["automation"])


class AutomationState(BaseModel):
    enabled: bool


@router.get("", response_model=AutomationState)
async def get_automation_state() -> AutomationState:
    return AutomationState(enabled=automation_service.trigger_loop.enabled)


@router.put("", response_model=AutomationState)
async def set_automation_state(state: AutomationState) -> AutomationState:
    """Globally enable or disable automatic runs. Takes effect on the next tick."""
    loop = automation_service.trigger_loop
    if state.enabled:
        loop.enable()
    else:
        loop.disable()
    return AutomationState(enabled=loop.enabled)
