"""
Scheduled job endpoint for an external scheduler (e.g. Cloud Scheduler).

When the process cannot keep its own trigger loop alive (scale-to-zero
hosting), an external scheduler calls POST /jobs/tick every minute instead.
The endpoint is secured with OIDC token authentication (preferred) or an API
key.
"""

import logging
from datetime import date, datetime, time

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from google.auth import exceptions as google_auth_exceptions
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token
from pydantic import BaseModel

from app.config import settings
from app.services.automation import automation_service, get_timezone

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs", tags=["jobs"])


class TickItem(BaseModel):
    config_id: str
    trigger_at: datetime
    slot_time: time
    reservation_date: date
    admitted: bool
    error: str | None = None


class TickResult(BaseModel):
    executed_at: datetime
    automation_enabled: bool
    dispatched: int
    results: list[TickItem]


def verify_oidc_token(authorization: str, request: Request) -> bool:
    """
    Verify an OIDC token from the scheduler.

    Returns True if the token is valid and from the expected service account.
    """
    if not authorization.startswith("Bearer "):
        return False

    token = authorization[7:]

    try:
        claims = id_token.verify_oauth2_token(  # type: ignore[no-untyped-call]
            token, google_requests.Request()
        )

        email = claims.get("email", "")
        if settings.scheduler_service_account and email != settings.scheduler_service_account:
            logger.warning(
                f"OIDC token email mismatch: expected {settings.scheduler_service_account}, got {email}"
            )
            return False

        logger.info(f"OIDC token verified for service account: {email}")
        return True
    except google_auth_exceptions.GoogleAuthError as e:
        logger.warning(f"OIDC token verification failed: {e}")
        return False
    except ValueError as e:
        logger.warning(f"OIDC token validation error: {e}")
        return False


def verify_scheduler_auth(
    request: Request,
    authorization: str | None = Header(None, description="Bearer token for OIDC authentication"),
    x_scheduler_api_key: str | None = Header(None, description="API key for scheduler authentication"),
) -> None:
    """Accept an OIDC bearer token first, then fall back to X-Scheduler-API-Key."""
    if authorization and verify_oidc_token(authorization, request):
        return

    if x_scheduler_api_key:
        if not settings.scheduler_api_key:
            raise HTTPException(status_code=500, detail="Scheduler API key is not configured")
        if x_scheduler_api_key == settings.scheduler_api_key:
            return
        raise HTTPException(status_code=401, detail="Invalid scheduler API key")

    raise HTTPException(
        status_code=401,
        detail="Authentication required. Provide OIDC token or X-Scheduler-API-Key header.",
    )


@router.post("/tick", response_model=TickResult)
async def run_tick(_: None = Depends(verify_scheduler_auth)) -> TickResult:
    """
    Run one trigger-loop tick now.

    Due configurations are dispatched to the orchestrator and the endpoint
    returns without waiting for the runs. Repeated calls within the same
    minute never dispatch the same trigger twice.
    """
    now = datetime.now(get_timezone())
    loop = automation_service.trigger_loop
    outcomes = await loop.tick(now)

    return TickResult(
        executed_at=now,
        automation_enabled=loop.enabled,
        dispatched=sum(1 for o in outcomes if o.admitted),
        results=[
            TickItem(
                config_id=o.config_id,
                trigger_at=o.trigger.at,
                slot_time=o.trigger.slot_time,
                reservation_date=o.trigger.reservation_date,
                admitted=o.admitted,
                error=o.error,
            )
            for o in outcomes
        ],
    )
