"""
Run control endpoints: start a run now, stop it, and observe its status.

Status changes are also streamed as server-sent events so a client can follow
a run stage by stage without polling.
"""

import asyncio
import logging

from fastapi import APIRouter, HTTPException, Request
from sse_starlette.sse import EventSourceResponse

from app.errors import ConfigValidationError
from app.models.schemas import RunResult, RunState, RunStatus
from app.services.automation import automation_service
from app.services.database_service import database_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/runs", tags=["runs"])

STREAM_KEEPALIVE_SECONDS = 15.0


@router.get("/status", response_model=RunStatus)
async def get_run_status() -> RunStatus:
    return automation_service.orchestrator.status


@router.get("/status/stream")
async def stream_run_status(request: Request) -> EventSourceResponse:
    orchestrator = automation_service.orchestrator
    queue = orchestrator.subscribe()

    async def generate():
        try:
            while True:
                if await request.is_disconnected():
                    break
                try:
                    status = await asyncio.wait_for(queue.get(), timeout=STREAM_KEEPALIVE_SECONDS)
                except TimeoutError:
                    continue
                yield {"event": "run_status", "data": status.model_dump_json()}
        finally:
            orchestrator.unsubscribe(queue)

    return EventSourceResponse(generate())


@router.get("/history", response_model=list[RunResult])
async def get_run_history(config_id: str | None = None, limit: int = 50) -> list[RunResult]:
    return await database_service.list_results(config_id=config_id, limit=min(max(limit, 1), 500))


@router.post("/stop", response_model=RunStatus)
async def stop_run() -> RunStatus:
    orchestrator = automation_service.orchestrator
    if not await orchestrator.stop():
        raise HTTPException(status_code=409, detail="No run is active")
    return orchestrator.status


@router.post("/{config_id}", response_model=RunStatus, status_code=202)
async def start_run(config_id: str) -> RunStatus:
    """Start a manual run for a configuration, bypassing its schedule."""
    config = await database_service.get_configuration(config_id)
    if not config:
        raise HTTPException(status_code=404, detail="Configuration not found")

    orchestrator = automation_service.orchestrator
    try:
        admitted = orchestrator.run_now(config)
    except ConfigValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors) from None

    if not admitted:
        current = orchestrator.status
        raise HTTPException(
            status_code=409,
            detail=f"A run is already in progress for '{current.config_name}'"
            if current.state == RunState.RUNNING
            else "A run is already in progress",
        )
    return orchestrator.status
