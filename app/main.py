import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.api import automation, configurations, health, jobs, runs
from app.config import settings
from app.models.database import init_db
from app.services.automation import automation_service

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    await init_db()

    if not settings.scheduler_api_key:
        logger.warning(
            "SCHEDULER_API_KEY is not configured. "
            "/jobs/tick will only accept OIDC tokens."
        )

    automation_service.start()

    yield

    await automation_service.shutdown()


app = FastAPI(
    title="RecBooker",
    description="Books recreation facility slots the moment reservations open",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(configurations.router)
app.include_router(runs.router)
app.include_router(automation.router)
app.include_router(jobs.router)
