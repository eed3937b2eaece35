from fastapi import APIRouter

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "healthy", "service": "recbooker"}


@router.get("/")
async def root() -> dict[str, str | dict[str, str]]:
    return {
        "service": "RecBooker - Recreation Reservation Automation",
        "version": "0.1.0",
        "endpoints": {
            "health": "/health",
            "configurations": "/configurations",
            "runs": "/runs/status",
            "automation": "/automation",
        },
    }
