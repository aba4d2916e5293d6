from fastapi import APIRouter, Request

from app.core.health import live_payload, ready_payload
from app.core.limiter import limiter

router = APIRouter(tags=["health"])


@router.get("/health/live", summary="Service liveness check")
@limiter.exempt
async def health_live(request: Request) -> dict:
    return await live_payload()


@router.get("/health/ready", summary="Database and Redis readiness")
@limiter.exempt
async def health_ready(request: Request) -> dict:
    state = request.app.state
    return await ready_payload(getattr(state, "database", None), getattr(state, "redis", None))
