from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from redis.asyncio import Redis
from sqlalchemy import text

from app.core.settings import settings
from app.db.session import Database

APP_VERSION = "0.1.0"


def create_redis_client(url: str | None = None) -> Redis:
    return Redis.from_url(
        url or settings.redis_url,
        decode_responses=True,
        socket_timeout=2,
        socket_connect_timeout=2,
    )


async def _check_db(database: Database | None) -> dict[str, str]:
    if database is None:
        return {"status": "error", "error": "database not initialised"}
    try:
        async with database.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:  # pragma: no cover - exercised in runtime
        return {"status": "error", "error": str(exc)}


async def _check_redis(redis: Redis | None) -> dict[str, str]:
    if redis is None:
        return {"status": "error", "error": "redis not initialised"}
    try:
        await redis.ping()
        return {"status": "ok"}
    except Exception as exc:
        return {"status": "error", "error": str(exc)}


def _overall_status(checks: dict[str, dict[str, Any]]) -> tuple[str, bool]:
    ready = all(check.get("status") == "ok" for check in checks.values())
    return ("ok" if ready else "degraded", ready)


async def live_payload() -> dict[str, str]:
    return {
        "status": "ok",
        "version": APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


async def ready_payload(database: Database | None, redis: Redis | None) -> dict[str, Any]:
    """Readiness of the collaborators a request may touch."""
    checks = {
        "database": await _check_db(database),
        "redis": await _check_redis(redis),
    }
    overall, ready = _overall_status(checks)
    return {
        "status": overall,
        "ready": ready,
        "environment": settings.environment,
        "version": APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": checks,
    }
