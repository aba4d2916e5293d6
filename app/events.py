import logging

from fastapi import FastAPI

from app.core.health import create_redis_client
from app.core.security import IdentityVerifier
from app.core.settings import settings
from app.db.init_db import init_db
from app.db.session import Database

logger = logging.getLogger(__name__)


def register_event_handlers(app: FastAPI) -> None:
    @app.on_event("startup")
    async def on_startup() -> None:
        logger.info("Application startup")
        app.state.database = Database(settings.database_url, echo=settings.database_echo)
        app.state.redis = create_redis_client()
        app.state.identity_verifier = IdentityVerifier(settings)
        await init_db(app.state.database)

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        logger.info("Application shutdown")
        verifier = getattr(app.state, "identity_verifier", None)
        if verifier is not None:
            await verifier.aclose()
        redis = getattr(app.state, "redis", None)
        if redis is not None:
            await redis.aclose()
        database = getattr(app.state, "database", None)
        if database is not None:
            await database.dispose()
