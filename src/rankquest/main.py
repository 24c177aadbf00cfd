"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from rankquest.achievements.router import router as achievements_router
from rankquest.achievements.seed import seed_achievements
from rankquest.config import get_settings
from rankquest.database import close_db, get_session_factory, init_db
from rankquest.health.router import router as health_router
from rankquest.middleware import setup_middleware
from rankquest.quests.router import router as quests_router
from rankquest.ranks.router import router as ranks_router
from rankquest.redis_client import close_redis, init_redis

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    if settings.redis_url:
        await init_redis(settings.redis_url)
    else:
        logger.info("Redis URL not configured, leaderboard cache disabled")

    # Seed achievement definitions (idempotent)
    try:
        async with get_session_factory()() as db:
            await seed_achievements(db)
    except Exception:
        logger.warning("Achievement seeding failed (tables may not exist yet)", exc_info=True)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="RankQuest Progression API",
        description="Ranks, achievements, badges and weekly quests for the learning platform",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(ranks_router)
    app.include_router(achievements_router)
    app.include_router(quests_router)

    return app


app = create_app()
