"""Shared test fixtures."""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo

# Settings are cached at import time by the app factory, so configure first
os.environ["RQ_DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["RQ_REDIS_URL"] = ""
os.environ["RQ_JWT_SECRET"] = "test-secret-key-for-rankquest-tests-only"
os.environ["RQ_LOG_FORMAT"] = "console"

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402

from rankquest.auth.jwt import create_access_token  # noqa: E402
from rankquest.config import get_settings  # noqa: E402
from rankquest.database import close_db, get_engine, get_session, get_session_factory, init_db  # noqa: E402
from rankquest.db.base import Base  # noqa: E402
from rankquest.db.models import Achievement, Badge, User  # noqa: E402

get_settings.cache_clear()

MANILA = ZoneInfo("Asia/Manila")

# Monday of a fixed quest week (Asia/Manila)
WEEK_MONDAY = datetime(2026, 10, 19, tzinfo=MANILA)
DAY_OFFSETS = {
    "monday": 0,
    "tuesday": 1,
    "wednesday": 2,
    "thursday": 3,
    "friday": 4,
    "saturday": 5,
    "sunday": 6,
}


def at(day: str, hour: int = 12, weeks: int = 0) -> datetime:
    """UTC instant for ``hour`` o'clock Manila time on ``day`` of the fixed week."""
    local = WEEK_MONDAY + timedelta(days=DAY_OFFSETS[day] + 7 * weeks, hours=hour)
    return local.astimezone(timezone.utc)


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Fresh in-memory database with the full schema."""
    await init_db(get_settings().database_url)
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with get_session_factory()() as session:
        yield session

    await close_db()


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client sharing the test's database session."""
    from rankquest.main import create_app

    app = create_app()

    async def _session_override() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_session] = _session_override

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def make_user(db_session: AsyncSession) -> Callable[..., Any]:
    """Factory creating committed users. Later calls get later created_at values."""
    counter = {"n": 0}

    async def _make(**fields: Any) -> User:
        counter["n"] += 1
        n = counter["n"]
        values: dict[str, Any] = {
            "email": f"user{n}@example.com",
            "name": f"User {n}",
            "timezone": "Asia/Manila",
            "created_at": datetime(2026, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=n),
        }
        values.update(fields)
        user = User(**values)
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user

    return _make


@pytest.fixture
def make_badge(db_session: AsyncSession) -> Callable[..., Any]:
    async def _make(**fields: Any) -> Badge:
        values: dict[str, Any] = {
            "name": "Badge",
            "trigger_type": "lesson_complete",
            "trigger_value": "1",
            "rarity": "common",
            "xp_value": 10,
        }
        values.update(fields)
        badge = Badge(**values)
        db_session.add(badge)
        await db_session.commit()
        await db_session.refresh(badge)
        return badge

    return _make


@pytest.fixture
def make_achievement(db_session: AsyncSession) -> Callable[..., Any]:
    async def _make(**fields: Any) -> Achievement:
        values: dict[str, Any] = {
            "name": fields.get("code", "achievement"),
            "criteria_value": 0,
            "criteria_data": {},
            "xp_reward": 0,
        }
        values.update(fields)
        achievement = Achievement(**values)
        db_session.add(achievement)
        await db_session.commit()
        await db_session.refresh(achievement)
        return achievement

    return _make


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}
