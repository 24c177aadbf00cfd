"""User lookups shared by the auth dependencies and the services."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rankquest.db.models import User
from rankquest.errors import NotFound


async def get_user_by_id(db: AsyncSession, user_id: int) -> User | None:
    """Fetch a user by primary key.

    populate_existing refreshes an already-loaded instance, since XP and
    duty pass counters are moved by bulk UPDATEs that bypass the identity map.
    """
    result = await db.execute(
        select(User).where(User.id == user_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def require_user(db: AsyncSession, user_id: int) -> User:
    """Fetch a user or raise NotFound."""
    user = await get_user_by_id(db, user_id)
    if user is None:
        raise NotFound(f"User {user_id} not found")
    return user
