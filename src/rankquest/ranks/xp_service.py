"""XP grants with idempotency.

Every XP change goes through ``grant_xp``: the xp_events row keyed by
``idempotency_key`` is inserted first, and the user's total only moves
when that insert actually created a row.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from rankquest.db.models import User, XPEvent
from rankquest.db.upsert import insert_ignore

logger = logging.getLogger(__name__)


async def grant_xp(
    db: AsyncSession,
    user_id: int,
    amount: int,
    source: str,
    source_id: str,
    idempotency_key: str,
    now: datetime | None = None,
) -> bool:
    """Grant XP to a user. Returns True if granted, False if duplicate or zero.

    Does not commit; the caller owns the transaction so the XP lands
    together with whatever record earned it.
    """
    if amount <= 0:
        return False
    if now is None:
        now = datetime.now(timezone.utc)

    event_id = await insert_ignore(
        db,
        XPEvent,
        {
            "user_id": user_id,
            "amount": amount,
            "source": source,
            "source_id": source_id,
            "idempotency_key": idempotency_key,
            "created_at": now,
        },
        index_elements=["idempotency_key"],
    )
    if event_id is None:
        logger.debug("Duplicate XP grant ignored: %s", idempotency_key)
        return False

    await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(total_xp=User.total_xp + amount)
        .execution_options(synchronize_session=False)
    )
    logger.info("Granted %d XP to user %d (%s:%s)", amount, user_id, source, source_id)
    return True
