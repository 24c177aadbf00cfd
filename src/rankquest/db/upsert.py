"""Dialect-aware INSERT ... ON CONFLICT helpers.

Idempotent records (user achievements, user badges, XP events, duty pass
unlocks, weekly progress rows) rely on the store's unique constraints.
A conflicting insert is a no-op, and the caller learns whether a row was
actually created from the RETURNING clause.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession


def _insert_for(db: AsyncSession, model: type) -> Any:  # noqa: ANN401
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(model)
    if dialect == "sqlite":
        return sqlite_insert(model)
    msg = f"Unsupported dialect for insert_ignore: {dialect}"
    raise RuntimeError(msg)


async def insert_ignore(
    db: AsyncSession,
    model: type,
    values: dict[str, Any],
    index_elements: list[str],
) -> int | None:
    """Insert a row unless it collides with a unique constraint.

    Returns the new row id, or None when the row already existed.
    """
    stmt = (
        _insert_for(db, model)
        .values(**values)
        .on_conflict_do_nothing(index_elements=index_elements)
        .returning(model.id)  # type: ignore[attr-defined]
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()
