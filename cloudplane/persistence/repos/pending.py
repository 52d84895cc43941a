from __future__ import annotations

from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession


async def get_unlocked_rows_in_states(
    session: AsyncSession,
    model: Any,
    states: Iterable[str],
) -> list[Any]:
    # Rows the supervisor should re-evaluate: in a pending state, live, and not held by anyone.
    result = await session.execute(
        select(model)
        .where(
            model.state.in_(sorted(states)),
            model.delete_at == 0,
            model.lock_acquired_at == 0,
        )
        .order_by(model.id)
    )
    return list(result.scalars().all())
