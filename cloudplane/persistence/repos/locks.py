from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from cloudplane.core.timeutil import get_millis


logger = logging.getLogger(__name__)


async def lock_rows(
    session: AsyncSession,
    model: type,
    ids: Iterable[str],
    owner: str,
    *,
    now_ms: int | None = None,
) -> bool:
    # Compare-and-set on lock_acquired_at == 0 so concurrent supervisors cannot both win.
    id_list = list(ids)
    if not id_list:
        return False
    result = await session.execute(
        update(model)
        .where(model.id.in_(id_list), model.lock_acquired_at == 0)
        .values(lock_acquired_by=owner, lock_acquired_at=now_ms if now_ms is not None else get_millis())
    )
    locked = int(result.rowcount or 0)
    if 0 < locked < len(id_list):
        logger.warning(
            "locked only %d of %d %s rows",
            locked,
            len(id_list),
            model.__tablename__,
            extra={"owner": owner, "ids": id_list},
        )
    return locked > 0


async def unlock_rows(
    session: AsyncSession,
    model: type,
    ids: Iterable[str],
    owner: str,
    *,
    force: bool = False,
) -> bool:
    id_list = list(ids)
    if not id_list:
        return False
    statement = update(model).where(model.id.in_(id_list))
    if force:
        statement = statement.where(model.lock_acquired_at != 0)
    else:
        statement = statement.where(model.lock_acquired_by == owner)
    result = await session.execute(statement.values(lock_acquired_by=None, lock_acquired_at=0))
    unlocked = int(result.rowcount or 0)
    if 0 < unlocked < len(id_list):
        logger.warning(
            "unlocked only %d of %d %s rows",
            unlocked,
            len(id_list),
            model.__tablename__,
            extra={"owner": owner, "ids": id_list, "force": force},
        )
    return unlocked > 0
