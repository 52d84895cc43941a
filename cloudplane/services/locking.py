from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import Any, AsyncIterator

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cloudplane.core.config import get_settings
from cloudplane.core.errors import LockConflictError, NotFoundError
from cloudplane.core.ids import new_id
from cloudplane.persistence.repos.locks import lock_rows, unlock_rows


logger = logging.getLogger(__name__)

_instance_id: str | None = None


def supervisor_instance_id() -> str:
    # Stable per-process lock owner; configured value wins over a generated one.
    global _instance_id
    configured = get_settings().supervisor_instance_id
    if configured:
        return configured
    if _instance_id is None:
        _instance_id = new_id()
    return _instance_id


async def _current_holder(session: AsyncSession, model: Any, resource_id: str) -> Any:
    # populate_existing so lock columns written by other sessions are not masked by the identity map.
    result = await session.execute(
        select(model).where(model.id == resource_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


@asynccontextmanager
async def locked(
    session: AsyncSession,
    model: Any,
    resource_id: str,
    owner: str,
    *,
    resource_type: str | None = None,
) -> AsyncIterator[Any]:
    """Hold the advisory lock on one row for the duration of the block.

    The lock is committed before the body runs so other sessions observe it,
    and it is released (and committed) on every exit path. Work left
    uncommitted by a failing body is rolled back before the release.
    """
    acquired = await lock_rows(session, model, [resource_id], owner)
    await session.commit()
    if not acquired:
        row = await _current_holder(session, model, resource_id)
        if row is None:
            raise NotFoundError(f"{resource_type or model.__tablename__} {resource_id} not found")
        logger.warning(
            "lock not acquired for %s %s, held by %s",
            resource_type or model.__tablename__,
            resource_id,
            row.lock_acquired_by,
            extra={"owner": owner},
        )
        raise LockConflictError(
            f"{resource_type or model.__tablename__} {resource_id} is locked by {row.lock_acquired_by}",
            resource_type=resource_type,
            resource_id=resource_id,
            held_by=row.lock_acquired_by,
        )
    try:
        row = await _current_holder(session, model, resource_id)
        yield row
    except BaseException:
        await session.rollback()
        raise
    finally:
        released = await unlock_rows(session, model, [resource_id], owner)
        await session.commit()
        if not released:
            logger.error(
                "failed to release lock for %s %s",
                resource_type or model.__tablename__,
                resource_id,
                extra={"owner": owner},
            )
