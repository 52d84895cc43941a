from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cloudplane.core.errors import DatabaseError, NotFoundError
from cloudplane.core.ids import new_id
from cloudplane.core.timeutil import get_millis
from cloudplane.domain.models import MultitenantDatabase
from cloudplane.domain.placement import (
    MultitenantDatabaseFilter,
    MultitenantDatabaseInstallations,
    filter_multitenant_databases,
)


async def get_multitenant_database(session: AsyncSession, database_id: str) -> MultitenantDatabase | None:
    result = await session.execute(select(MultitenantDatabase).where(MultitenantDatabase.id == database_id))
    return result.scalar_one_or_none()


async def get_multitenant_databases(
    session: AsyncSession,
    flt: MultitenantDatabaseFilter,
) -> list[MultitenantDatabase]:
    # Column filters go to SQL; membership and capacity are checked by the shared predicate.
    statement = select(MultitenantDatabase).order_by(MultitenantDatabase.create_at, MultitenantDatabase.id)
    if flt.vpc_id:
        statement = statement.where(MultitenantDatabase.vpc_id == flt.vpc_id)
    if flt.database_type:
        statement = statement.where(MultitenantDatabase.database_type == flt.database_type)
    if flt.locker_id:
        statement = statement.where(MultitenantDatabase.lock_acquired_by == flt.locker_id)
    if flt.ids is not None:
        statement = statement.where(MultitenantDatabase.id.in_(list(flt.ids)))
    if not flt.include_deleted:
        statement = statement.where(MultitenantDatabase.delete_at == 0)
    # Membership written by other sessions must not be masked by the identity map.
    result = await session.execute(statement.execution_options(populate_existing=True))
    return filter_multitenant_databases(result.scalars().all(), flt)


async def get_multitenant_database_for_installation(
    session: AsyncSession,
    installation_id: str,
) -> MultitenantDatabase:
    databases = await get_multitenant_databases(
        session, MultitenantDatabaseFilter(installation_id=installation_id)
    )
    if not databases:
        raise NotFoundError(f"no multitenant database hosts installation {installation_id}")
    if len(databases) > 1:
        raise DatabaseError(
            f"expected exactly one multitenant database for installation {installation_id}, found {len(databases)}"
        )
    return databases[0]


async def create_multitenant_database(
    session: AsyncSession,
    *,
    vpc_id: str,
    database_type: str,
    installation_ids: list[str] | None = None,
    database_id: str | None = None,
) -> MultitenantDatabase:
    database = MultitenantDatabase(
        id=database_id or new_id(),
        vpc_id=vpc_id,
        database_type=database_type,
        installations=MultitenantDatabaseInstallations(installation_ids).to_json(),
        create_at=get_millis(),
        delete_at=0,
        lock_acquired_by=None,
        lock_acquired_at=0,
    )
    session.add(database)
    await session.flush()
    return database
