from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from dataclasses import replace
from typing import AsyncIterator

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cloudplane.core.config import get_settings
from cloudplane.core.errors import LockConflictError, NotFoundError
from cloudplane.domain.models import Installation, MultitenantDatabase
from cloudplane.domain.placement import (
    MultitenantDatabaseFilter,
    MultitenantDatabaseInstallations,
    select_database_for_installation,
)
from cloudplane.domain.states import ResourceKind
from cloudplane.persistence.repos import multitenant_databases as databases_repo
from cloudplane.services.locking import locked


logger = logging.getLogger(__name__)


def _with_default_limit(flt: MultitenantDatabaseFilter) -> MultitenantDatabaseFilter:
    if flt.max_installations_limit is None:
        return replace(flt, max_installations_limit=get_settings().multitenant_db_max_installations)
    return flt


@asynccontextmanager
async def _installation_placement_lock(
    session: AsyncSession,
    installation_id: str,
    owner: str,
) -> AsyncIterator[Installation]:
    # Placement of one installation is serialised on its row lock; a caller already holding it keeps it.
    result = await session.execute(
        select(Installation)
        .where(Installation.id == installation_id)
        .execution_options(populate_existing=True)
    )
    installation = result.scalar_one_or_none()
    if installation is None or installation.delete_at:
        raise NotFoundError(f"installation {installation_id} not found")
    if installation.lock_acquired_by == owner:
        yield installation
        return
    async with locked(
        session,
        Installation,
        installation_id,
        owner,
        resource_type=ResourceKind.INSTALLATION.value,
    ) as locked_installation:
        yield locked_installation


async def assign_installation_to_multitenant_database(
    session: AsyncSession,
    installation_id: str,
    flt: MultitenantDatabaseFilter,
    owner: str,
) -> MultitenantDatabase | None:
    """Place an installation on the least-loaded matching multitenant database.

    Returns ``None`` when no database has room; provisioning new capacity is
    the caller's decision. The installation lock is held throughout so two
    supervisors can never place the same installation on different
    databases, and capacity is re-checked under each candidate's lock.
    """
    flt = _with_default_limit(flt)
    async with _installation_placement_lock(session, installation_id, owner):
        existing = await databases_repo.get_multitenant_databases(
            session, MultitenantDatabaseFilter(installation_id=installation_id)
        )
        if existing:
            return existing[0]

        candidates = await databases_repo.get_multitenant_databases(session, flt)
        while candidates:
            chosen = select_database_for_installation(candidates, flt)
            if chosen is None:
                return None
            candidates = [database for database in candidates if database.id != chosen.id]
            try:
                async with locked(
                    session,
                    MultitenantDatabase,
                    chosen.id,
                    owner,
                    resource_type=ResourceKind.MULTITENANT_DATABASE.value,
                ) as database:
                    if not flt.matches(database):
                        continue
                    members = MultitenantDatabaseInstallations.from_json(database.installations)
                    members.add(installation_id)
                    database.installations = members.to_json()
                    await session.commit()
                    logger.info(
                        "installation %s placed on multitenant database %s",
                        installation_id,
                        database.id,
                        extra={"installations": members.count()},
                    )
                    return database
            except LockConflictError:
                logger.warning("multitenant database %s is locked, trying next candidate", chosen.id)
        return None


async def release_installation_from_multitenant_database(
    session: AsyncSession,
    installation_id: str,
    owner: str,
) -> MultitenantDatabase:
    database = await databases_repo.get_multitenant_database_for_installation(session, installation_id)
    async with locked(
        session,
        MultitenantDatabase,
        database.id,
        owner,
        resource_type=ResourceKind.MULTITENANT_DATABASE.value,
    ) as locked_database:
        members = MultitenantDatabaseInstallations.from_json(locked_database.installations)
        if members.remove(installation_id):
            locked_database.installations = members.to_json()
            await session.commit()
        return locked_database
