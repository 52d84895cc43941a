from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cloudplane.core.ids import new_id
from cloudplane.core.timeutil import get_millis
from cloudplane.domain.env import EnvVarMap
from cloudplane.domain.models import (
    Installation,
    InstallationBackup,
    InstallationDBMigrationOperation,
)
from cloudplane.domain.requests import CreateInstallationRequest
from cloudplane.domain.states import BACKUP_STATES_RUNNING, INSTALLATION_STATE_CREATION_REQUESTED


async def get_installation(session: AsyncSession, installation_id: str) -> Installation | None:
    result = await session.execute(select(Installation).where(Installation.id == installation_id))
    return result.scalar_one_or_none()


async def list_deletion_pending_installations(session: AsyncSession) -> list[Installation]:
    result = await session.execute(
        select(Installation)
        .where(Installation.deletion_pending_expiry != 0, Installation.delete_at == 0)
        .order_by(Installation.deletion_pending_expiry, Installation.id)
    )
    return list(result.scalars().all())


async def create_installation(
    session: AsyncSession,
    request: CreateInstallationRequest,
    *,
    installation_id: str | None = None,
) -> Installation:
    env = EnvVarMap(request.env)
    installation = Installation(
        id=installation_id or new_id(),
        owner_id=request.owner_id,
        group_id=request.group_id or None,
        dns=request.dns,
        name=request.dns.split(".", 1)[0],
        version=request.version,
        image=request.image,
        license=request.license,
        size=request.size,
        affinity=request.affinity,
        database=request.database,
        filestore=request.filestore,
        state=INSTALLATION_STATE_CREATION_REQUESTED,
        env=env.to_json() if env else None,
        volumes=None,
        deletion_pending_expiry=0,
        create_at=get_millis(),
        delete_at=0,
        lock_acquired_by=None,
        lock_acquired_at=0,
    )
    session.add(installation)
    await session.flush()
    return installation


async def get_running_backups(session: AsyncSession, installation_id: str) -> list[InstallationBackup]:
    result = await session.execute(
        select(InstallationBackup).where(
            InstallationBackup.installation_id == installation_id,
            InstallationBackup.state.in_(list(BACKUP_STATES_RUNNING)),
            InstallationBackup.delete_at == 0,
        )
    )
    return list(result.scalars().all())


async def get_db_migration_operation(
    session: AsyncSession, operation_id: str
) -> InstallationDBMigrationOperation | None:
    result = await session.execute(
        select(InstallationDBMigrationOperation).where(InstallationDBMigrationOperation.id == operation_id)
    )
    return result.scalar_one_or_none()
