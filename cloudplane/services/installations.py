from __future__ import annotations

from datetime import datetime, timedelta
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from cloudplane.core.errors import NotFoundError, RequestValidationError
from cloudplane.core.ids import new_id
from cloudplane.core.timeutil import from_millis, get_millis
from cloudplane.domain.models import (
    Installation,
    InstallationBackup,
    InstallationDBMigrationOperation,
)
from cloudplane.domain.patches import PatchInstallationRequest
from cloudplane.domain.reports import DeletionPendingReport
from cloudplane.domain.requests import (
    CreateInstallationBackupRequest,
    CreateInstallationRequest,
    ensure_installation_ready_for_backup,
)
from cloudplane.domain.states import (
    BACKUP_STATE_DELETION_REQUESTED,
    BACKUP_STATE_MACHINE,
    BACKUP_STATE_REQUESTED,
    DB_MIGRATION_STATE_MACHINE,
    DB_MIGRATION_STATE_ROLLBACK_REQUESTED,
    INSTALLATION_STATE_DB_MIGRATION_IN_PROGRESS,
    INSTALLATION_STATE_HIBERNATING,
    INSTALLATION_STATE_MACHINE,
    INSTALLATION_STATE_UPDATE_REQUESTED,
    ResourceKind,
)
from cloudplane.persistence.repos import installations as installations_repo
from cloudplane.services.events import record_state_change
from cloudplane.services.locking import locked


logger = logging.getLogger(__name__)


def _live(row: Any, kind: ResourceKind, resource_id: str) -> Any:
    if row is None or row.delete_at:
        raise NotFoundError(f"{kind.value} {resource_id} not found")
    return row


async def _transition(session: AsyncSession, kind: ResourceKind, row: Any, target: str) -> None:
    old_state = row.state
    row.state = target
    if old_state != target:
        await record_state_change(session, kind, row.id, old_state, target)


async def create_installation(session: AsyncSession, request: CreateInstallationRequest) -> Installation:
    request.set_defaults()
    request.validate_request()
    installation = await installations_repo.create_installation(session, request)
    await record_state_change(session, ResourceKind.INSTALLATION, installation.id, "", installation.state)
    await session.commit()
    return installation


async def request_installation_update(
    session: AsyncSession,
    installation_id: str,
    patch: PatchInstallationRequest,
    owner: str,
) -> tuple[Installation, bool]:
    patch.validate_patch()
    async with locked(
        session, Installation, installation_id, owner, resource_type=ResourceKind.INSTALLATION.value
    ) as installation:
        installation = _live(installation, ResourceKind.INSTALLATION, installation_id)
        INSTALLATION_STATE_MACHINE.require_transition(installation.state, INSTALLATION_STATE_UPDATE_REQUESTED)
        if not patch.apply(installation):
            return installation, False
        await _transition(session, ResourceKind.INSTALLATION, installation, INSTALLATION_STATE_UPDATE_REQUESTED)
        await session.commit()
        return installation, True


async def request_installation_backup(
    session: AsyncSession,
    request: CreateInstallationBackupRequest,
    owner: str,
) -> InstallationBackup:
    request.validate_request()
    async with locked(
        session, Installation, request.installation_id, owner, resource_type=ResourceKind.INSTALLATION.value
    ) as installation:
        installation = _live(installation, ResourceKind.INSTALLATION, request.installation_id)
        ensure_installation_ready_for_backup(installation)
        running = await installations_repo.get_running_backups(session, installation.id)
        if running:
            raise RequestValidationError(
                f"backup {running[0].id} for installation {installation.id} is still running",
                field="installation_id",
                value=installation.id,
            )
        backup = InstallationBackup(
            id=new_id(),
            installation_id=installation.id,
            backed_up_database_type=installation.database,
            state=BACKUP_STATE_REQUESTED,
            request_at=get_millis(),
            start_at=0,
            delete_at=0,
            lock_acquired_by=None,
            lock_acquired_at=0,
        )
        session.add(backup)
        await session.flush()
        await record_state_change(session, ResourceKind.INSTALLATION_BACKUP, backup.id, "", backup.state)
        await session.commit()
        return backup


async def request_backup_deletion(session: AsyncSession, backup_id: str, owner: str) -> InstallationBackup:
    async with locked(
        session, InstallationBackup, backup_id, owner, resource_type=ResourceKind.INSTALLATION_BACKUP.value
    ) as backup:
        backup = _live(backup, ResourceKind.INSTALLATION_BACKUP, backup_id)
        BACKUP_STATE_MACHINE.require_transition(backup.state, BACKUP_STATE_DELETION_REQUESTED)
        await _transition(session, ResourceKind.INSTALLATION_BACKUP, backup, BACKUP_STATE_DELETION_REQUESTED)
        await session.commit()
        return backup


async def request_db_migration_rollback(
    session: AsyncSession,
    operation_id: str,
    owner: str,
) -> InstallationDBMigrationOperation:
    kind = ResourceKind.INSTALLATION_DB_MIGRATION
    async with locked(session, InstallationDBMigrationOperation, operation_id, owner, resource_type=kind.value) as operation:
        operation = _live(operation, kind, operation_id)
        DB_MIGRATION_STATE_MACHINE.require_transition(operation.state, DB_MIGRATION_STATE_ROLLBACK_REQUESTED)
        async with locked(
            session,
            Installation,
            operation.installation_id,
            owner,
            resource_type=ResourceKind.INSTALLATION.value,
        ) as installation:
            installation = _live(installation, ResourceKind.INSTALLATION, operation.installation_id)
            # Rolling back swaps databases underneath the installation, so it must be idle.
            if installation.state != INSTALLATION_STATE_HIBERNATING:
                raise RequestValidationError(
                    "installation needs to be hibernated to be rolled back",
                    field="state",
                    value=installation.state,
                )
            await _transition(session, kind, operation, DB_MIGRATION_STATE_ROLLBACK_REQUESTED)
            await _transition(
                session, ResourceKind.INSTALLATION, installation, INSTALLATION_STATE_DB_MIGRATION_IN_PROGRESS
            )
            await session.commit()
        return operation


async def installation_deletion_report(
    session: AsyncSession,
    *,
    days: int,
    now: datetime | None = None,
) -> DeletionPendingReport:
    # One cutoff per day ahead; anything later lands in the overflow row.
    start = now or from_millis(get_millis())
    report = DeletionPendingReport()
    for day in range(1, days + 1):
        report.new_cutoff(f"{day} day(s)", start + timedelta(days=day))
    for installation in await installations_repo.list_deletion_pending_installations(session):
        report.count(installation.deletion_pending_expiry)
    return report
