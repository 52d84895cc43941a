from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from cloudplane.domain.models import (
    Cluster,
    Installation,
    InstallationBackup,
    InstallationDBMigrationOperation,
    InstallationDBRestorationOperation,
)
from cloudplane.domain.states import ResourceKind, state_machine_for
from cloudplane.persistence.repos.pending import get_unlocked_rows_in_states


_MODELS: dict[ResourceKind, Any] = {
    ResourceKind.CLUSTER: Cluster,
    ResourceKind.INSTALLATION: Installation,
    ResourceKind.INSTALLATION_BACKUP: InstallationBackup,
    ResourceKind.INSTALLATION_DB_MIGRATION: InstallationDBMigrationOperation,
    ResourceKind.INSTALLATION_DB_RESTORATION: InstallationDBRestorationOperation,
}


async def list_pending_work(session: AsyncSession, kind: ResourceKind | str) -> list[Any]:
    # Work queue for one supervisor tick; clusters come back highest priority first.
    machine = state_machine_for(kind)
    rows = await get_unlocked_rows_in_states(session, _MODELS[machine.kind], machine.pending_work)
    return machine.sort_by_priority(rows, key=lambda row: row.state)
