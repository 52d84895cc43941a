from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, Mapping, Sequence, TypeVar

from cloudplane.core.errors import TransitionConflictError


T = TypeVar("T")


class ResourceKind(str, Enum):
    CLUSTER = "cluster"
    INSTALLATION = "installation"
    CLUSTER_INSTALLATION = "cluster_installation"
    INSTALLATION_BACKUP = "installation_backup"
    INSTALLATION_DB_RESTORATION = "installation_db_restoration_operation"
    INSTALLATION_DB_MIGRATION = "installation_db_migration_operation"
    MULTITENANT_DATABASE = "multitenant_database"
    SUBSCRIPTION = "subscription"


# Cluster states.
CLUSTER_STATE_STABLE = "stable"
CLUSTER_STATE_REFRESH_METADATA = "refresh-metadata"
CLUSTER_STATE_CREATION_REQUESTED = "creation-requested"
CLUSTER_STATE_CREATION_IN_PROGRESS = "creation-in-progress"
CLUSTER_STATE_WAITING_FOR_NODES = "waiting-for-nodes"
CLUSTER_STATE_PROVISION_IN_PROGRESS = "provision-in-progress"
CLUSTER_STATE_CREATION_FAILED = "creation-failed"
CLUSTER_STATE_PROVISIONING_REQUESTED = "provisioning-requested"
CLUSTER_STATE_PROVISIONING_FAILED = "provisioning-failed"
CLUSTER_STATE_NODEGROUPS_CREATION_REQUESTED = "nodegroups-creation-requested"
CLUSTER_STATE_NODEGROUPS_CREATION_FAILED = "nodegroups-creation-failed"
CLUSTER_STATE_NODEGROUPS_DELETION_REQUESTED = "nodegroups-deletion-requested"
CLUSTER_STATE_NODEGROUPS_DELETION_FAILED = "nodegroups-deletion-failed"
CLUSTER_STATE_UPGRADE_REQUESTED = "upgrade-requested"
CLUSTER_STATE_UPGRADE_FAILED = "upgrade-failed"
CLUSTER_STATE_RESIZE_REQUESTED = "resize-requested"
CLUSTER_STATE_RESIZE_FAILED = "resize-failed"
CLUSTER_STATE_DELETION_REQUESTED = "deletion-requested"
CLUSTER_STATE_DELETION_FAILED = "deletion-failed"
CLUSTER_STATE_DELETED = "deleted"

# Installation states.
INSTALLATION_STATE_STABLE = "stable"
INSTALLATION_STATE_CREATION_REQUESTED = "creation-requested"
INSTALLATION_STATE_CREATION_PRE_PROVISIONING = "creation-pre-provisioning"
INSTALLATION_STATE_CREATION_IN_PROGRESS = "creation-in-progress"
INSTALLATION_STATE_CREATION_DNS = "creation-configuring-dns"
INSTALLATION_STATE_CREATION_FAILED = "creation-failed"
INSTALLATION_STATE_CREATION_NO_COMPATIBLE_CLUSTERS = "creation-no-compatible-clusters"
INSTALLATION_STATE_CREATION_FINAL_TASKS = "creation-final-tasks"
INSTALLATION_STATE_HIBERNATION_REQUESTED = "hibernation-requested"
INSTALLATION_STATE_HIBERNATION_IN_PROGRESS = "hibernation-in-progress"
INSTALLATION_STATE_HIBERNATING = "hibernating"
INSTALLATION_STATE_UPDATE_REQUESTED = "update-requested"
INSTALLATION_STATE_UPDATE_IN_PROGRESS = "update-in-progress"
INSTALLATION_STATE_UPDATE_FAILED = "update-failed"
INSTALLATION_STATE_DB_MIGRATION_IN_PROGRESS = "db-migration-in-progress"
INSTALLATION_STATE_DELETION_REQUESTED = "deletion-requested"
INSTALLATION_STATE_DELETION_IN_PROGRESS = "deletion-in-progress"
INSTALLATION_STATE_DELETION_FINAL_CLEANUP = "deletion-final-cleanup"
INSTALLATION_STATE_DELETION_FAILED = "deletion-failed"
INSTALLATION_STATE_DELETED = "deleted"

# Installation backup states.
BACKUP_STATE_REQUESTED = "backup-requested"
BACKUP_STATE_IN_PROGRESS = "backup-in-progress"
BACKUP_STATE_SUCCEEDED = "backup-succeeded"
BACKUP_STATE_FAILED = "backup-failed"
BACKUP_STATE_DELETION_REQUESTED = "deletion-requested"
BACKUP_STATE_DELETED = "deleted"
BACKUP_STATE_DELETION_FAILED = "deletion-failed"

# Installation database migration operation states.
DB_MIGRATION_STATE_REQUESTED = "installation-db-migration-requested"
DB_MIGRATION_STATE_BACKUP_IN_PROGRESS = "installation-db-migration-installation-backup-in-progress"
DB_MIGRATION_STATE_DATABASE_SWITCH = "installation-db-migration-database-switch"
DB_MIGRATION_STATE_REFRESH_SECRETS = "installation-db-migration-refresh-secrets"
DB_MIGRATION_STATE_TRIGGER_RESTORATION = "installation-db-migration-trigger-restoration"
DB_MIGRATION_STATE_RESTORATION_IN_PROGRESS = "installation-db-migration-restoration-in-progress"
DB_MIGRATION_STATE_UPDATING_INSTALLATION_CONFIG = "installation-db-migration-updating-installation-config"
DB_MIGRATION_STATE_FINALIZING = "installation-db-migration-finalizing"
DB_MIGRATION_STATE_FAILING = "installation-db-migration-failing"
DB_MIGRATION_STATE_SUCCEEDED = "installation-db-migration-succeeded"
DB_MIGRATION_STATE_FAILED = "installation-db-migration-failed"
DB_MIGRATION_STATE_COMMITTED = "installation-db-migration-committed"
DB_MIGRATION_STATE_ROLLBACK_REQUESTED = "installation-db-migration-rollback-requested"
DB_MIGRATION_STATE_ROLLBACK_FINISHED = "installation-db-migration-rollback-finished"
DB_MIGRATION_STATE_DELETION_REQUESTED = "installation-db-migration-deletion-requested"
DB_MIGRATION_STATE_DELETED = "installation-db-migration-deleted"

# Installation database restoration operation states.
DB_RESTORATION_STATE_REQUESTED = "installation-db-restoration-requested"
DB_RESTORATION_STATE_IN_PROGRESS = "installation-db-restoration-in-progress"
DB_RESTORATION_STATE_FINALIZING = "installation-db-restoration-finishing"
DB_RESTORATION_STATE_SUCCEEDED = "installation-db-restoration-succeeded"
DB_RESTORATION_STATE_FAILING = "installation-db-restoration-failing"
DB_RESTORATION_STATE_FAILED = "installation-db-restoration-failed"
DB_RESTORATION_STATE_INVALID = "installation-db-restoration-invalid"
DB_RESTORATION_STATE_DELETION_REQUESTED = "installation-db-restoration-deletion-requested"
DB_RESTORATION_STATE_DELETED = "installation-db-restoration-deleted"


@dataclass(frozen=True)
class TransitionRule:
    # One row of the transition table: target state and the states it may be entered from.
    resource_kind: ResourceKind
    target_state: str
    allowed_sources: tuple[str, ...]


@dataclass(frozen=True)
class StateReportEntry:
    requested_state: str
    valid_states: tuple[str, ...]
    invalid_states: tuple[str, ...]


@dataclass(frozen=True)
class StateMachine:
    """Immutable state registry for one resource kind.

    ``transitions`` is keyed by *target* state; each value lists the current
    states from which that target may be requested. Self-loops are explicit
    rows and model idempotent re-submission of an in-flight request.
    """

    kind: ResourceKind
    states: tuple[str, ...]
    pending_work: frozenset[str]
    request_states: tuple[str, ...]
    transitions: Mapping[str, frozenset[str]]
    priorities: Mapping[str, int] = field(default_factory=dict)

    def is_pending_work(self, state: str) -> bool:
        return state in self.pending_work

    def valid_transition(self, current: str, target: str) -> bool:
        # Unknown targets fail closed.
        sources = self.transitions.get(target)
        if sources is None:
            return False
        return current in sources

    def require_transition(self, current: str, target: str) -> None:
        if not self.valid_transition(current, target):
            raise TransitionConflictError(
                resource_type=self.kind.value,
                current_state=current,
                target_state=target,
            )

    def work_priority(self, state: str) -> int:
        return self.priorities.get(state, 0)

    def sort_by_priority(self, items: Iterable[T], key: Callable[[T], str]) -> list[T]:
        # Higher priority first; sorted() is stable so equal priorities keep input order.
        return sorted(items, key=lambda item: -self.work_priority(key(item)))

    def request_state_report(self) -> list[StateReportEntry]:
        report: list[StateReportEntry] = []
        for requested in self.request_states:
            valid = tuple(state for state in self.states if self.valid_transition(state, requested))
            invalid = tuple(state for state in self.states if state not in valid)
            report.append(
                StateReportEntry(requested_state=requested, valid_states=valid, invalid_states=invalid)
            )
        return report


_CLUSTER_STATES = (
    CLUSTER_STATE_STABLE,
    CLUSTER_STATE_REFRESH_METADATA,
    CLUSTER_STATE_CREATION_REQUESTED,
    CLUSTER_STATE_CREATION_IN_PROGRESS,
    CLUSTER_STATE_WAITING_FOR_NODES,
    CLUSTER_STATE_PROVISION_IN_PROGRESS,
    CLUSTER_STATE_CREATION_FAILED,
    CLUSTER_STATE_PROVISIONING_REQUESTED,
    CLUSTER_STATE_PROVISIONING_FAILED,
    CLUSTER_STATE_NODEGROUPS_CREATION_REQUESTED,
    CLUSTER_STATE_NODEGROUPS_CREATION_FAILED,
    CLUSTER_STATE_NODEGROUPS_DELETION_REQUESTED,
    CLUSTER_STATE_NODEGROUPS_DELETION_FAILED,
    CLUSTER_STATE_UPGRADE_REQUESTED,
    CLUSTER_STATE_UPGRADE_FAILED,
    CLUSTER_STATE_RESIZE_REQUESTED,
    CLUSTER_STATE_RESIZE_FAILED,
    CLUSTER_STATE_DELETION_REQUESTED,
    CLUSTER_STATE_DELETION_FAILED,
    CLUSTER_STATE_DELETED,
)

_INSTALLATION_STATES = (
    INSTALLATION_STATE_STABLE,
    INSTALLATION_STATE_CREATION_REQUESTED,
    INSTALLATION_STATE_CREATION_PRE_PROVISIONING,
    INSTALLATION_STATE_CREATION_IN_PROGRESS,
    INSTALLATION_STATE_CREATION_DNS,
    INSTALLATION_STATE_CREATION_FAILED,
    INSTALLATION_STATE_CREATION_NO_COMPATIBLE_CLUSTERS,
    INSTALLATION_STATE_CREATION_FINAL_TASKS,
    INSTALLATION_STATE_HIBERNATION_REQUESTED,
    INSTALLATION_STATE_HIBERNATION_IN_PROGRESS,
    INSTALLATION_STATE_HIBERNATING,
    INSTALLATION_STATE_UPDATE_REQUESTED,
    INSTALLATION_STATE_UPDATE_IN_PROGRESS,
    INSTALLATION_STATE_UPDATE_FAILED,
    INSTALLATION_STATE_DB_MIGRATION_IN_PROGRESS,
    INSTALLATION_STATE_DELETION_REQUESTED,
    INSTALLATION_STATE_DELETION_IN_PROGRESS,
    INSTALLATION_STATE_DELETION_FINAL_CLEANUP,
    INSTALLATION_STATE_DELETION_FAILED,
    INSTALLATION_STATE_DELETED,
)

_BACKUP_STATES = (
    BACKUP_STATE_REQUESTED,
    BACKUP_STATE_IN_PROGRESS,
    BACKUP_STATE_SUCCEEDED,
    BACKUP_STATE_FAILED,
    BACKUP_STATE_DELETION_REQUESTED,
    BACKUP_STATE_DELETED,
    BACKUP_STATE_DELETION_FAILED,
)

_DB_MIGRATION_STATES = (
    DB_MIGRATION_STATE_REQUESTED,
    DB_MIGRATION_STATE_BACKUP_IN_PROGRESS,
    DB_MIGRATION_STATE_DATABASE_SWITCH,
    DB_MIGRATION_STATE_REFRESH_SECRETS,
    DB_MIGRATION_STATE_TRIGGER_RESTORATION,
    DB_MIGRATION_STATE_RESTORATION_IN_PROGRESS,
    DB_MIGRATION_STATE_UPDATING_INSTALLATION_CONFIG,
    DB_MIGRATION_STATE_FINALIZING,
    DB_MIGRATION_STATE_FAILING,
    DB_MIGRATION_STATE_SUCCEEDED,
    DB_MIGRATION_STATE_FAILED,
    DB_MIGRATION_STATE_COMMITTED,
    DB_MIGRATION_STATE_ROLLBACK_REQUESTED,
    DB_MIGRATION_STATE_ROLLBACK_FINISHED,
    DB_MIGRATION_STATE_DELETION_REQUESTED,
    DB_MIGRATION_STATE_DELETED,
)

_DB_RESTORATION_STATES = (
    DB_RESTORATION_STATE_REQUESTED,
    DB_RESTORATION_STATE_IN_PROGRESS,
    DB_RESTORATION_STATE_FINALIZING,
    DB_RESTORATION_STATE_SUCCEEDED,
    DB_RESTORATION_STATE_FAILING,
    DB_RESTORATION_STATE_FAILED,
    DB_RESTORATION_STATE_INVALID,
    DB_RESTORATION_STATE_DELETION_REQUESTED,
    DB_RESTORATION_STATE_DELETED,
)

# Every installation state except the terminal one and the migration hold state
# may request deletion.
_INSTALLATION_DELETABLE_FROM = tuple(
    state
    for state in _INSTALLATION_STATES
    if state not in {INSTALLATION_STATE_DELETED, INSTALLATION_STATE_DB_MIGRATION_IN_PROGRESS}
)

TRANSITION_RULES: tuple[TransitionRule, ...] = (
    TransitionRule(
        ResourceKind.CLUSTER,
        CLUSTER_STATE_CREATION_REQUESTED,
        (CLUSTER_STATE_CREATION_REQUESTED, CLUSTER_STATE_CREATION_FAILED),
    ),
    TransitionRule(
        ResourceKind.CLUSTER,
        CLUSTER_STATE_PROVISIONING_REQUESTED,
        (CLUSTER_STATE_STABLE, CLUSTER_STATE_PROVISIONING_FAILED, CLUSTER_STATE_PROVISIONING_REQUESTED),
    ),
    TransitionRule(
        ResourceKind.CLUSTER,
        CLUSTER_STATE_UPGRADE_REQUESTED,
        (CLUSTER_STATE_STABLE, CLUSTER_STATE_UPGRADE_REQUESTED, CLUSTER_STATE_UPGRADE_FAILED),
    ),
    TransitionRule(
        ResourceKind.CLUSTER,
        CLUSTER_STATE_RESIZE_REQUESTED,
        (CLUSTER_STATE_STABLE, CLUSTER_STATE_RESIZE_REQUESTED, CLUSTER_STATE_RESIZE_FAILED),
    ),
    TransitionRule(
        ResourceKind.CLUSTER,
        CLUSTER_STATE_NODEGROUPS_CREATION_REQUESTED,
        (
            CLUSTER_STATE_STABLE,
            CLUSTER_STATE_NODEGROUPS_CREATION_REQUESTED,
            CLUSTER_STATE_NODEGROUPS_CREATION_FAILED,
        ),
    ),
    TransitionRule(
        ResourceKind.CLUSTER,
        CLUSTER_STATE_NODEGROUPS_DELETION_REQUESTED,
        (
            CLUSTER_STATE_STABLE,
            CLUSTER_STATE_NODEGROUPS_DELETION_REQUESTED,
            CLUSTER_STATE_NODEGROUPS_DELETION_FAILED,
        ),
    ),
    TransitionRule(
        ResourceKind.CLUSTER,
        CLUSTER_STATE_DELETION_REQUESTED,
        (
            CLUSTER_STATE_STABLE,
            CLUSTER_STATE_CREATION_REQUESTED,
            CLUSTER_STATE_CREATION_FAILED,
            CLUSTER_STATE_PROVISIONING_FAILED,
            CLUSTER_STATE_UPGRADE_REQUESTED,
            CLUSTER_STATE_UPGRADE_FAILED,
            CLUSTER_STATE_DELETION_REQUESTED,
            CLUSTER_STATE_DELETION_FAILED,
        ),
    ),
    TransitionRule(
        ResourceKind.INSTALLATION,
        INSTALLATION_STATE_CREATION_REQUESTED,
        (INSTALLATION_STATE_CREATION_REQUESTED, INSTALLATION_STATE_CREATION_FAILED),
    ),
    TransitionRule(
        ResourceKind.INSTALLATION,
        INSTALLATION_STATE_HIBERNATION_REQUESTED,
        (INSTALLATION_STATE_STABLE,),
    ),
    TransitionRule(
        ResourceKind.INSTALLATION,
        INSTALLATION_STATE_UPDATE_REQUESTED,
        (
            INSTALLATION_STATE_STABLE,
            INSTALLATION_STATE_HIBERNATING,
            INSTALLATION_STATE_UPDATE_REQUESTED,
            INSTALLATION_STATE_UPDATE_IN_PROGRESS,
            INSTALLATION_STATE_UPDATE_FAILED,
        ),
    ),
    TransitionRule(
        ResourceKind.INSTALLATION,
        INSTALLATION_STATE_DELETION_REQUESTED,
        _INSTALLATION_DELETABLE_FROM,
    ),
    TransitionRule(
        ResourceKind.INSTALLATION_BACKUP,
        BACKUP_STATE_DELETION_REQUESTED,
        (
            BACKUP_STATE_REQUESTED,
            BACKUP_STATE_IN_PROGRESS,
            BACKUP_STATE_SUCCEEDED,
            BACKUP_STATE_FAILED,
            BACKUP_STATE_DELETION_REQUESTED,
            BACKUP_STATE_DELETION_FAILED,
        ),
    ),
    TransitionRule(
        ResourceKind.INSTALLATION_DB_MIGRATION,
        DB_MIGRATION_STATE_ROLLBACK_REQUESTED,
        (DB_MIGRATION_STATE_SUCCEEDED,),
    ),
    TransitionRule(
        ResourceKind.INSTALLATION_DB_MIGRATION,
        DB_MIGRATION_STATE_COMMITTED,
        (DB_MIGRATION_STATE_SUCCEEDED,),
    ),
    TransitionRule(
        ResourceKind.INSTALLATION_DB_MIGRATION,
        DB_MIGRATION_STATE_DELETION_REQUESTED,
        (
            DB_MIGRATION_STATE_SUCCEEDED,
            DB_MIGRATION_STATE_FAILED,
            DB_MIGRATION_STATE_COMMITTED,
            DB_MIGRATION_STATE_ROLLBACK_FINISHED,
        ),
    ),
    TransitionRule(
        ResourceKind.INSTALLATION_DB_RESTORATION,
        DB_RESTORATION_STATE_DELETION_REQUESTED,
        (
            DB_RESTORATION_STATE_SUCCEEDED,
            DB_RESTORATION_STATE_FAILED,
            DB_RESTORATION_STATE_INVALID,
        ),
    ),
)


def _transitions_for(kind: ResourceKind, rules: Sequence[TransitionRule]) -> dict[str, frozenset[str]]:
    table: dict[str, frozenset[str]] = {}
    for rule in rules:
        if rule.resource_kind != kind:
            continue
        if rule.target_state in table:
            raise ValueError(f"duplicate transition rule for {kind.value} -> {rule.target_state}")
        table[rule.target_state] = frozenset(rule.allowed_sources)
    return table


def _build(
    kind: ResourceKind,
    *,
    states: tuple[str, ...],
    pending_work: Iterable[str],
    request_states: tuple[str, ...],
    priorities: Mapping[str, int] | None = None,
) -> StateMachine:
    pending = frozenset(pending_work)
    unknown = pending.difference(states)
    if unknown:
        raise ValueError(f"pending states not registered for {kind.value}: {sorted(unknown)}")
    return StateMachine(
        kind=kind,
        states=states,
        pending_work=pending,
        request_states=request_states,
        transitions=_transitions_for(kind, TRANSITION_RULES),
        priorities=dict(priorities or {}),
    )


CLUSTER_STATE_MACHINE = _build(
    ResourceKind.CLUSTER,
    states=_CLUSTER_STATES,
    pending_work=(
        CLUSTER_STATE_CREATION_REQUESTED,
        CLUSTER_STATE_CREATION_IN_PROGRESS,
        CLUSTER_STATE_WAITING_FOR_NODES,
        CLUSTER_STATE_PROVISION_IN_PROGRESS,
        CLUSTER_STATE_PROVISIONING_REQUESTED,
        CLUSTER_STATE_REFRESH_METADATA,
        CLUSTER_STATE_UPGRADE_REQUESTED,
        CLUSTER_STATE_RESIZE_REQUESTED,
        CLUSTER_STATE_NODEGROUPS_CREATION_REQUESTED,
        CLUSTER_STATE_NODEGROUPS_DELETION_REQUESTED,
        CLUSTER_STATE_DELETION_REQUESTED,
    ),
    request_states=(
        CLUSTER_STATE_CREATION_REQUESTED,
        CLUSTER_STATE_PROVISIONING_REQUESTED,
        CLUSTER_STATE_UPGRADE_REQUESTED,
        CLUSTER_STATE_RESIZE_REQUESTED,
        CLUSTER_STATE_NODEGROUPS_CREATION_REQUESTED,
        CLUSTER_STATE_NODEGROUPS_DELETION_REQUESTED,
        CLUSTER_STATE_DELETION_REQUESTED,
    ),
    # Fresh creations are serviced before clusters already mid-provisioning.
    priorities={
        CLUSTER_STATE_CREATION_REQUESTED: 4,
        CLUSTER_STATE_CREATION_IN_PROGRESS: 3,
        CLUSTER_STATE_WAITING_FOR_NODES: 2,
        CLUSTER_STATE_PROVISION_IN_PROGRESS: 1,
    },
)

INSTALLATION_STATE_MACHINE = _build(
    ResourceKind.INSTALLATION,
    states=_INSTALLATION_STATES,
    pending_work=(
        INSTALLATION_STATE_CREATION_REQUESTED,
        INSTALLATION_STATE_CREATION_PRE_PROVISIONING,
        INSTALLATION_STATE_CREATION_IN_PROGRESS,
        INSTALLATION_STATE_CREATION_NO_COMPATIBLE_CLUSTERS,
        INSTALLATION_STATE_CREATION_FINAL_TASKS,
        INSTALLATION_STATE_CREATION_DNS,
        INSTALLATION_STATE_HIBERNATION_REQUESTED,
        INSTALLATION_STATE_HIBERNATION_IN_PROGRESS,
        INSTALLATION_STATE_UPDATE_REQUESTED,
        INSTALLATION_STATE_UPDATE_IN_PROGRESS,
        INSTALLATION_STATE_DELETION_REQUESTED,
        INSTALLATION_STATE_DELETION_IN_PROGRESS,
        INSTALLATION_STATE_DELETION_FINAL_CLEANUP,
    ),
    request_states=(
        INSTALLATION_STATE_CREATION_REQUESTED,
        INSTALLATION_STATE_HIBERNATION_REQUESTED,
        INSTALLATION_STATE_UPDATE_REQUESTED,
        INSTALLATION_STATE_DELETION_REQUESTED,
    ),
)

BACKUP_STATE_MACHINE = _build(
    ResourceKind.INSTALLATION_BACKUP,
    states=_BACKUP_STATES,
    pending_work=(BACKUP_STATE_REQUESTED, BACKUP_STATE_IN_PROGRESS, BACKUP_STATE_DELETION_REQUESTED),
    request_states=(BACKUP_STATE_DELETION_REQUESTED,),
)

# Backups still occupying the installation; a new backup may not start while one runs.
BACKUP_STATES_RUNNING = frozenset({BACKUP_STATE_REQUESTED, BACKUP_STATE_IN_PROGRESS})

DB_MIGRATION_STATE_MACHINE = _build(
    ResourceKind.INSTALLATION_DB_MIGRATION,
    states=_DB_MIGRATION_STATES,
    pending_work=(
        DB_MIGRATION_STATE_REQUESTED,
        DB_MIGRATION_STATE_BACKUP_IN_PROGRESS,
        DB_MIGRATION_STATE_DATABASE_SWITCH,
        DB_MIGRATION_STATE_REFRESH_SECRETS,
        DB_MIGRATION_STATE_TRIGGER_RESTORATION,
        DB_MIGRATION_STATE_RESTORATION_IN_PROGRESS,
        DB_MIGRATION_STATE_UPDATING_INSTALLATION_CONFIG,
        DB_MIGRATION_STATE_FINALIZING,
        DB_MIGRATION_STATE_FAILING,
        DB_MIGRATION_STATE_ROLLBACK_REQUESTED,
        DB_MIGRATION_STATE_DELETION_REQUESTED,
    ),
    request_states=(
        DB_MIGRATION_STATE_ROLLBACK_REQUESTED,
        DB_MIGRATION_STATE_COMMITTED,
        DB_MIGRATION_STATE_DELETION_REQUESTED,
    ),
)

DB_RESTORATION_STATE_MACHINE = _build(
    ResourceKind.INSTALLATION_DB_RESTORATION,
    states=_DB_RESTORATION_STATES,
    pending_work=(
        DB_RESTORATION_STATE_REQUESTED,
        DB_RESTORATION_STATE_IN_PROGRESS,
        DB_RESTORATION_STATE_FINALIZING,
        DB_RESTORATION_STATE_FAILING,
        DB_RESTORATION_STATE_DELETION_REQUESTED,
    ),
    request_states=(DB_RESTORATION_STATE_DELETION_REQUESTED,),
)

STATE_MACHINES: Mapping[ResourceKind, StateMachine] = {
    ResourceKind.CLUSTER: CLUSTER_STATE_MACHINE,
    ResourceKind.INSTALLATION: INSTALLATION_STATE_MACHINE,
    ResourceKind.INSTALLATION_BACKUP: BACKUP_STATE_MACHINE,
    ResourceKind.INSTALLATION_DB_MIGRATION: DB_MIGRATION_STATE_MACHINE,
    ResourceKind.INSTALLATION_DB_RESTORATION: DB_RESTORATION_STATE_MACHINE,
}


def state_machine_for(kind: ResourceKind | str) -> StateMachine:
    resolved = ResourceKind(kind)
    machine = STATE_MACHINES.get(resolved)
    if machine is None:
        raise KeyError(f"{resolved.value} has no state machine")
    return machine


def valid_transition_state(kind: ResourceKind | str, current: str, target: str) -> bool:
    return state_machine_for(kind).valid_transition(current, target)
