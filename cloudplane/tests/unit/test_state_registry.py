from __future__ import annotations

import pytest

from cloudplane.core.errors import TransitionConflictError
from cloudplane.domain import states
from cloudplane.domain.states import (
    CLUSTER_STATE_MACHINE,
    INSTALLATION_STATE_MACHINE,
    STATE_MACHINES,
    ResourceKind,
    state_machine_for,
    valid_transition_state,
)


def test_every_machine_keeps_pending_work_within_its_states() -> None:
    # Pending states must be drawn from the registered state set.
    for machine in STATE_MACHINES.values():
        assert machine.pending_work <= set(machine.states)


def test_every_transition_references_known_states() -> None:
    # Targets and sources in the table are all registered states of the kind.
    for machine in STATE_MACHINES.values():
        for target, sources in machine.transitions.items():
            assert target in machine.states
            assert sources <= set(machine.states)


def test_unknown_target_fails_closed() -> None:
    # A target without a table row is never a valid transition.
    assert not CLUSTER_STATE_MACHINE.valid_transition(states.CLUSTER_STATE_STABLE, "made-up-state")
    assert not CLUSTER_STATE_MACHINE.valid_transition(
        states.CLUSTER_STATE_STABLE, states.CLUSTER_STATE_STABLE
    )


def test_cluster_resize_transitions() -> None:
    # Resize may be requested from stable, failed and in-flight resize states only.
    machine = CLUSTER_STATE_MACHINE
    target = states.CLUSTER_STATE_RESIZE_REQUESTED
    assert machine.valid_transition(states.CLUSTER_STATE_STABLE, target)
    assert machine.valid_transition(states.CLUSTER_STATE_RESIZE_FAILED, target)
    assert machine.valid_transition(target, target)
    assert not machine.valid_transition(states.CLUSTER_STATE_DELETION_REQUESTED, target)
    assert not machine.valid_transition(states.CLUSTER_STATE_CREATION_IN_PROGRESS, target)


def test_self_loops_model_idempotent_requests() -> None:
    # Re-requesting an in-flight state is allowed where the table says so.
    assert valid_transition_state(
        ResourceKind.CLUSTER,
        states.CLUSTER_STATE_UPGRADE_REQUESTED,
        states.CLUSTER_STATE_UPGRADE_REQUESTED,
    )
    assert valid_transition_state(
        "installation",
        states.INSTALLATION_STATE_UPDATE_REQUESTED,
        states.INSTALLATION_STATE_UPDATE_REQUESTED,
    )
    assert not valid_transition_state(
        ResourceKind.INSTALLATION,
        states.INSTALLATION_STATE_HIBERNATION_REQUESTED,
        states.INSTALLATION_STATE_HIBERNATION_REQUESTED,
    )


def test_installation_deletion_excluded_from_migration_hold() -> None:
    # Installations in a database migration cannot be deleted until it finishes.
    target = states.INSTALLATION_STATE_DELETION_REQUESTED
    assert INSTALLATION_STATE_MACHINE.valid_transition(states.INSTALLATION_STATE_STABLE, target)
    assert INSTALLATION_STATE_MACHINE.valid_transition(states.INSTALLATION_STATE_HIBERNATING, target)
    assert not INSTALLATION_STATE_MACHINE.valid_transition(
        states.INSTALLATION_STATE_DB_MIGRATION_IN_PROGRESS, target
    )
    assert not INSTALLATION_STATE_MACHINE.valid_transition(states.INSTALLATION_STATE_DELETED, target)


def test_require_transition_reports_conflict_details() -> None:
    # The raised error carries kind, current and target for callers to render.
    with pytest.raises(TransitionConflictError) as excinfo:
        CLUSTER_STATE_MACHINE.require_transition(
            states.CLUSTER_STATE_DELETED, states.CLUSTER_STATE_RESIZE_REQUESTED
        )
    error = excinfo.value
    assert error.resource_type == "cluster"
    assert error.current_state == states.CLUSTER_STATE_DELETED
    assert error.target_state == states.CLUSTER_STATE_RESIZE_REQUESTED
    assert error.status_code == 409


def test_pending_work_membership() -> None:
    # Terminal and stable states never appear as pending work.
    assert CLUSTER_STATE_MACHINE.is_pending_work(states.CLUSTER_STATE_RESIZE_REQUESTED)
    assert not CLUSTER_STATE_MACHINE.is_pending_work(states.CLUSTER_STATE_STABLE)
    assert not CLUSTER_STATE_MACHINE.is_pending_work(states.CLUSTER_STATE_DELETED)
    assert not INSTALLATION_STATE_MACHINE.is_pending_work(states.INSTALLATION_STATE_HIBERNATING)


def test_cluster_priorities_order_work() -> None:
    # New creations come first; unprioritised states keep their relative order.
    rows = [
        ("a", states.CLUSTER_STATE_RESIZE_REQUESTED),
        ("b", states.CLUSTER_STATE_PROVISION_IN_PROGRESS),
        ("c", states.CLUSTER_STATE_DELETION_REQUESTED),
        ("d", states.CLUSTER_STATE_CREATION_REQUESTED),
        ("e", states.CLUSTER_STATE_WAITING_FOR_NODES),
        ("f", states.CLUSTER_STATE_CREATION_IN_PROGRESS),
    ]
    ordered = CLUSTER_STATE_MACHINE.sort_by_priority(rows, key=lambda row: row[1])
    assert [row[0] for row in ordered] == ["d", "f", "e", "b", "a", "c"]


def test_priority_defaults_to_zero() -> None:
    # States without an explicit priority sort with weight zero.
    assert CLUSTER_STATE_MACHINE.work_priority(states.CLUSTER_STATE_STABLE) == 0
    assert INSTALLATION_STATE_MACHINE.work_priority(states.INSTALLATION_STATE_CREATION_REQUESTED) == 0


def test_request_state_report_partitions_all_states() -> None:
    # Each requested state splits the state set into valid and invalid sources.
    report = CLUSTER_STATE_MACHINE.request_state_report()
    assert [entry.requested_state for entry in report] == list(CLUSTER_STATE_MACHINE.request_states)
    for entry in report:
        assert set(entry.valid_states) | set(entry.invalid_states) == set(CLUSTER_STATE_MACHINE.states)
        assert not set(entry.valid_states) & set(entry.invalid_states)
    resize = next(
        entry for entry in report if entry.requested_state == states.CLUSTER_STATE_RESIZE_REQUESTED
    )
    assert set(resize.valid_states) == {
        states.CLUSTER_STATE_STABLE,
        states.CLUSTER_STATE_RESIZE_REQUESTED,
        states.CLUSTER_STATE_RESIZE_FAILED,
    }


def test_kinds_without_machine_raise() -> None:
    # Kinds that are not state-driven have no registry entry.
    with pytest.raises(KeyError):
        state_machine_for(ResourceKind.SUBSCRIPTION)
    with pytest.raises(ValueError):
        state_machine_for("not-a-kind")


def test_duplicate_rules_are_rejected() -> None:
    # Building a table with two rows for one target is a programming error.
    rule = states.TransitionRule(
        ResourceKind.CLUSTER, states.CLUSTER_STATE_STABLE, (states.CLUSTER_STATE_STABLE,)
    )
    with pytest.raises(ValueError):
        states._transitions_for(ResourceKind.CLUSTER, [rule, rule])
