from __future__ import annotations

from types import SimpleNamespace

import pytest

from cloudplane.core.errors import LockConflictError
from cloudplane.domain.locks import ResourceLock, apply_lock, ensure_entity_lock_held, lock_of


def test_acquire_sets_owner_and_timestamp() -> None:
    # Acquiring an unlocked resource records the owner and the time.
    lock = ResourceLock().acquire("supervisor-a", now_ms=1234)
    assert lock.is_locked
    assert lock.acquired_by == "supervisor-a"
    assert lock.acquired_at == 1234
    assert lock.is_held_by("supervisor-a")
    assert not lock.is_held_by("supervisor-b")


def test_acquire_without_timestamp_uses_current_time() -> None:
    # The default timestamp is the wall clock, never zero.
    assert ResourceLock().acquire("owner").acquired_at > 0


def test_acquire_rejects_empty_owner() -> None:
    # An empty owner token could never be released safely.
    with pytest.raises(ValueError):
        ResourceLock().acquire("")


def test_second_acquire_conflicts_even_for_same_owner() -> None:
    # A held lock is never re-entered.
    lock = ResourceLock().acquire("a", now_ms=1)
    with pytest.raises(LockConflictError) as excinfo:
        lock.acquire("b", now_ms=2)
    assert excinfo.value.held_by == "a"
    with pytest.raises(LockConflictError):
        lock.acquire("a", now_ms=3)


def test_release_by_other_owner_requires_force() -> None:
    # Only the holder may release unless an operator forces it.
    lock = ResourceLock().acquire("a", now_ms=1)
    with pytest.raises(LockConflictError):
        lock.release("b")
    released = lock.release("b", force=True)
    assert released == ResourceLock()
    assert not released.is_locked


def test_release_unlocked_conflicts() -> None:
    # Releasing twice is a caller error.
    lock = ResourceLock().acquire("a", now_ms=1).release("a")
    with pytest.raises(LockConflictError):
        lock.release("a")


def test_transitions_do_not_mutate_original() -> None:
    # Lock values are immutable; every transition returns a new value.
    original = ResourceLock()
    original.acquire("a", now_ms=9)
    assert original == ResourceLock()


def test_entity_helpers_round_trip_lock_columns() -> None:
    # Rows expose the lock as two columns; helpers read and write them together.
    row = SimpleNamespace(id="row-1", lock_acquired_by=None, lock_acquired_at=0)
    assert not lock_of(row).is_locked
    apply_lock(row, lock_of(row).acquire("owner", now_ms=55))
    assert row.lock_acquired_by == "owner"
    assert row.lock_acquired_at == 55
    ensure_entity_lock_held(row, "owner")


def test_ensure_entity_lock_held_reports_resource() -> None:
    # Mutating without the lock names the resource and the current holder.
    row = SimpleNamespace(id="cluster-1", lock_acquired_by="other", lock_acquired_at=10)
    with pytest.raises(LockConflictError) as excinfo:
        ensure_entity_lock_held(row, "me", resource_type="cluster")
    assert excinfo.value.resource_id == "cluster-1"
    assert excinfo.value.resource_type == "cluster"
    assert excinfo.value.held_by == "other"
