from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from cloudplane.core.errors import LockConflictError
from cloudplane.core.timeutil import get_millis


class Lockable(Protocol):
    id: str
    lock_acquired_by: str | None
    lock_acquired_at: int


@dataclass(frozen=True)
class ResourceLock:
    """Advisory single-writer marker carried by supervisor-managed rows.

    ``acquired_at == 0`` means unlocked. Transitions return a new value and
    never mutate in place; persisting the new value atomically is the job of
    the repository layer.
    """

    acquired_by: str | None = None
    acquired_at: int = 0

    @property
    def is_locked(self) -> bool:
        return self.acquired_at != 0

    def is_held_by(self, owner: str) -> bool:
        return self.is_locked and self.acquired_by == owner

    def acquire(self, owner: str, *, now_ms: int | None = None) -> ResourceLock:
        if not owner:
            raise ValueError("lock owner must be non-empty")
        # Re-acquiring an already held lock is a conflict even for the same owner.
        if self.is_locked:
            raise LockConflictError(
                f"resource is already locked by {self.acquired_by}", held_by=self.acquired_by
            )
        return ResourceLock(acquired_by=owner, acquired_at=now_ms if now_ms is not None else get_millis())

    def release(self, owner: str, *, force: bool = False) -> ResourceLock:
        if not self.is_locked:
            raise LockConflictError("resource is not locked")
        if not force and self.acquired_by != owner:
            raise LockConflictError(
                f"lock is held by {self.acquired_by}, not {owner}", held_by=self.acquired_by
            )
        return ResourceLock()

    def ensure_held_by(self, owner: str) -> None:
        # Mutation guard: only the current holder may write a locked resource.
        if not self.is_held_by(owner):
            raise LockConflictError(
                f"lock for this resource is not held by {owner}", held_by=self.acquired_by
            )


def lock_of(entity: Lockable) -> ResourceLock:
    return ResourceLock(acquired_by=entity.lock_acquired_by, acquired_at=entity.lock_acquired_at or 0)


def apply_lock(entity: Lockable, lock: ResourceLock) -> None:
    entity.lock_acquired_by = lock.acquired_by
    entity.lock_acquired_at = lock.acquired_at


def ensure_entity_lock_held(entity: Any, owner: str, *, resource_type: str | None = None) -> None:
    try:
        lock_of(entity).ensure_held_by(owner)
    except LockConflictError as exc:
        raise LockConflictError(
            str(exc),
            resource_type=resource_type,
            resource_id=getattr(entity, "id", None),
            held_by=exc.held_by,
        ) from exc
