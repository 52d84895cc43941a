from __future__ import annotations

from typing import Any


class CloudplaneError(Exception):
    """Base error for cloudplane."""

    code = "INTERNAL_ERROR"
    status_code = 500


class RequestValidationError(CloudplaneError, ValueError):
    """Request or patch failed a shape or business rule check."""

    code = "VALIDATION_ERROR"
    status_code = 400

    def __init__(self, message: str, *, field: str | None = None, value: Any = None) -> None:
        super().__init__(message)
        self.field = field
        self.value = value


class TransitionConflictError(CloudplaneError):
    """Requested state is not reachable from the resource's current state."""

    code = "INVALID_STATE_TRANSITION"
    status_code = 409

    def __init__(self, *, resource_type: str, current_state: str, target_state: str) -> None:
        super().__init__(
            f"{resource_type} cannot transition from {current_state!r} to {target_state!r}"
        )
        self.resource_type = resource_type
        self.current_state = current_state
        self.target_state = target_state


class LockConflictError(CloudplaneError):
    """Resource is locked by another owner, or the caller does not hold the lock."""

    code = "RESOURCE_LOCKED"
    status_code = 409

    def __init__(
        self,
        message: str,
        *,
        resource_type: str | None = None,
        resource_id: str | None = None,
        held_by: str | None = None,
    ) -> None:
        super().__init__(message)
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.held_by = held_by


class NotFoundError(CloudplaneError):
    """Resource does not exist or is soft-deleted."""

    code = "NOT_FOUND"
    status_code = 404


class InvariantViolationError(CloudplaneError, AssertionError):
    """Internal defect detected; never retried or clamped."""


class DatabaseError(CloudplaneError):
    """Database layer failure."""
