from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Protocol, Sequence


class PlacementCandidate(Protocol):
    id: str
    vpc_id: str
    database_type: str
    installations: list[str] | None
    lock_acquired_by: str | None
    delete_at: int
    create_at: int


class MultitenantDatabaseInstallations:
    """Installation IDs hosted by one multitenant database.

    Behaves as an insertion-ordered set: adding a member twice is a no-op and
    removing drops every occurrence, so counts never drift from membership.
    """

    def __init__(self, ids: Iterable[str] | None = None) -> None:
        self._ids: list[str] = []
        for installation_id in ids or ():
            self.add(installation_id)

    def add(self, installation_id: str) -> bool:
        if installation_id in self._ids:
            return False
        self._ids.append(installation_id)
        return True

    def remove(self, installation_id: str) -> bool:
        # Legacy rows may carry duplicates; drop all of them.
        kept = [value for value in self._ids if value != installation_id]
        removed = len(kept) != len(self._ids)
        self._ids = kept
        return removed

    def contains(self, installation_id: str) -> bool:
        return installation_id in self._ids

    def count(self) -> int:
        return len(self._ids)

    def __contains__(self, installation_id: object) -> bool:
        return installation_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._ids))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MultitenantDatabaseInstallations):
            return NotImplemented
        return self._ids == other._ids

    def __repr__(self) -> str:
        return f"MultitenantDatabaseInstallations({self._ids!r})"

    def to_json(self) -> list[str]:
        return list(self._ids)

    @classmethod
    def from_json(cls, payload: Sequence[Any] | None) -> MultitenantDatabaseInstallations:
        return cls(str(value) for value in payload or ())


@dataclass(frozen=True)
class MultitenantDatabaseFilter:
    # None disables a criterion; max_installations_limit=None means unlimited.
    vpc_id: str | None = None
    database_type: str | None = None
    max_installations_limit: int | None = None
    installation_id: str | None = None
    locker_id: str | None = None
    ids: tuple[str, ...] | None = None
    include_deleted: bool = False

    def matches(self, database: PlacementCandidate) -> bool:
        if not self.include_deleted and database.delete_at:
            return False
        if self.ids is not None and database.id not in self.ids:
            return False
        if self.vpc_id and database.vpc_id != self.vpc_id:
            return False
        if self.database_type and database.database_type != self.database_type:
            return False
        if self.locker_id and database.lock_acquired_by != self.locker_id:
            return False
        members = MultitenantDatabaseInstallations.from_json(database.installations)
        if self.installation_id and not members.contains(self.installation_id):
            return False
        if self.max_installations_limit is not None and members.count() >= self.max_installations_limit:
            return False
        return True


def filter_multitenant_databases(
    candidates: Iterable[PlacementCandidate],
    flt: MultitenantDatabaseFilter,
) -> list[PlacementCandidate]:
    return [database for database in candidates if flt.matches(database)]


def select_database_for_installation(
    candidates: Iterable[PlacementCandidate],
    flt: MultitenantDatabaseFilter,
) -> PlacementCandidate | None:
    # Least loaded first; ID breaks ties so the choice is reproducible.
    matches = filter_multitenant_databases(candidates, flt)
    if not matches:
        return None
    return min(
        matches,
        key=lambda database: (
            MultitenantDatabaseInstallations.from_json(database.installations).count(),
            database.id,
        ),
    )
