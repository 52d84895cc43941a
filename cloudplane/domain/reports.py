from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from cloudplane.core.timeutil import to_millis


OVERFLOW_ROW_NAME = "Sometime later"


@dataclass
class DeletionCutoff:
    name: str
    cutoff: int
    count: int = 0


@dataclass
class DeletionPendingReport:
    """Buckets deletion expiry times into named cutoffs.

    Cutoffs are checked in registration order; a value lands in the first
    cutoff whose threshold is later than it, otherwise in ``overflow``.
    Times may be given as epoch milliseconds or datetimes.
    """

    cutoffs: list[DeletionCutoff] = field(default_factory=list)
    overflow: int = 0

    def new_cutoff(self, name: str, cutoff: datetime | int) -> None:
        self.cutoffs.append(DeletionCutoff(name=name, cutoff=to_millis(cutoff)))

    def count(self, expiry: datetime | int) -> None:
        value = to_millis(expiry)
        for cutoff in self.cutoffs:
            if value < cutoff.cutoff:
                cutoff.count += 1
                return
        self.overflow += 1

    def total(self) -> int:
        return self.overflow + sum(cutoff.count for cutoff in self.cutoffs)

    def rows(self) -> list[tuple[str, int]]:
        return [(cutoff.name, cutoff.count) for cutoff in self.cutoffs] + [(OVERFLOW_ROW_NAME, self.overflow)]
