from __future__ import annotations

from datetime import datetime, timezone
import time


def get_millis() -> int:
    # Persisted timestamps are epoch milliseconds; 0 means unset.
    return int(time.time() * 1000)


def to_millis(value: datetime | int) -> int:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp() * 1000)
    return int(value)


def from_millis(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
