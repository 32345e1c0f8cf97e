"""Wall-clock helpers so stores and the bridge can be driven by a fake clock."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_epoch_seconds(value: datetime) -> int:
    """Integer expiry used for the ``ttl`` attribute of persisted items."""
    return int(value.timestamp())


__all__ = ["Clock", "to_epoch_seconds", "utcnow"]
