from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def advance(clock: Clock, previous: datetime | None = None) -> datetime:
    """Read ``clock``, moving strictly past ``previous`` when the clock has not."""

    now = clock()
    if previous is not None and now <= previous:
        return previous + timedelta(microseconds=1)
    return now
