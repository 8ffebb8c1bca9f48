# ============================================================
# clock.py — Time sources
# ------------------------------------------------------------
# All time-dependent logic asks a clock for "now" instead of
# calling datetime.now() directly, so tests can pin the time.
# ============================================================
from datetime import datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime):
        self._now = as_utc(now)

    def now(self) -> datetime:
        return self._now

    def set(self, now: datetime):
        self._now = as_utc(now)

    def advance(self, delta: timedelta):
        self._now = self._now + delta


def as_utc(dt: datetime) -> datetime:
    # naive values are taken as UTC (that is how they come back from SQLite)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
