"""
Clock (``backoffice_kernel.domain.clock``).

Responsibility
--------------
The only place the engine learns what day it is.  The sweep asks for
``today()`` to decide which schedules are due; the claim coordinator asks
for ``now()`` to stamp and expire claims.  Nothing else in the tree calls
``date.today()`` or ``datetime.now()``.

Architecture position
---------------------
**Kernel > Domain** -- zero I/O apart from ``SystemClock`` reading the
system time.

Invariants
----------
* ``now()`` is timezone-aware.
* ``today()`` is the calendar date of ``now()`` in the clock's business
  timezone, so "due today" flips at local midnight, not UTC midnight.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, time, timedelta, timezone, tzinfo

_SECONDS_PER_DAY = 86400


class Clock(ABC):
    """Injected into every service that needs the current time."""

    tz: tzinfo = timezone.utc

    @abstractmethod
    def now(self) -> datetime:
        ...

    def today(self) -> date:
        return self.now().astimezone(self.tz).date()


class SystemClock(Clock):
    """Wall-clock time.  ``tz`` sets the business day boundary (default UTC)."""

    def __init__(self, tz: tzinfo | None = None):
        if tz is not None:
            self.tz = tz

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock pinned to a chosen instant, moved only by the test.

    Starts at noon UTC on 2024-01-01 unless given a ``datetime`` or a
    ``date`` (noon on that day, so small ``advance()`` steps never cross
    a day boundary by accident).
    """

    def __init__(self, start: datetime | date | None = None):
        self._current = _as_instant(start or date(2024, 1, 1))

    def now(self) -> datetime:
        return self._current

    def set_date(self, day: date) -> None:
        """Jump to noon on ``day``; claim expiry is measured from here."""
        self._current = _as_instant(day)

    def advance(self, seconds: int = 1) -> None:
        self._current += timedelta(seconds=seconds)

    def advance_days(self, days: int = 1) -> None:
        self.advance(days * _SECONDS_PER_DAY)


def _as_instant(value: datetime | date) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return datetime.combine(value, time(12, 0), tzinfo=timezone.utc)
