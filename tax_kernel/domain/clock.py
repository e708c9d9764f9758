"""
Clock -- injectable source of "now" for the tax services.

Responsibility:
    Services never read the system time directly.  Audit stamps
    (``calculated_at``, ``submitted_at``, ``recorded_at``), the default
    correction date of a VAT transaction, the default year of a manual loss
    application and the late-filing lookback for accelerated refunds all
    come from an injected Clock, so a period close replays identically.

Architecture position:
    Kernel > Domain.  ``SystemClock`` is the only class here that touches
    the operating system.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone


class Clock(ABC):
    """
    Contract:
        ``now()`` is timezone-aware and in UTC.  ``today()`` and
        ``current_year()`` are derived from it.
    """

    @abstractmethod
    def now(self) -> datetime:
        ...

    def now_utc(self) -> datetime:
        return self.now().astimezone(timezone.utc)

    def today(self) -> date:
        return self.now_utc().date()

    def current_year(self) -> int:
        """Calendar (and tax) year of ``today()``."""
        return self.today().year


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Fixed clock for tests and replays.

    The time only moves when ``set_time`` or ``advance`` is called.
    Naive datetimes are taken as UTC.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._time = _as_utc(fixed_time or datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc))

    def now(self) -> datetime:
        return self._time

    def set_time(self, time: datetime) -> None:
        self._time = _as_utc(time)

    def advance(self, *, days: int = 0, seconds: int = 0) -> datetime:
        """Move forward and return the new time."""
        self._time = self._time + timedelta(days=days, seconds=seconds)
        return self._time


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
