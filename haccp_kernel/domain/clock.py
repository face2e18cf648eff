"""
Clock -- injectable source of the current time.

Responsibility:
    Services never call ``datetime.now()`` directly; they receive a Clock.
    Task ``completed_at``, document ``created_at``, audit session start and
    end, and every audit event timestamp come from one.

Architecture position:
    Kernel > Domain.  ``SystemClock`` is the only place wall time is read.

Invariants enforced:
    - Every value returned by ``now()`` is timezone-aware UTC.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """Source of timezone-aware UTC timestamps."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock for tests and replays.

    ``now()`` keeps returning the same instant until ``advance()`` or
    ``set_time()`` moves it.
    """

    DEFAULT_START = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __init__(self, start: datetime | None = None):
        self._current = self._as_utc(start or self.DEFAULT_START)

    @staticmethod
    def _as_utc(value: datetime) -> datetime:
        if value.tzinfo is None:
            raise ValueError("DeterministicClock needs a timezone-aware datetime")
        return value.astimezone(timezone.utc)

    def now(self) -> datetime:
        return self._current

    def set_time(self, value: datetime) -> None:
        self._current = self._as_utc(value)

    def advance(self, seconds: float | timedelta = 1) -> datetime:
        """Move forward and return the new time."""
        step = seconds if isinstance(seconds, timedelta) else timedelta(seconds=seconds)
        if step < timedelta(0):
            raise ValueError("a clock cannot move backwards")
        self._current += step
        return self._current
