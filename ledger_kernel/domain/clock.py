"""
Clock -- Injectable time source.

Responsibility:
    Gives services a single place to read "now" so that overdue/penalty
    figures, staleness checks and record timestamps are reproducible in
    tests.  Engines never read the clock; services pass ``now`` in.

Architecture position:
    Kernel > Domain -- pure core, zero I/O except SystemClock.

Failure modes:
    - DeterministicClock raises ValueError when given a naive datetime.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """
    Abstract clock interface.

    Contract:
        Services that need the current time receive a Clock via their
        constructor.  ``now()`` always returns a timezone-aware UTC datetime.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Get the current UTC time."""
        ...


class SystemClock(Clock):
    """Production clock backed by the system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    Guarantees:
        - ``now()`` returns the same value until ``advance()`` or
          ``set_time()`` is called.
    """

    def __init__(self, fixed_time: datetime | None = None):
        fixed_time = fixed_time or datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)
        if fixed_time.tzinfo is None:
            raise ValueError("DeterministicClock requires a timezone-aware datetime")
        self._current = fixed_time.astimezone(timezone.utc)

    def now(self) -> datetime:
        return self._current

    def set_time(self, time: datetime) -> None:
        if time.tzinfo is None:
            raise ValueError("DeterministicClock requires a timezone-aware datetime")
        self._current = time.astimezone(timezone.utc)

    def advance(self, seconds: float = 1, *, days: float = 0) -> datetime:
        """Move the clock forward and return the new time."""
        self._current = self._current + timedelta(seconds=seconds, days=days)
        return self._current
