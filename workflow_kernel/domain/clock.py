"""
Injectable time source.

Services never call ``datetime.now()``: approval timestamps, side-channel
response times, phase entry times and audit entries all come from the
Clock handed to the service. Delay sweeps compare phase entry times
against the same clock, so a test can age an order by advancing it.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

DEFAULT_TEST_EPOCH = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Source of timezone-aware UTC timestamps."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """Frozen clock for tests; only moves when told to.

    ``advance`` accepts seconds so delay tests can read naturally, e.g.
    ``clock.advance(3 * 86400)`` for an order three days in a phase.
    """

    def __init__(self, start: datetime | None = None):
        start = start or DEFAULT_TEST_EPOCH
        if start.tzinfo is None:
            raise ValueError("DeterministicClock needs a timezone-aware start time")
        self._current = start

    def now(self) -> datetime:
        return self._current

    def set_time(self, when: datetime) -> None:
        self._current = when

    def advance(self, seconds: float = 1) -> datetime:
        """Move forward by ``seconds`` and return the new time."""
        if seconds < 0:
            raise ValueError("A clock cannot run backwards")
        self._current += timedelta(seconds=seconds)
        return self._current
