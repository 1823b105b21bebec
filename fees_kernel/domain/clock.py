"""
Injectable time source for the fees kernel.

Every business timestamp the kernel writes (ledger occurred_at, payment
confirmed_at, unmatched resolved_at, student frozen_at, fee opened_at when
the caller gives none) is read from a Clock handed to the service, never
from ``datetime.now()``.  Gateway settlement times are data, not clock
readings: they arrive on the notification.

All clocks return timezone-aware UTC datetimes.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

# Start of a school year; the default origin for test clocks.
TERM_ONE_OPENS = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    """Wall-clock UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock that only moves when told to.

    ``now()`` is stable between calls, so a sequence of fee assignments
    made without ``tick()`` share one opened_at and fall back to id order.
    """

    def __init__(self, start: datetime | None = None):
        self._origin = start or TERM_ONE_OPENS
        self._offset = timedelta()

    def now(self) -> datetime:
        return self._origin + self._offset

    def set_time(self, time: datetime) -> None:
        """Jump to time; may move backwards."""
        self._origin = time
        self._offset = timedelta()

    def advance(self, seconds: int = 1) -> None:
        self._offset += timedelta(seconds=seconds)

    def tick(self) -> datetime:
        """Move one second forward and return the new time."""
        self.advance(1)
        return self.now()
