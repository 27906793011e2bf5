"""Clock utilities and simulation clock sources.

``utc_now`` is the single source of wall-clock "now" so tests can
monkey-patch it trivially.  Simulation clocks decide which simulated
timestamp the next tick is computed for.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

ONE_HOUR = timedelta(hours=1)


def utc_now() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def local_hour_start(tz: ZoneInfo, now: datetime | None = None) -> datetime:
    """Current time in *tz*, truncated to the start of the hour."""
    current = (now or utc_now()).astimezone(tz)
    return current.replace(minute=0, second=0, microsecond=0)


class SimulationClock(ABC):
    """Source of simulated time for one simulation instance."""

    def __init__(self, start: datetime) -> None:
        if start.tzinfo is None:
            raise ValueError("simulation clock start must be timezone-aware")
        self._current = start

    @property
    def current(self) -> datetime:
        """The simulated time of the most recently computed tick."""
        return self._current

    @abstractmethod
    def next_time(self) -> datetime:
        """Return the simulated time for the next tick without committing it."""
        ...

    def commit(self, tick_time: datetime) -> None:
        """Record that a tick for *tick_time* has been computed."""
        self._current = tick_time


class FreeRunningClock(SimulationClock):
    """Advances exactly one simulated hour per tick."""

    def next_time(self) -> datetime:
        tz = self._current.tzinfo
        # Hour arithmetic in UTC keeps DST transitions one real hour apart.
        return (self._current.astimezone(timezone.utc) + ONE_HOUR).astimezone(tz)


class TargetClock(FreeRunningClock):
    """Follows an externally supplied target time.

    When a target has been set since the last tick it is used verbatim;
    otherwise the clock falls back to free-running one-hour steps.
    """

    def __init__(self, start: datetime) -> None:
        super().__init__(start)
        self._target: datetime | None = None

    def set_target(self, target: datetime) -> None:
        if target.tzinfo is None:
            raise ValueError("target time must be timezone-aware")
        self._target = target.astimezone(self._current.tzinfo)

    def next_time(self) -> datetime:
        if self._target is not None:
            return self._target
        return super().next_time()

    def commit(self, tick_time: datetime) -> None:
        super().commit(tick_time)
        self._target = None
