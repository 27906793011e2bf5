"""Events — catalog templates and their scheduled instances.

Lifecycle:  scheduled → active → completed
    - scheduled: generated from a template, waiting for its start time
    - active:    started; ``actual_start_time``/``actual_end_time`` fixed
    - completed: terminal, never revisited

Transitions are one-directional.  Each timestamp is written exactly once,
at the transition that owns it.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta

from pydantic import BaseModel, Field

from citysim.domain.enums import EventStatus

_HOUR_SECONDS = 3600.0


class EventTemplate(BaseModel):
    """One entry of a city's event catalog."""

    type: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: str = ""
    affected_datazones: tuple[str, ...] = Field(
        default=(),
        description="Primary zone first, then secondary zones by increasing distance",
    )
    location_description: str = ""
    impact_factor: float = Field(0.3, ge=0.0)
    start_hour: int = Field(..., ge=0, le=23)
    end_hour: int = Field(..., ge=0, le=23)
    duration_hours: float = Field(..., gt=0)

    model_config = {"frozen": True}


class EventView(BaseModel):
    """Status-projected, serialisable view of an event."""

    id: int
    type: str
    name: str
    description: str
    affected_datazones: tuple[str, ...]
    location_description: str
    impact_factor: float
    start_hour: int
    end_hour: int
    duration_hours: float
    scheduled_start_time: datetime
    actual_start_time: datetime | None
    actual_end_time: datetime | None
    status: EventStatus
    hours_until_start: int | None
    hours_remaining: int | None

    model_config = {"frozen": True}


class EventsView(BaseModel):
    """All retained events merged into one list, with per-status counts."""

    active_count: int
    scheduled_count: int
    completed_count: int
    events: tuple[EventView, ...] = ()

    model_config = {"frozen": True}

    @property
    def total_count(self) -> int:
        return self.active_count + self.scheduled_count + self.completed_count


def _round_hours(delta: timedelta) -> int:
    return max(0, math.floor(delta.total_seconds() / _HOUR_SECONDS + 0.5))


class Event:
    """A scheduled occurrence created from an EventTemplate.

    Mutated only by the owning EventLifecycleManager.
    """

    __slots__ = (
        "id",
        "template",
        "scheduled_start_time",
        "_actual_start_time",
        "_actual_end_time",
        "_status",
    )

    def __init__(self, event_id: int, template: EventTemplate, scheduled_start_time: datetime) -> None:
        self.id = event_id
        self.template = template
        self.scheduled_start_time = scheduled_start_time
        self._actual_start_time: datetime | None = None
        self._actual_end_time: datetime | None = None
        self._status = EventStatus.SCHEDULED

    # ── Read-only state ──────────────────────────────────────────────────

    @property
    def status(self) -> EventStatus:
        return self._status

    @property
    def actual_start_time(self) -> datetime | None:
        return self._actual_start_time

    @property
    def actual_end_time(self) -> datetime | None:
        return self._actual_end_time

    @property
    def start_hour(self) -> int:
        return self.template.start_hour

    @property
    def affected_datazones(self) -> tuple[str, ...]:
        return self.template.affected_datazones

    @property
    def impact_factor(self) -> float:
        return self.template.impact_factor

    # ── Transitions ──────────────────────────────────────────────────────

    def is_due(self, now: datetime) -> bool:
        """Scheduled start reached and the clock sits on the template's start hour."""
        return (
            self._status == EventStatus.SCHEDULED
            and now >= self.scheduled_start_time
            and now.hour == self.template.start_hour
        )

    def is_finished(self, now: datetime) -> bool:
        return (
            self._status == EventStatus.ACTIVE
            and self._actual_end_time is not None
            and now >= self._actual_end_time
        )

    def activate(self, now: datetime) -> None:
        if self._status != EventStatus.SCHEDULED:
            raise ValueError(f"event {self.id} cannot activate from {self._status.value}")
        self._actual_start_time = now
        self._actual_end_time = now + timedelta(hours=self.template.duration_hours)
        self._status = EventStatus.ACTIVE

    def complete(self) -> None:
        if self._status != EventStatus.ACTIVE:
            raise ValueError(f"event {self.id} cannot complete from {self._status.value}")
        self._status = EventStatus.COMPLETED

    # ── Projection ───────────────────────────────────────────────────────

    def hours_until_start(self, now: datetime) -> int:
        return _round_hours(self.scheduled_start_time - now)

    def hours_remaining(self, now: datetime) -> int:
        if self._actual_end_time is not None:
            return _round_hours(self._actual_end_time - now)
        if now.hour <= self.template.end_hour:
            return self.template.end_hour - now.hour
        return 0

    def view(self, now: datetime) -> EventView:
        """Project this event with the fields appropriate to its status."""
        if self._status == EventStatus.SCHEDULED:
            until_start, remaining = self.hours_until_start(now), None
        elif self._status == EventStatus.ACTIVE:
            until_start, remaining = 0, self.hours_remaining(now)
        else:
            until_start, remaining = None, 0

        t = self.template
        return EventView(
            id=self.id,
            type=t.type,
            name=t.name,
            description=t.description,
            affected_datazones=t.affected_datazones,
            location_description=t.location_description,
            impact_factor=t.impact_factor,
            start_hour=t.start_hour,
            end_hour=t.end_hour,
            duration_hours=t.duration_hours,
            scheduled_start_time=self.scheduled_start_time,
            actual_start_time=self._actual_start_time,
            actual_end_time=self._actual_end_time,
            status=self._status,
            hours_until_start=until_start,
            hours_remaining=remaining,
        )

    def __repr__(self) -> str:
        return (
            f"Event(id={self.id}, type={self.template.type}, "
            f"status={self._status.value}, start={self.scheduled_start_time.isoformat()})"
        )
