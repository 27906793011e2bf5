"""EventLifecycleManager — catalog-driven events over simulated time.

Each tick performs, in order:
    1. activate scheduled events that are due
    2. complete active events whose end time has passed
    3. evict the oldest completed events beyond the retention cap
    4. maybe generate one new event, if every rate limit allows it

Rate limits (all must hold):
    - fewer than ``max_per_day`` events generated on the current local date
    - fewer than ``max_concurrent`` events active
    - at least ``minimum_gap`` since the last generation

Every generated event starts at least ``min_hours_in_future`` after the
moment it was generated.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone

from citysim.domain.errors import NotInitializedError
from citysim.domain.event import Event, EventsView, EventTemplate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EventGenerationConfig:
    """Probabilities and limits for event generation."""

    generation_chance: float = 0.1
    min_hours_in_future: int = 48
    max_hours_in_future: int = 168
    max_completed_kept: int = 50

    max_per_day: int = 2
    max_concurrent: int = 3
    minimum_gap: timedelta = timedelta(hours=4)

    # Seeding at start and the periodic top-up
    initial_count_min: int = 3
    initial_count_max: int = 5
    top_up_threshold: int = 3
    top_up_interval_hours: int = 24
    daily_count_retention: timedelta = timedelta(days=7)


class EventLifecycleManager:
    """Owns one instance's scheduled, active and completed events."""

    def __init__(
        self,
        city_id: str,
        config: EventGenerationConfig | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._city_id = city_id
        self._config = config or EventGenerationConfig()
        self._rng = rng or random.Random()
        self._templates: tuple[EventTemplate, ...] = ()
        self._scheduled: list[Event] = []
        self._active: list[Event] = []
        self._completed: list[Event] = []
        self._next_id = 1
        self._daily_counts: dict[date, int] = {}
        self._last_generated_at: datetime | None = None
        self._initialized = False

    def initialize(self, templates: tuple[EventTemplate, ...]) -> None:
        if self._initialized:
            return
        if not templates:
            raise ValueError(f"{self._city_id} event catalog is empty")
        self._templates = templates
        self._initialized = True
        logger.info(
            "%s events manager initialized with %d event types",
            self._city_id,
            len(templates),
        )

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def scheduled_events(self) -> tuple[Event, ...]:
        return tuple(self._scheduled)

    @property
    def active_events(self) -> tuple[Event, ...]:
        return tuple(self._active)

    @property
    def completed_events(self) -> tuple[Event, ...]:
        return tuple(self._completed)

    def generated_on(self, day: date) -> int:
        """Number of events generated on the given local date."""
        return self._daily_counts.get(day, 0)

    def statistics(self) -> dict:
        scheduled, active, completed = len(self._scheduled), len(self._active), len(self._completed)
        return {
            "scheduled": scheduled,
            "active": active,
            "completed": completed,
            "total": scheduled + active + completed,
            "next_event_id": self._next_id,
        }

    def view(self, now: datetime) -> EventsView:
        """Merge all retained events into one status-projected list."""
        events = [e.view(now) for e in (*self._scheduled, *self._active, *self._completed)]
        return EventsView(
            active_count=len(self._active),
            scheduled_count=len(self._scheduled),
            completed_count=len(self._completed),
            events=tuple(events),
        )

    # ── Tick ─────────────────────────────────────────────────────────────

    def process_tick(self, now: datetime) -> EventsView:
        """Advance every event to *now* and maybe generate a new one."""
        self._require_initialized()

        self._activate_due(now)
        self._complete_finished(now)
        self._evict_completed()
        self._prune_daily_counts(now)

        if self.can_generate(now) and self._rng.random() < self._config.generation_chance:
            self.generate_event(now)

        return self.view(now)

    def can_generate(self, now: datetime) -> bool:
        """True when the daily, concurrency and gap limits all allow it."""
        if not self._within_daily_and_concurrency_limits(now):
            return False
        if self._last_generated_at is not None:
            last = self._last_generated_at.astimezone(timezone.utc)
            since_last = now.astimezone(timezone.utc) - last
            if since_last < self._config.minimum_gap:
                return False
        return True

    def generate_event(self, now: datetime) -> Event:
        """Schedule one event from a random template and record it against today."""
        event = self._schedule_random(now)
        day = now.date()
        self._daily_counts[day] = self._daily_counts.get(day, 0) + 1
        self._last_generated_at = now
        return event

    def seed_initial_events(self, now: datetime) -> list[Event]:
        """Populate the schedule at start-up.

        Seeded events are not counted against the daily generation limit.
        """
        self._require_initialized()
        cfg = self._config
        count = self._rng.randint(cfg.initial_count_min, cfg.initial_count_max)
        seeded = [self._schedule_random(now) for _ in range(count)]
        logger.info("Seeded %d initial %s events", len(seeded), self._city_id)
        return seeded

    def top_up(self, now: datetime) -> list[Event]:
        """Add 1-2 events when the schedule runs low.

        Skips the probability and gap checks but never exceeds the daily
        or concurrency limits.
        """
        self._require_initialized()
        if len(self._scheduled) >= self._config.top_up_threshold:
            return []
        added: list[Event] = []
        for _ in range(self._rng.randint(1, 2)):
            if not self._within_daily_and_concurrency_limits(now):
                break
            added.append(self.generate_event(now))
        if added:
            logger.info("Topped up %d %s events", len(added), self._city_id)
        return added

    # ── Internals ────────────────────────────────────────────────────────

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise NotInitializedError(f"{self._city_id} events manager")

    def _within_daily_and_concurrency_limits(self, now: datetime) -> bool:
        if self.generated_on(now.date()) >= self._config.max_per_day:
            return False
        return len(self._active) < self._config.max_concurrent

    def _schedule_random(self, now: datetime) -> Event:
        template = self._rng.choice(self._templates)
        start = self._scheduled_start(now, template.start_hour)
        event = Event(self._next_id, template, start)
        self._next_id += 1
        self._scheduled.append(event)
        logger.info(
            "Scheduled %s %s '%s' for %s (%d datazones affected)",
            self._city_id,
            template.type,
            template.name,
            start.isoformat(),
            len(template.affected_datazones),
        )
        return event

    def _scheduled_start(self, now: datetime, start_hour: int) -> datetime:
        """Pick a start time snapped to *start_hour*, at least min hours ahead."""
        cfg = self._config
        spread = cfg.max_hours_in_future - cfg.min_hours_in_future
        hours_ahead = cfg.min_hours_in_future + (self._rng.randrange(spread) if spread > 0 else 0)

        tz = now.tzinfo
        earliest = now + timedelta(hours=cfg.min_hours_in_future)
        target_day = (now + timedelta(hours=hours_ahead)).date()
        start = datetime.combine(target_day, time(start_hour), tzinfo=tz)
        while start < earliest:
            target_day += timedelta(days=1)
            start = datetime.combine(target_day, time(start_hour), tzinfo=tz)
        return start

    def _activate_due(self, now: datetime) -> None:
        due: list[Event] = []
        for event in self._scheduled:
            if not event.is_due(now):
                continue
            if len(self._active) >= self._config.max_concurrent:
                # Waits for the next occurrence of its start hour
                logger.info(
                    "%s event %d deferred: %d events already active",
                    self._city_id,
                    event.id,
                    len(self._active),
                )
                continue
            due.append(event)
            event.activate(now)
            self._active.append(event)
            logger.info(
                "%s event started: %s '%s' (%sh)",
                self._city_id,
                event.template.type,
                event.template.name,
                event.template.duration_hours,
            )
        if due:
            self._scheduled = [e for e in self._scheduled if e not in due]

    def _complete_finished(self, now: datetime) -> None:
        finished = [e for e in self._active if e.is_finished(now)]
        for event in finished:
            event.complete()
            self._completed.append(event)
            logger.info(
                "%s event completed: %s '%s'",
                self._city_id,
                event.template.type,
                event.template.name,
            )
        if finished:
            self._active = [e for e in self._active if e not in finished]

    def _evict_completed(self) -> None:
        excess = len(self._completed) - self._config.max_completed_kept
        if excess > 0:
            del self._completed[:excess]
            logger.debug("Evicted %d old %s events", excess, self._city_id)

    def _prune_daily_counts(self, now: datetime) -> None:
        cutoff = (now - self._config.daily_count_retention).date()
        for day in [d for d in self._daily_counts if d < cutoff]:
            del self._daily_counts[day]
