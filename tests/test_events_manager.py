"""Tests for the EventLifecycleManager and event projections.

Clock values are UTC datetimes advanced hour by hour, with a Europe/London
clock where daylight saving matters; randomness is seeded so every schedule
is reproducible.
"""

from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from citysim.core.events_manager import EventGenerationConfig, EventLifecycleManager
from citysim.domain.enums import EventStatus
from citysim.domain.errors import NotInitializedError
from citysim.domain.event import Event

from tests.factories import BASE, make_template

LONDON = ZoneInfo("Europe/London")
_ORDER = {EventStatus.SCHEDULED: 0, EventStatus.ACTIVE: 1, EventStatus.COMPLETED: 2}


def _manager(templates=None, seed: int = 1, **cfg) -> EventLifecycleManager:
    manager = EventLifecycleManager("york", EventGenerationConfig(**cfg), random.Random(seed))
    manager.initialize(templates or (make_template(),))
    return manager


def _near_term(**cfg) -> dict:
    """Config that schedules events 1 hour ahead, snapped to the template hour."""
    base = {"min_hours_in_future": 1, "max_hours_in_future": 2, "generation_chance": 0.0}
    base.update(cfg)
    return base


class TestInitialization:
    def test_empty_catalog_rejected(self) -> None:
        manager = EventLifecycleManager("york")
        with pytest.raises(ValueError):
            manager.initialize(())

    def test_tick_before_initialize_raises(self) -> None:
        with pytest.raises(NotInitializedError):
            EventLifecycleManager("york").process_tick(BASE)

    def test_seeding_is_not_counted(self) -> None:
        manager = _manager()
        seeded = manager.seed_initial_events(BASE)
        assert 3 <= len(seeded) <= 5
        assert len(manager.scheduled_events) == len(seeded)
        assert manager.generated_on(BASE.date()) == 0


class TestScheduling:
    def test_generated_events_start_at_least_min_hours_ahead(self) -> None:
        templates = tuple(make_template(f"T{h}", start_hour=h) for h in (0, 6, 10, 18, 23))
        manager = _manager(templates, seed=5)
        now = BASE
        for _ in range(200):
            event = manager.generate_event(now)
            assert event.scheduled_start_time >= now + timedelta(hours=48)
            assert event.scheduled_start_time <= now + timedelta(hours=168 + 24)
            assert event.scheduled_start_time.hour == event.template.start_hour
            now += timedelta(hours=7)

    def test_ids_are_sequential(self) -> None:
        manager = _manager()
        ids = [manager.generate_event(BASE).id for _ in range(4)]
        assert ids == [1, 2, 3, 4]


class TestLifecycle:
    def test_scheduled_active_completed(self) -> None:
        manager = _manager(**_near_term())
        event = manager.generate_event(BASE)  # BASE is 08:00, template starts at 10:00
        assert event.scheduled_start_time == BASE + timedelta(hours=2)

        manager.process_tick(BASE + timedelta(hours=1))
        assert event.status == EventStatus.SCHEDULED

        view = manager.process_tick(BASE + timedelta(hours=2))
        assert event.status == EventStatus.ACTIVE
        assert event.actual_end_time == BASE + timedelta(hours=4)
        assert view.active_count == 1

        manager.process_tick(BASE + timedelta(hours=3))
        assert event.status == EventStatus.ACTIVE

        view = manager.process_tick(BASE + timedelta(hours=4))
        assert event.status == EventStatus.COMPLETED
        assert (view.active_count, view.scheduled_count, view.completed_count) == (0, 0, 1)

    def test_statuses_only_move_forward(self) -> None:
        templates = tuple(make_template(f"T{h}", start_hour=h, duration_hours=3) for h in (9, 12, 15))
        manager = _manager(templates, seed=3, **_near_term(generation_chance=1.0, minimum_gap=timedelta(0)))
        seen: dict[int, EventStatus] = {}
        now = BASE
        for _ in range(24 * 5):
            view = manager.process_tick(now)
            for ev in view.events:
                if ev.id in seen:
                    assert _ORDER[ev.status] >= _ORDER[seen[ev.id]]
                seen[ev.id] = ev.status
            now += timedelta(hours=1)
        assert any(s == EventStatus.COMPLETED for s in seen.values())

    def test_activation_waits_for_start_hour(self) -> None:
        manager = _manager(**_near_term())
        event = manager.generate_event(BASE)
        # Jumping past the start hour does not activate it
        manager.process_tick(BASE + timedelta(hours=3))
        assert event.status == EventStatus.SCHEDULED
        manager.process_tick(BASE + timedelta(hours=26))
        assert event.status == EventStatus.ACTIVE


class TestRateLimits:
    def test_daily_cap(self) -> None:
        manager = _manager(generation_chance=1.0, minimum_gap=timedelta(0), max_per_day=2)
        midnight = BASE.replace(hour=0)
        for h in range(24):
            manager.process_tick(midnight + timedelta(hours=h))
        assert manager.generated_on(midnight.date()) == 2
        assert len(manager.scheduled_events) == 2

    def test_minimum_gap(self) -> None:
        manager = _manager(generation_chance=1.0, max_per_day=10, minimum_gap=timedelta(hours=4))
        midnight = BASE.replace(hour=0)
        for h in range(12):
            manager.process_tick(midnight + timedelta(hours=h))
        assert manager.generated_on(midnight.date()) == 3

    def test_minimum_gap_uses_elapsed_time_across_dst(self) -> None:
        manager = _manager(max_per_day=10, minimum_gap=timedelta(hours=3))
        first = datetime(2026, 3, 29, 0, 30, tzinfo=LONDON)
        manager.generate_event(first)

        # 03:30 BST is only two real hours after 00:30 GMT
        later = (first.astimezone(timezone.utc) + timedelta(hours=2)).astimezone(LONDON)
        assert later.hour == 3
        assert not manager.can_generate(later)
        assert manager.can_generate(later + timedelta(hours=1))

    def test_concurrency_cap_defers_activation(self) -> None:
        templates = (make_template("A"), make_template("B"))
        manager = _manager(templates, **_near_term(max_concurrent=1))
        first = manager.generate_event(BASE)
        second = manager.generate_event(BASE)

        manager.process_tick(BASE + timedelta(hours=2))
        statuses = sorted(e.status.value for e in (first, second))
        assert statuses == ["active", "scheduled"]
        assert len(manager.active_events) == 1

        # Next day at the start hour the first has completed, so the other runs
        manager.process_tick(BASE + timedelta(hours=4))
        manager.process_tick(BASE + timedelta(hours=26))
        assert {first.status, second.status} == {EventStatus.COMPLETED, EventStatus.ACTIVE}

    def test_active_never_exceeds_cap(self) -> None:
        templates = tuple(make_template(f"T{i}", start_hour=10, duration_hours=30) for i in range(5))
        manager = _manager(templates, **_near_term(max_concurrent=2))
        for _ in range(5):
            manager.generate_event(BASE)
        now = BASE
        for _ in range(72):
            manager.process_tick(now)
            assert len(manager.active_events) <= 2
            now += timedelta(hours=1)

    def test_no_generation_when_concurrency_full(self) -> None:
        templates = (make_template("Long", duration_hours=100),)
        manager = _manager(templates, **_near_term(max_concurrent=1))
        manager.generate_event(BASE)
        manager.process_tick(BASE + timedelta(hours=2))
        assert not manager.can_generate(BASE + timedelta(hours=3))

    def test_daily_counts_are_pruned(self) -> None:
        manager = _manager(generation_chance=1.0, minimum_gap=timedelta(0), max_per_day=1)
        manager.process_tick(BASE)
        assert manager.generated_on(BASE.date()) == 1
        manager.process_tick(BASE + timedelta(days=9))
        assert manager.generated_on(BASE.date()) == 0


class TestRetentionAndTopUp:
    def test_completed_events_are_evicted(self) -> None:
        templates = (make_template("A", duration_hours=1), make_template("B", duration_hours=1))
        manager = _manager(templates, **_near_term(max_completed_kept=1))
        manager.generate_event(BASE)
        manager.generate_event(BASE)
        manager.process_tick(BASE + timedelta(hours=2))
        manager.process_tick(BASE + timedelta(hours=3))
        assert len(manager.completed_events) == 1
        assert manager.completed_events[0].id == 2

    def test_top_up_adds_when_schedule_low(self) -> None:
        manager = _manager()
        added = manager.top_up(BASE)
        assert 1 <= len(added) <= 2
        assert len(manager.scheduled_events) == len(added)

    def test_top_up_skipped_when_schedule_full(self) -> None:
        manager = _manager()
        manager.seed_initial_events(BASE)
        assert manager.top_up(BASE) == []

    def test_top_up_respects_daily_cap(self) -> None:
        manager = _manager(max_per_day=0)
        assert manager.top_up(BASE) == []

    def test_statistics(self) -> None:
        manager = _manager()
        manager.generate_event(BASE)
        stats = manager.statistics()
        assert stats["scheduled"] == 1
        assert stats["total"] == 1
        assert stats["next_event_id"] == 2


class TestEventProjection:
    def test_scheduled_view(self) -> None:
        event = Event(1, make_template(), BASE + timedelta(hours=5))
        view = event.view(BASE)
        assert view.status == EventStatus.SCHEDULED
        assert view.hours_until_start == 5
        assert view.hours_remaining is None

    def test_active_view(self) -> None:
        event = Event(1, make_template(duration_hours=3), BASE)
        event.activate(BASE)
        view = event.view(BASE + timedelta(hours=1))
        assert view.hours_until_start == 0
        assert view.hours_remaining == 2

    def test_completed_view(self) -> None:
        event = Event(1, make_template(), BASE)
        event.activate(BASE)
        event.complete()
        view = event.view(BASE + timedelta(hours=5))
        assert view.hours_until_start is None
        assert view.hours_remaining == 0

    def test_backward_transitions_rejected(self) -> None:
        event = Event(1, make_template(), BASE)
        with pytest.raises(ValueError):
            event.complete()
        event.activate(BASE)
        with pytest.raises(ValueError):
            event.activate(BASE)
