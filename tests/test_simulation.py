"""Tests for SimulationInstance: lifecycle, single-flight ticks and ordering.

Engines are real; the weather and traffic engines are subclassed where a
test needs to hold a tick in flight or make one fail.
"""

from __future__ import annotations

import asyncio
import random
from datetime import datetime, timedelta, timezone

import pytest

from citysim.catalog.cities import get_city_config
from citysim.core.events_manager import EventGenerationConfig
from citysim.core.simulation import SimulationInstance
from citysim.core.traffic_engine import TrafficEngine
from citysim.core.weather_engine import WeatherEngine
from citysim.domain.enums import SimulationState, WeatherProvenance
from citysim.domain.errors import NotReadyError, NotRunningError, SinkError
from citysim.foundation.clock import FreeRunningClock, TargetClock
from citysim.sinks.base import TelemetrySink

from tests.factories import make_catalog

_START = datetime(2026, 3, 2, 7, 0, tzinfo=timezone.utc)


class _GatedWeather(WeatherEngine):
    """Counts calls and blocks while the gate is closed."""

    def __init__(self) -> None:
        super().__init__(get_city_config("york"), rng=random.Random(1))
        self.gate = asyncio.Event()
        self.gate.set()
        self.calls = 0

    async def simulate_for_time(self, simulated_time):
        self.calls += 1
        await self.gate.wait()
        return await super().simulate_for_time(simulated_time)


class _FlakyTraffic(TrafficEngine):
    def __init__(self) -> None:
        super().__init__("york", rng=random.Random(1))
        self.fail_next = False

    async def tick(self, now, weather, active_events, previous):
        if self.fail_next:
            self.fail_next = False
            raise RuntimeError("traffic model exploded")
        return await super().tick(now, weather, active_events, previous)


class _RecordingSink(TelemetrySink):
    def __init__(self, fail: bool = False) -> None:
        self.pushed: list = []
        self.opened = False
        self.closed = False
        self._fail = fail

    async def open(self) -> None:
        self.opened = True

    async def push(self, snapshot) -> None:
        self.pushed.append(snapshot)
        if self._fail:
            raise SinkError("sink down", 503)

    async def close(self) -> None:
        self.closed = True

    @property
    def name(self) -> str:
        return "recording"


class _SlowOpenSink(_RecordingSink):
    """Blocks in open() until the gate is set, like a slow auth handshake."""

    def __init__(self) -> None:
        super().__init__()
        self.gate = asyncio.Event()
        self.close_calls = 0

    async def open(self) -> None:
        await self.gate.wait()
        self.opened = True

    async def close(self) -> None:
        self.close_calls += 1
        self.closed = True


def _instance(clock=None, **kw) -> SimulationInstance:
    kw.setdefault("rng", random.Random(3))
    return SimulationInstance(
        "sim_test",
        make_catalog(),
        10,
        clock=clock or FreeRunningClock(_START),
        **kw,
    )


async def _drain() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


class TestLifecycle:
    def test_rejects_non_positive_pacing(self) -> None:
        with pytest.raises(ValueError):
            SimulationInstance("sim_x", make_catalog(), 0)

    def test_not_ready_before_start(self) -> None:
        instance = _instance()
        assert instance.state == SimulationState.UNINITIALIZED
        with pytest.raises(NotReadyError) as info:
            instance.get_snapshot()
        assert info.value.retry_after > 0
        with pytest.raises(NotReadyError):
            instance.advance()

    @pytest.mark.asyncio
    async def test_start_pregenerates_first_hour(self) -> None:
        instance = _instance()
        snapshot = await instance.start()
        assert instance.is_running
        assert snapshot.hour_counter == 1
        assert snapshot.timestamp == _START + timedelta(hours=1)
        assert snapshot.hour == 8
        assert instance.get_snapshot() is snapshot
        assert 3 <= snapshot.events.scheduled_count <= 5
        assert not instance.is_generating

    @pytest.mark.asyncio
    async def test_start_twice_returns_ready_snapshot(self) -> None:
        instance = _instance()
        first = await instance.start()
        assert await instance.start() is first
        assert instance.hour_counter == 1

    @pytest.mark.asyncio
    async def test_stopped_is_terminal(self) -> None:
        sink = _RecordingSink()
        instance = _instance(sink=sink)
        await instance.start()
        await instance.stop()
        assert sink.opened and sink.closed
        assert instance.state == SimulationState.STOPPED
        with pytest.raises(NotRunningError):
            instance.get_snapshot()
        with pytest.raises(NotRunningError):
            instance.advance()
        with pytest.raises(NotRunningError):
            instance.update_time_compression(5)
        with pytest.raises(NotRunningError):
            await instance.start()
        await instance.stop()

    @pytest.mark.asyncio
    async def test_stop_during_sink_open_stays_stopped(self) -> None:
        sink = _SlowOpenSink()
        instance = _instance(sink=sink, autonomous=True)
        starting = asyncio.create_task(instance.start())
        await _drain()

        await instance.stop()
        sink.gate.set()
        with pytest.raises(NotRunningError):
            await starting

        await asyncio.sleep(0.05)
        assert instance.state == SimulationState.STOPPED
        assert not instance.has_ready_data
        assert instance.hour_counter == 0
        assert sink.pushed == []
        assert sink.close_calls == 2

    @pytest.mark.asyncio
    async def test_stop_during_first_tick_discards_it(self) -> None:
        weather = _GatedWeather()
        weather.gate.clear()
        sink = _RecordingSink()
        instance = _instance(weather=weather, sink=sink, autonomous=True)
        starting = asyncio.create_task(instance.start())
        await _drain()
        assert weather.calls == 1

        await instance.stop()
        weather.gate.set()
        with pytest.raises(NotRunningError):
            await starting

        await asyncio.sleep(0.05)
        assert instance.state == SimulationState.STOPPED
        assert not instance.has_ready_data
        assert weather.calls == 1
        assert sink.pushed == []

    @pytest.mark.asyncio
    async def test_update_time_compression(self) -> None:
        instance = _instance()
        await instance.start()
        assert instance.update_time_compression(30) == 10
        assert instance.seconds_per_hour == 30
        assert not instance.is_generating
        with pytest.raises(ValueError):
            instance.update_time_compression(0)


class TestAdvance:
    @pytest.mark.asyncio
    async def test_returns_current_then_publishes_next(self) -> None:
        instance = _instance()
        first = await instance.start()

        served = instance.advance()
        assert served is first
        await instance.wait_for_pending()

        second = instance.get_snapshot()
        assert second.hour_counter == 2
        assert second.timestamp == first.timestamp + timedelta(hours=1)

    @pytest.mark.asyncio
    async def test_single_flight(self) -> None:
        weather = _GatedWeather()
        instance = _instance(weather=weather)
        first = await instance.start()
        assert weather.calls == 1

        weather.gate.clear()
        served = [instance.advance() for _ in range(5)]
        await _drain()
        assert all(s is first for s in served)
        assert weather.calls == 2
        assert instance.is_generating

        weather.gate.set()
        await instance.wait_for_pending()
        assert not instance.is_generating
        assert instance.get_snapshot().hour_counter == 2

    @pytest.mark.asyncio
    async def test_stop_discards_in_flight_tick(self) -> None:
        weather = _GatedWeather()
        sink = _RecordingSink()
        instance = _instance(weather=weather, sink=sink)
        await instance.start()
        await _drain()
        pushed_before = len(sink.pushed)

        weather.gate.clear()
        instance.advance()
        await _drain()
        await instance.stop()

        weather.gate.set()
        await instance.wait_for_pending()
        await _drain()
        assert not instance.has_ready_data
        assert len(sink.pushed) == pushed_before
        with pytest.raises(NotRunningError):
            instance.get_snapshot()

    @pytest.mark.asyncio
    async def test_failed_tick_keeps_previous_buffer(self) -> None:
        traffic = _FlakyTraffic()
        instance = _instance(traffic=traffic)
        first = await instance.start()

        traffic.fail_next = True
        instance.advance()
        await instance.wait_for_pending()
        assert instance.get_snapshot() is first
        assert not instance.is_generating

        instance.advance()
        await instance.wait_for_pending()
        assert instance.get_snapshot() is not first

    @pytest.mark.asyncio
    async def test_target_clock(self) -> None:
        instance = _instance(clock=TargetClock(_START))
        await instance.start()
        target = _START + timedelta(hours=6)
        instance.advance(target)
        await instance.wait_for_pending()
        assert instance.get_snapshot().timestamp == target

    @pytest.mark.asyncio
    async def test_target_requires_target_clock(self) -> None:
        instance = _instance()
        await instance.start()
        with pytest.raises(ValueError):
            instance.advance(_START + timedelta(hours=3))


class TestEventTopUp:
    @pytest.mark.asyncio
    async def test_topped_up_events_appear_in_same_tick(self) -> None:
        config = EventGenerationConfig(
            generation_chance=0.0,
            top_up_threshold=100,
            top_up_interval_hours=1,
            max_per_day=50,
            minimum_gap=timedelta(0),
        )
        instance = _instance(event_config=config)
        snapshot = await instance.start()
        first_total = snapshot.events.total_count

        for _ in range(4):
            stats = instance.events.statistics()
            assert snapshot.events.scheduled_count == stats["scheduled"]
            assert snapshot.events.total_count == stats["total"]
            assert len(snapshot.events.events) == stats["total"]
            instance.advance()
            await instance.wait_for_pending()
            snapshot = instance.get_snapshot()

        assert instance.events.statistics()["total"] > first_total


class TestSinkForwarding:
    @pytest.mark.asyncio
    async def test_every_published_tick_is_forwarded(self) -> None:
        sink = _RecordingSink()
        instance = _instance(sink=sink)
        await instance.start()
        for _ in range(3):
            instance.advance()
            await instance.wait_for_pending()
        await _drain()
        assert [s.hour_counter for s in sink.pushed] == [1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_sink_failure_does_not_abort_ticks(self) -> None:
        sink = _RecordingSink(fail=True)
        instance = _instance(sink=sink)
        await instance.start()
        instance.advance()
        await instance.wait_for_pending()
        await _drain()
        assert instance.get_snapshot().hour_counter == 2
        assert len(sink.pushed) == 2


class TestAutonomousTicking:
    @pytest.mark.asyncio
    async def test_ticker_advances_and_stops(self) -> None:
        instance = SimulationInstance(
            "sim_auto",
            make_catalog(),
            0.01,
            autonomous=True,
            clock=FreeRunningClock(_START),
            rng=random.Random(1),
        )
        await instance.start()
        await asyncio.sleep(0.2)
        assert instance.hour_counter > 1
        await instance.stop()
        counter = instance.hour_counter
        await asyncio.sleep(0.05)
        assert instance.hour_counter <= counter + 1


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_two_days_of_ticks(self) -> None:
        instance = _instance(event_config=EventGenerationConfig(generation_chance=0.5))
        previous = await instance.start()

        for _ in range(48):
            served = instance.advance()
            assert served is previous
            await instance.wait_for_pending()
            current = instance.get_snapshot()

            assert current.hour_counter == previous.hour_counter + 1
            assert current.hour == (previous.hour + 1) % 24
            assert current.timestamp == previous.timestamp + timedelta(hours=1)
            assert current.events.total_count >= previous.events.total_count

            # Weather, events and traffic all describe the same simulated hour
            assert current.weather.simulation_time == current.timestamp
            assert current.traffic.simulation_time == current.timestamp
            assert current.weather.provenance == WeatherProvenance.FALLBACK
            active_impact = sum(e.impact_factor for e in current.events.events if e.status.value == "active")
            assert current.traffic.events_impact == pytest.approx(1 + 0.1 * active_impact, abs=0.01)

            for zone in current.traffic.datazones:
                assert 0.1 <= zone.datazone_congestion <= 10.0
            previous = current

        status = instance.status()
        assert status["hour_counter"] == 49
        assert status["state"] == "running"
        assert status["last_traffic"]["total_datazones"] == 3
        await instance.stop()
