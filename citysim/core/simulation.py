"""SimulationInstance — one city simulation with its own clock.

Lifecycle:  uninitialized → running → stopped  (stopped is terminal)

Design notes:
    - Each tick composes, strictly in order: weather for the new simulated
      time → event lifecycle → traffic (using that weather, the now-active
      events, and the previous traffic aggregate).
    - The ready buffer holds exactly the most recent TickSnapshot.  Reads
      never compute; ``advance`` returns the buffer and schedules the next
      tick in the background.
    - ``_generating`` is the single-flight guard.  It is set before a tick
      computation starts and cleared on every exit path, so at most one
      tick is ever in flight per instance.
    - ``stop`` never cancels an in-flight tick; the tick checks the running
      state before publishing and discards its result if stopped.
    - Sink pushes run as detached tasks; their failures are logged only.
"""

from __future__ import annotations

import asyncio
import logging
import random
from datetime import datetime
from typing import Any

from citysim.catalog.cache import CityCatalog
from citysim.core.events_manager import EventGenerationConfig, EventLifecycleManager
from citysim.core.traffic_engine import TrafficConfig, TrafficEngine
from citysim.core.weather_engine import WeatherConfig, WeatherEngine
from citysim.domain.enums import SimulationState
from citysim.domain.errors import NotReadyError, NotRunningError
from citysim.domain.snapshot import TickSnapshot
from citysim.domain.traffic import TrafficAggregate
from citysim.domain.weather import WeatherSample
from citysim.foundation.clock import FreeRunningClock, SimulationClock, TargetClock, local_hour_start, utc_now
from citysim.sinks.base import NullSink, TelemetrySink

logger = logging.getLogger(__name__)


class SimulationInstance:
    """Owns one instance's clock, engines, ready buffer and guard.

    Args:
        simulation_id: Unique id assigned by the registry.
        catalog: Shared, read-only static data for the city.
        seconds_per_hour: Wall-clock seconds per simulated hour when ticking
            autonomously.
        autonomous: If True, a periodic ticker advances the simulation
            without requests.
        clock: Simulated time source; defaults to a free-running clock that
            starts at the current local hour.
        weather / events / traffic: Engines; built from the configs if omitted.
        sink: Destination for published snapshots.
    """

    def __init__(
        self,
        simulation_id: str,
        catalog: CityCatalog,
        seconds_per_hour: float,
        *,
        autonomous: bool = False,
        clock: SimulationClock | None = None,
        weather: WeatherEngine | None = None,
        events: EventLifecycleManager | None = None,
        traffic: TrafficEngine | None = None,
        weather_config: WeatherConfig | None = None,
        event_config: EventGenerationConfig | None = None,
        traffic_config: TrafficConfig | None = None,
        sink: TelemetrySink | None = None,
        rng: random.Random | None = None,
    ) -> None:
        if seconds_per_hour <= 0:
            raise ValueError("seconds_per_hour must be positive")
        city = catalog.city
        rng = rng or random.Random()

        self.simulation_id = simulation_id
        self.created_at = utc_now()
        self._catalog = catalog
        self._seconds_per_hour = seconds_per_hour
        self._autonomous = autonomous
        self._clock = clock or FreeRunningClock(local_hour_start(city.tz))
        self._weather = weather or WeatherEngine(city, weather_config, rng)
        self._events = events or EventLifecycleManager(city.city_id, event_config, rng)
        self._traffic = traffic or TrafficEngine(city.city_id, traffic_config, rng)
        self._top_up_interval = (event_config or EventGenerationConfig()).top_up_interval_hours
        self._sink = sink or NullSink()

        self._state = SimulationState.UNINITIALIZED
        self._ready: TickSnapshot | None = None
        self._generating = False
        self._hour_counter = 0
        self._previous_traffic: TrafficAggregate | None = None
        self._last_weather: WeatherSample | None = None

        self._pending: asyncio.Task | None = None
        self._ticker: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()

        logger.info(
            "Created %s simulation %s with %ss per hour",
            city.name,
            simulation_id,
            seconds_per_hour,
        )

    # ── Read-only state ──────────────────────────────────────────────────

    @property
    def city_id(self) -> str:
        return self._catalog.city.city_id

    @property
    def city_name(self) -> str:
        return self._catalog.city.name

    @property
    def state(self) -> SimulationState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == SimulationState.RUNNING

    @property
    def is_generating(self) -> bool:
        return self._generating

    @property
    def has_ready_data(self) -> bool:
        return self._ready is not None

    @property
    def hour_counter(self) -> int:
        return self._hour_counter

    @property
    def seconds_per_hour(self) -> float:
        return self._seconds_per_hour

    @property
    def current_time(self) -> datetime:
        return self._clock.current

    @property
    def events(self) -> EventLifecycleManager:
        return self._events

    @property
    def sink(self) -> TelemetrySink:
        return self._sink

    # ── Control surface ──────────────────────────────────────────────────

    async def start(self) -> TickSnapshot:
        """Initialize the engines, compute the first tick, then go running.

        Raises:
            NotRunningError: If the instance has already been stopped, or
                is stopped before start-up finishes.
        """
        if self._state == SimulationState.STOPPED:
            raise NotRunningError(self.simulation_id)
        if self._state == SimulationState.RUNNING:
            logger.warning("Simulation %s is already running", self.simulation_id)
            assert self._ready is not None
            return self._ready

        logger.info("Starting %s simulation %s", self.city_name, self.simulation_id)
        start_time = self._clock.current
        self._traffic.initialize(self._catalog.zones)
        self._events.initialize(self._catalog.templates)
        self._events.seed_initial_events(start_time)
        self._weather.initialize(self._catalog.weather_index, simulation_start=start_time)
        await self._sink.open()
        if self._state == SimulationState.STOPPED:
            # Stopped while the sink was opening; it may hold a fresh session
            await self._sink.close()
            raise NotRunningError(self.simulation_id)

        self._generating = True
        try:
            snapshot = await self._compute_tick()
        finally:
            self._generating = False

        if self._state == SimulationState.STOPPED:
            logger.info(
                "Discarding first hour for simulation %s stopped during start-up",
                self.simulation_id,
            )
            raise NotRunningError(self.simulation_id)

        self._ready = snapshot
        self._state = SimulationState.RUNNING
        self._forward(snapshot)

        if self._autonomous:
            self._ticker = asyncio.create_task(
                self._run_ticker(), name=f"ticker-{self.simulation_id}"
            )
        logger.info("Simulation %s started with first hour pregenerated", self.simulation_id)
        return snapshot

    def get_snapshot(self) -> TickSnapshot:
        """Return the ready buffer without changing any state.

        Raises:
            NotRunningError: If the instance has been stopped.
            NotReadyError: If no tick has completed yet.
        """
        if self._state == SimulationState.STOPPED:
            raise NotRunningError(self.simulation_id)
        if self._ready is None:
            raise NotReadyError(self.simulation_id)
        return self._ready

    def advance(self, target_time: datetime | None = None) -> TickSnapshot:
        """Return the ready buffer and schedule the next tick in the background.

        If a tick is already in flight no new work is started.

        Args:
            target_time: Simulated time for the next tick; only accepted
                when the instance runs on a TargetClock.

        Raises:
            NotRunningError: If the instance has been stopped.
            NotReadyError: If the instance is still starting up.
            ValueError: If *target_time* is given without a TargetClock.
        """
        if self._state == SimulationState.STOPPED:
            raise NotRunningError(self.simulation_id)
        if self._state == SimulationState.UNINITIALIZED or self._ready is None:
            raise NotReadyError(self.simulation_id)

        if target_time is not None:
            if not isinstance(self._clock, TargetClock):
                raise ValueError("target_time requires an externally driven clock")
            self._clock.set_target(target_time)

        current = self._ready
        self._schedule_tick()
        return current

    async def stop(self) -> None:
        """Stop the instance: clear the buffer and cancel the ticker.

        An in-flight tick is left to finish; it will not publish.
        """
        if self._state == SimulationState.STOPPED:
            logger.warning("Simulation %s is already stopped", self.simulation_id)
            return

        logger.info("Stopping %s simulation %s", self.city_name, self.simulation_id)
        self._state = SimulationState.STOPPED
        self._ready = None

        if self._ticker is not None:
            self._ticker.cancel()
            try:
                await self._ticker
            except asyncio.CancelledError:
                pass
            self._ticker = None

        await self._sink.close()

    def update_time_compression(self, seconds_per_hour: float) -> float:
        """Change the autonomous tick pacing.  Does not trigger a tick.

        Returns the previous value.

        Raises:
            NotRunningError: If the instance has been stopped.
            ValueError: If *seconds_per_hour* is not positive.
        """
        if self._state == SimulationState.STOPPED:
            raise NotRunningError(self.simulation_id)
        if seconds_per_hour <= 0:
            raise ValueError("seconds_per_hour must be positive")
        previous = self._seconds_per_hour
        self._seconds_per_hour = seconds_per_hour
        logger.info(
            "Updated simulation %s time compression %ss -> %ss per hour",
            self.simulation_id,
            previous,
            seconds_per_hour,
        )
        return previous

    async def wait_for_pending(self) -> None:
        """Wait until the in-flight background tick, if any, has finished."""
        task = self._pending
        if task is not None and not task.done():
            await asyncio.wait({task})

    # ── Tick pipeline ────────────────────────────────────────────────────

    def _schedule_tick(self) -> bool:
        """Start a background tick unless one is already in flight."""
        if self._generating:
            logger.debug("Tick already in progress for simulation %s", self.simulation_id)
            return False
        self._generating = True
        self._pending = asyncio.create_task(
            self._background_tick(), name=f"tick-{self.simulation_id}"
        )
        return True

    async def _background_tick(self) -> None:
        try:
            snapshot = await self._compute_tick()
        except Exception:
            logger.exception(
                "Background tick failed for simulation %s; keeping previous data",
                self.simulation_id,
            )
            return
        finally:
            self._generating = False

        if self._state != SimulationState.RUNNING:
            logger.info(
                "Discarding tick %s for stopped simulation %s",
                snapshot.timestamp.isoformat(),
                self.simulation_id,
            )
            return
        self._ready = snapshot
        self._forward(snapshot)

    async def _compute_tick(self) -> TickSnapshot:
        tick_time = self._clock.next_time()

        weather = await self._weather.simulate_for_time(tick_time)
        events_view = self._events.process_tick(tick_time)
        traffic = await self._traffic.tick(
            tick_time, weather, self._events.active_events, self._previous_traffic
        )

        self._clock.commit(tick_time)
        self._hour_counter += 1
        self._previous_traffic = traffic
        self._last_weather = weather
        if self._hour_counter % self._top_up_interval == 0:
            if self._events.top_up(tick_time):
                events_view = self._events.view(tick_time)

        snapshot = TickSnapshot(
            simulation_id=self.simulation_id,
            city_id=self.city_id,
            city_name=self.city_name,
            timestamp=tick_time,
            hour=tick_time.hour,
            hour_counter=self._hour_counter,
            seconds_per_hour=self._seconds_per_hour,
            generated_at=utc_now(),
            weather=weather,
            events=events_view,
            traffic=traffic,
        )
        logger.info(
            "%s simulation %s - hour %d: %s, %.2f congestion over %d zones, "
            "events %d active / %d scheduled / %d completed",
            self.city_name,
            self.simulation_id,
            snapshot.hour,
            weather.condition.value,
            traffic.congestion_level,
            len(traffic.datazones),
            events_view.active_count,
            events_view.scheduled_count,
            events_view.completed_count,
        )
        return snapshot

    def _forward(self, snapshot: TickSnapshot) -> None:
        if not self._sink.enabled:
            return
        task = asyncio.create_task(self._push(snapshot))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _push(self, snapshot: TickSnapshot) -> None:
        try:
            await self._sink.push(snapshot)
        except Exception as exc:
            logger.error(
                "Sink %s failed for simulation %s: %s",
                self._sink.name,
                self.simulation_id,
                exc,
            )

    async def _run_ticker(self) -> None:
        """Advance once per ``seconds_per_hour`` while running."""
        while self._state == SimulationState.RUNNING:
            await asyncio.sleep(self._seconds_per_hour)
            if self._state != SimulationState.RUNNING:
                break
            self._schedule_tick()

    # ── Summary ──────────────────────────────────────────────────────────

    def status(self) -> dict[str, Any]:
        """Structural facts about the instance for status endpoints."""
        traffic = self._previous_traffic
        return {
            "simulation_id": self.simulation_id,
            "city_id": self.city_id,
            "city_name": self.city_name,
            "state": self._state.value,
            "is_running": self.is_running,
            "current_time": self._clock.current.isoformat(),
            "hour_counter": self._hour_counter,
            "seconds_per_hour": self._seconds_per_hour,
            "autonomous": self._autonomous,
            "sink": self._sink.name,
            "sink_enabled": self._sink.enabled,
            "historical_weather": self._weather.historical_enabled,
            "last_weather": self._last_weather.model_dump(mode="json") if self._last_weather else None,
            "last_traffic": {
                "congestion_level": traffic.congestion_level,
                "average_speed": traffic.average_speed,
                "total_datazones": len(traffic.datazones),
            } if traffic else None,
            "events": self._events.statistics(),
            "created_at": self.created_at.isoformat(),
            "has_ready_data": self.has_ready_data,
            "is_generating": self._generating,
        }

    def __repr__(self) -> str:
        return (
            f"SimulationInstance(id={self.simulation_id}, city={self.city_id}, "
            f"state={self._state.value}, hours={self._hour_counter})"
        )
