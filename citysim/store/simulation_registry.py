"""In-memory registry of running simulation instances.

Design notes:
    - An asyncio.Lock guards the id → instance map so concurrent starts
      and stops never corrupt it.  Tick work happens outside the lock.
    - Static city data comes from the shared CatalogCache; each instance
      gets its own engines, clock, buffer and sink.
    - Stopped instances are removed immediately; their ids become unknown.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from citysim.catalog.cache import CatalogCache
from citysim.catalog.cities import get_city_config
from citysim.core.events_manager import EventGenerationConfig
from citysim.core.simulation import SimulationInstance
from citysim.core.traffic_engine import TrafficConfig
from citysim.core.weather_engine import WeatherConfig
from citysim.domain.errors import SimulationNotFoundError
from citysim.domain.snapshot import TickSnapshot
from citysim.foundation.identifiers import new_simulation_id
from citysim.sinks.base import NullSink
from citysim.sinks.factory import SinkFactory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EngineConfigs:
    """Tuning shared by every instance the registry creates."""

    weather: WeatherConfig = field(default_factory=WeatherConfig)
    events: EventGenerationConfig = field(default_factory=EventGenerationConfig)
    traffic: TrafficConfig = field(default_factory=TrafficConfig)


class SimulationRegistry:
    """Creates, looks up and stops SimulationInstances.

    Args:
        catalog: Shared loader for static city data.
        configs: Engine tuning applied to every new instance.
        sink_factory: Builds a sink per simulation id; defaults to no sink.
        autonomous: Whether new instances tick on their own.
        min_seconds_per_hour / max_seconds_per_hour: Accepted pacing range.
    """

    def __init__(
        self,
        catalog: CatalogCache,
        *,
        configs: EngineConfigs | None = None,
        sink_factory: SinkFactory | None = None,
        autonomous: bool = False,
        min_seconds_per_hour: float = 1,
        max_seconds_per_hour: float = 3600,
    ) -> None:
        if min_seconds_per_hour <= 0 or min_seconds_per_hour > max_seconds_per_hour:
            raise ValueError("invalid seconds_per_hour range")
        self._catalog = catalog
        self._configs = configs or EngineConfigs()
        self._sink_factory = sink_factory or (lambda _sid: NullSink())
        self._autonomous = autonomous
        self._min_seconds = min_seconds_per_hour
        self._max_seconds = max_seconds_per_hour
        self._instances: dict[str, SimulationInstance] = {}
        self._lock = asyncio.Lock()

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def start(self, city_id: str, seconds_per_hour: float) -> SimulationInstance:
        """Create an instance for *city_id* and compute its first tick.

        Raises:
            UnknownCityError: If the city is not configured.
            DataLoadError: If the city's static data cannot be loaded.
            ValueError: If *seconds_per_hour* is outside the accepted range.
        """
        self.validate_seconds_per_hour(seconds_per_hour)
        city = get_city_config(city_id)
        catalog = await self._catalog.load(city)

        simulation_id = new_simulation_id()
        instance = SimulationInstance(
            simulation_id,
            catalog,
            seconds_per_hour,
            autonomous=self._autonomous,
            weather_config=self._configs.weather,
            event_config=self._configs.events,
            traffic_config=self._configs.traffic,
            sink=self._sink_factory(simulation_id),
        )
        async with self._lock:
            self._instances[simulation_id] = instance

        try:
            await instance.start()
        except Exception:
            logger.exception("Failed to start simulation %s", simulation_id)
            async with self._lock:
                self._instances.pop(simulation_id, None)
            await instance.stop()
            raise

        logger.info(
            "Registered %s simulation %s (%d running)",
            city.name,
            simulation_id,
            len(self._instances),
        )
        return instance

    async def stop(self, simulation_id: str) -> int:
        """Stop and remove an instance.  Returns its final hour counter.

        Raises:
            SimulationNotFoundError: If the id is unknown.
        """
        async with self._lock:
            instance = self._instances.pop(simulation_id, None)
        if instance is None:
            raise SimulationNotFoundError(simulation_id)
        await instance.stop()
        logger.info("Removed simulation %s after %d hours", simulation_id, instance.hour_counter)
        return instance.hour_counter

    async def stop_all(self) -> int:
        """Stop every instance; used at shutdown.  Returns how many stopped."""
        async with self._lock:
            instances = list(self._instances.values())
            self._instances.clear()
        for instance in instances:
            try:
                await instance.stop()
            except Exception:
                logger.exception("Error stopping simulation %s", instance.simulation_id)
        if instances:
            logger.info("Stopped %d simulations", len(instances))
        return len(instances)

    # ── Per-instance operations ──────────────────────────────────────────

    def get(self, simulation_id: str) -> SimulationInstance:
        """Raises SimulationNotFoundError if the id is unknown."""
        instance = self._instances.get(simulation_id)
        if instance is None:
            raise SimulationNotFoundError(simulation_id)
        return instance

    def get_snapshot(self, simulation_id: str) -> TickSnapshot:
        return self.get(simulation_id).get_snapshot()

    def advance(self, simulation_id: str, target_time: datetime | None = None) -> TickSnapshot:
        return self.get(simulation_id).advance(target_time)

    def set_time_compression(self, simulation_id: str, seconds_per_hour: float) -> float:
        """Change an instance's pacing.  Returns the previous value."""
        self.validate_seconds_per_hour(seconds_per_hour)
        return self.get(simulation_id).update_time_compression(seconds_per_hour)

    def validate_seconds_per_hour(self, seconds_per_hour: float) -> None:
        if not self._min_seconds <= seconds_per_hour <= self._max_seconds:
            raise ValueError(
                f"seconds_per_hour must be between {self._min_seconds:g} "
                f"and {self._max_seconds:g}"
            )

    # ── Queries ──────────────────────────────────────────────────────────

    def list_status(self) -> list[dict[str, Any]]:
        return [instance.status() for instance in self._instances.values()]

    @property
    def count(self) -> int:
        return len(self._instances)

    @property
    def simulation_ids(self) -> list[str]:
        return list(self._instances)

    @property
    def catalog(self) -> CatalogCache:
        return self._catalog
