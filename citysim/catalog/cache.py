"""CatalogCache — loads static city data once and shares it read-only.

Zone topology and event catalogs are cached per city; the historical
weather index is loaded once per process.  Everything cached here is
immutable, so any number of simulation instances may read it at once.
An asyncio.Lock serialises loads so concurrent starts for the same city
never read the files twice.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from citysim.catalog.cities import CityConfig
from citysim.catalog.providers import (
    EventCatalogProvider,
    HistoricalWeatherProvider,
    ZoneTopologyProvider,
)
from citysim.catalog.weather_index import HistoricalWeatherIndex
from citysim.domain.event import EventTemplate
from citysim.domain.zone import Zone

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CityCatalog:
    """Everything static a simulation of one city needs."""

    city: CityConfig
    zones: tuple[Zone, ...]
    templates: tuple[EventTemplate, ...]
    weather_index: HistoricalWeatherIndex | None


class CatalogCache:
    def __init__(
        self,
        zones: ZoneTopologyProvider,
        events: EventCatalogProvider,
        weather: HistoricalWeatherProvider,
    ) -> None:
        self._zone_provider = zones
        self._event_provider = events
        self._weather_provider = weather
        self._lock = asyncio.Lock()
        self._zones: dict[str, tuple[Zone, ...]] = {}
        self._templates: dict[str, tuple[EventTemplate, ...]] = {}
        self._weather_index: HistoricalWeatherIndex | None = None
        self._weather_loaded = False

    async def load(self, city: CityConfig) -> CityCatalog:
        """Return the city's catalog, reading files only on first use.

        Raises:
            DataLoadError: If the topology or event catalog cannot be loaded.
        """
        async with self._lock:
            zones = self._zones.get(city.city_id)
            if zones is None:
                zones = await asyncio.to_thread(self._zone_provider.load, city)
                self._zones[city.city_id] = zones

            templates = self._templates.get(city.city_id)
            if templates is None:
                templates = await asyncio.to_thread(self._event_provider.load, city)
                self._templates[city.city_id] = templates

            if not self._weather_loaded:
                self._weather_index = await asyncio.to_thread(self._weather_provider.load)
                self._weather_loaded = True

            return CityCatalog(
                city=city,
                zones=zones,
                templates=templates,
                weather_index=self._weather_index,
            )

    @property
    def cached_cities(self) -> list[str]:
        return sorted(self._zones)
