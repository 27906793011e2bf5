"""Abstract data providers and their file-backed implementations.

Providers turn files on disk into validated domain objects.

Rules:
    1. Topology and catalog failures raise DataLoadError; they are fatal
       to starting a simulation for that city.
    2. Historical weather failures are NOT fatal: the provider logs and
       returns None so the weather engine runs in fallback-only mode.
    3. Providers never cache; caching belongs to CatalogCache.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ValidationError

from citysim.catalog.cities import CityConfig
from citysim.catalog.weather_index import HistoricalWeatherIndex
from citysim.domain.errors import DataLoadError
from citysim.domain.event import EventTemplate
from citysim.domain.zone import Zone

logger = logging.getLogger(__name__)


class ZoneTopologyProvider(ABC):
    @abstractmethod
    def load(self, city: CityConfig) -> tuple[Zone, ...]:
        """Return the city's zones.

        Raises:
            DataLoadError: If the topology is missing, invalid, or empty.
        """
        ...


class EventCatalogProvider(ABC):
    @abstractmethod
    def load(self, city: CityConfig) -> tuple[EventTemplate, ...]:
        """Return the city's event templates.

        Raises:
            DataLoadError: If the catalog is missing, invalid, or empty.
        """
        ...


class HistoricalWeatherProvider(ABC):
    @abstractmethod
    def load(self) -> HistoricalWeatherIndex | None:
        """Return the shared weather index, or None if unavailable."""
        ...


def _load_json_records(city: CityConfig, path: Path, model: type[BaseModel]) -> tuple[Any, ...]:
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise DataLoadError(city.city_id, str(path), f"cannot read file ({exc.strerror})") from exc
    except json.JSONDecodeError as exc:
        raise DataLoadError(city.city_id, str(path), f"invalid JSON: {exc.msg}") from exc

    if not isinstance(raw, list) or not raw:
        raise DataLoadError(city.city_id, str(path), "expected a non-empty JSON list")

    try:
        return tuple(model.model_validate(item) for item in raw)
    except ValidationError as exc:
        raise DataLoadError(
            city.city_id, str(path), f"{exc.error_count()} validation error(s)"
        ) from exc


class JsonZoneTopologyProvider(ZoneTopologyProvider):
    def __init__(self, data_dir: Path) -> None:
        self._data_dir = data_dir

    def load(self, city: CityConfig) -> tuple[Zone, ...]:
        logger.info("Loading %s datazones", city.city_id)
        zones = _load_json_records(city, self._data_dir / city.datazones_file, Zone)
        logger.info("Loaded %d %s datazones", len(zones), city.city_id)
        return zones


class JsonEventCatalogProvider(EventCatalogProvider):
    def __init__(self, data_dir: Path) -> None:
        self._data_dir = data_dir

    def load(self, city: CityConfig) -> tuple[EventTemplate, ...]:
        logger.info("Loading %s event catalog", city.city_id)
        templates = _load_json_records(city, self._data_dir / city.events_file, EventTemplate)
        logger.info("Loaded %d %s event types", len(templates), city.city_id)
        return templates


class CsvHistoricalWeatherProvider(HistoricalWeatherProvider):
    def __init__(self, path: Path) -> None:
        self._path = path

    def load(self) -> HistoricalWeatherIndex | None:
        try:
            index = HistoricalWeatherIndex.from_csv(self._path)
        except (OSError, ValueError, KeyError) as exc:
            logger.warning(
                "Could not load historical weather from %s, using fallback generation: %s",
                self._path,
                exc,
            )
            return None
        logger.info(
            "Loaded %d weather records (%s to %s)",
            index.record_count,
            index.start.isoformat(),
            index.end.isoformat(),
        )
        return index
