"""Shared fixtures."""

from __future__ import annotations

import random
from pathlib import Path

import pytest

from citysim.catalog.cache import CatalogCache
from citysim.catalog.cities import get_city_config
from citysim.catalog.providers import (
    CsvHistoricalWeatherProvider,
    JsonEventCatalogProvider,
    JsonZoneTopologyProvider,
)
from citysim.store.simulation_registry import SimulationRegistry

from tests.factories import (
    BASE,
    make_template,
    make_zones,
    write_city_data,
    write_weather_csv,
)


@pytest.fixture
def rng() -> random.Random:
    return random.Random(42)


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    """A data directory with york and hull topology, catalogs and weather."""
    root = tmp_path / "data"
    templates = (make_template("Match"), make_template("Parade", zones=("Z3",), start_hour=14))
    for city_id in ("york", "hull"):
        write_city_data(root, get_city_config(city_id), make_zones(), templates)
    write_weather_csv(root / "weather_data.csv", BASE.replace(year=2024, month=1, day=1, hour=0), 24 * 14)
    return root


@pytest.fixture
def catalog_cache(data_dir: Path) -> CatalogCache:
    return CatalogCache(
        zones=JsonZoneTopologyProvider(data_dir),
        events=JsonEventCatalogProvider(data_dir),
        weather=CsvHistoricalWeatherProvider(data_dir / "weather_data.csv"),
    )


@pytest.fixture
def registry(catalog_cache: CatalogCache) -> SimulationRegistry:
    return SimulationRegistry(catalog_cache)
