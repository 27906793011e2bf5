"""citysim — multi-city weather, event and traffic simulation service.

This is the application entry point.  It wires the CatalogCache,
SimulationRegistry, sinks and HTTP/WebSocket routes together.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncIterator

from fastapi import FastAPI

from citysim.api.simulations import create_simulations_router
from citysim.api.ws_simulations import create_ws_simulations_router
from citysim.catalog.cache import CatalogCache
from citysim.catalog.cities import CITY_CONFIGS
from citysim.catalog.providers import (
    CsvHistoricalWeatherProvider,
    JsonEventCatalogProvider,
    JsonZoneTopologyProvider,
)
from citysim.config import Settings, settings
from citysim.core.events_manager import EventGenerationConfig
from citysim.core.traffic_engine import TrafficConfig
from citysim.core.weather_engine import WeatherConfig
from citysim.services.connection_manager import ConnectionManager
from citysim.sinks.factory import build_sink_factory
from citysim.store.simulation_registry import EngineConfigs, SimulationRegistry

# ── Logging ──────────────────────────────────────────────────────────────────

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)

logger = logging.getLogger(__name__)


# ── Wiring ───────────────────────────────────────────────────────────────────

def build_engine_configs(cfg: Settings) -> EngineConfigs:
    """Group flat settings into the engines' frozen config objects."""
    return EngineConfigs(
        weather=WeatherConfig(
            match_tolerance=timedelta(seconds=cfg.weather_match_tolerance_seconds),
            anchor_buffer=timedelta(days=cfg.weather_anchor_buffer_days),
        ),
        events=EventGenerationConfig(
            generation_chance=cfg.event_generation_chance,
            min_hours_in_future=cfg.event_min_hours_in_future,
            max_hours_in_future=cfg.event_max_hours_in_future,
            max_completed_kept=cfg.event_max_completed_kept,
            max_per_day=cfg.event_max_per_day,
            max_concurrent=cfg.event_max_concurrent,
            minimum_gap=timedelta(hours=cfg.event_minimum_gap_hours),
            initial_count_min=cfg.event_initial_count_min,
            initial_count_max=cfg.event_initial_count_max,
            top_up_threshold=cfg.event_top_up_threshold,
            top_up_interval_hours=cfg.event_top_up_interval_hours,
            daily_count_retention=timedelta(days=cfg.event_daily_count_retention_days),
        ),
        traffic=TrafficConfig(
            min_congestion=cfg.traffic_min_congestion,
            max_congestion=cfg.traffic_max_congestion,
            momentum=cfg.traffic_momentum,
            peak_threshold=cfg.traffic_peak_threshold,
        ),
    )


def build_registry(cfg: Settings, manager: ConnectionManager) -> SimulationRegistry:
    catalog = CatalogCache(
        zones=JsonZoneTopologyProvider(cfg.data_dir),
        events=JsonEventCatalogProvider(cfg.data_dir),
        weather=CsvHistoricalWeatherProvider(cfg.data_dir / cfg.weather_file),
    )
    return SimulationRegistry(
        catalog,
        configs=build_engine_configs(cfg),
        sink_factory=build_sink_factory(cfg, manager),
        autonomous=cfg.autonomous_ticking,
        min_seconds_per_hour=cfg.min_seconds_per_hour,
        max_seconds_per_hour=cfg.max_seconds_per_hour,
    )


# ── App ──────────────────────────────────────────────────────────────────────

def create_app(
    registry: SimulationRegistry | None = None,
    manager: ConnectionManager | None = None,
    cfg: Settings = settings,
) -> FastAPI:
    manager = manager or ConnectionManager()
    registry = registry or build_registry(cfg, manager)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        logger.info("%s ready with %d cities", cfg.app_name, len(CITY_CONFIGS))
        yield
        stopped = await registry.stop_all()
        logger.info("%s shut down, stopped %d simulations", cfg.app_name, stopped)

    app = FastAPI(
        title=cfg.app_name,
        description="Multi-city weather, event and traffic simulation",
        version="0.1.0",
        debug=cfg.debug,
        lifespan=lifespan,
    )
    app.state.registry = registry
    app.state.manager = manager

    app.include_router(create_simulations_router(
        registry,
        default_seconds_per_hour=cfg.default_seconds_per_hour,
        min_seconds_per_hour=cfg.min_seconds_per_hour,
        max_seconds_per_hour=cfg.max_seconds_per_hour,
    ))
    app.include_router(create_ws_simulations_router(manager))

    # ── Health ───────────────────────────────────────────────────────────

    @app.get("/health")
    async def health() -> dict:
        return {
            "status": "ok",
            "active_simulations": registry.count,
            "available_cities": sorted(CITY_CONFIGS),
            "cached_cities": registry.catalog.cached_cities,
            "websocket_subscribers": manager.active_count,
        }

    return app


app = create_app()
