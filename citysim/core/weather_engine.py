"""WeatherEngine — weather samples for simulated timestamps.

Two modes:
    - Historical replay: each instance picks a random anchor inside the
      shared dataset and replays ``anchor + (t - simulation_start)``.
      Per-city offsets differentiate cities that share the dataset.
    - Fallback synthesis: a sinusoidal time-of-day curve around a
      seasonal base temperature, plus bounded noise.

A missing or unparseable dataset disables replay for the engine's whole
lifetime.  A lookup with no record within tolerance falls back for that
one request.  Callers never see an error for missing data.
"""

from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from citysim.catalog.cities import CityConfig
from citysim.catalog.weather_index import HistoricalRecord, HistoricalWeatherIndex
from citysim.domain.enums import WeatherCondition, WeatherProvenance
from citysim.domain.errors import NotInitializedError
from citysim.domain.weather import WeatherSample

logger = logging.getLogger(__name__)

BASE_PRESSURE = 1013.25

SEASONAL_BASE_TEMPS = {"spring": 10.0, "summer": 18.0, "autumn": 12.0, "winter": 4.0}


@dataclass(frozen=True)
class WeatherConfig:
    """Tunables for historical replay."""

    match_tolerance: timedelta = timedelta(seconds=60)
    # Trailing part of the dataset never used as an anchor
    anchor_buffer: timedelta = timedelta(days=7)


# ── Pure helpers ─────────────────────────────────────────────────────────────

def map_condition(conditions: str) -> WeatherCondition:
    """Map a free-text condition string onto the canonical enum.

    Rules are checked in order, first match wins.
    """
    text = conditions.lower()
    if "rain" in text:
        return WeatherCondition.RAINY
    if "snow" in text:
        return WeatherCondition.SNOWY
    if "storm" in text or "thunder" in text:
        return WeatherCondition.STORMY
    if "clear" in text or "sunny" in text:
        return WeatherCondition.SUNNY
    if "cloud" in text or "overcast" in text:
        return WeatherCondition.CLOUDY
    if "partly" in text:
        return WeatherCondition.PARTLY_CLOUDY
    return WeatherCondition.PARTLY_CLOUDY


def estimate_pressure(conditions: str) -> float:
    """Heuristic pressure (hPa) from condition keywords."""
    text = conditions.lower()
    pressure = BASE_PRESSURE
    if "rain" in text:
        pressure -= 10
    if "storm" in text:
        pressure -= 20
    if "clear" in text:
        pressure += 5
    return round(pressure, 1)


def season_of(moment: datetime) -> str:
    month = moment.month
    if 3 <= month <= 5:
        return "spring"
    if 6 <= month <= 8:
        return "summer"
    if 9 <= month <= 11:
        return "autumn"
    return "winter"


def derive_condition(temperature: float, humidity: float, wind_speed: float) -> WeatherCondition:
    """Condition for synthesized weather, from the synthesized readings."""
    if humidity > 85 and temperature > 2:
        return WeatherCondition.RAINY
    if humidity > 70 and wind_speed > 15:
        return WeatherCondition.STORMY
    if temperature < 2 and humidity > 80:
        return WeatherCondition.SNOWY
    if humidity < 30:
        return WeatherCondition.SUNNY
    if humidity > 60:
        return WeatherCondition.CLOUDY
    return WeatherCondition.PARTLY_CLOUDY


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


# ── Engine ───────────────────────────────────────────────────────────────────

class WeatherEngine:
    """Per-instance weather source.

    The historical index is shared and read-only; the anchor and the
    simulation start time belong to this instance only.
    """

    def __init__(
        self,
        city: CityConfig,
        config: WeatherConfig | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._city = city
        self._config = config or WeatherConfig()
        self._rng = rng or random.Random()
        self._index: HistoricalWeatherIndex | None = None
        self._anchor: datetime | None = None
        self._simulation_start: datetime | None = None
        self._initialized = False

    def initialize(
        self,
        index: HistoricalWeatherIndex | None,
        simulation_start: datetime | None = None,
    ) -> None:
        """Attach the shared dataset and pick this instance's anchor.

        When *simulation_start* is omitted, the first requested time
        becomes the start.
        """
        if self._initialized:
            return
        self._index = index
        self._simulation_start = simulation_start
        if index is not None:
            self._anchor = self._pick_anchor(index)
            logger.info(
                "%s weather replay anchored at %s",
                self._city.city_id,
                self._anchor.isoformat(),
            )
        else:
            logger.warning("%s weather running in fallback-only mode", self._city.city_id)
        self._initialized = True

    @property
    def historical_enabled(self) -> bool:
        return self._index is not None

    @property
    def anchor(self) -> datetime | None:
        return self._anchor

    @property
    def simulation_start(self) -> datetime | None:
        return self._simulation_start

    async def simulate_for_time(self, simulated_time: datetime) -> WeatherSample:
        """Return the weather sample for *simulated_time*.

        Raises:
            NotInitializedError: If called before initialize().
        """
        if not self._initialized:
            raise NotInitializedError(f"{self._city.city_id} weather engine")

        if self._simulation_start is None:
            self._simulation_start = simulated_time
            logger.info(
                "%s weather simulation started at %s",
                self._city.city_id,
                simulated_time.isoformat(),
            )

        if self._index is None or self._anchor is None:
            return self.generate_fallback(simulated_time)

        elapsed = simulated_time.astimezone(timezone.utc) - self._simulation_start.astimezone(
            timezone.utc
        )
        historical_time = self._anchor + elapsed
        record = self._index.lookup(historical_time, self._config.match_tolerance)
        if record is None:
            logger.warning(
                "No %s weather record near %s, using fallback",
                self._city.city_id,
                historical_time.isoformat(),
            )
            return self.generate_fallback(simulated_time)
        return self._from_record(record, simulated_time, historical_time)

    # ── Historical ───────────────────────────────────────────────────────

    def _pick_anchor(self, index: HistoricalWeatherIndex) -> datetime:
        usable = (index.end - index.start) - self._config.anchor_buffer
        span = max(usable.total_seconds(), 0.0)
        anchor = index.start + timedelta(seconds=self._rng.random() * span)
        return anchor.replace(minute=0, second=0, microsecond=0)

    def _from_record(
        self,
        record: HistoricalRecord,
        simulated_time: datetime,
        historical_time: datetime,
    ) -> WeatherSample:
        city = self._city
        if record.exact:
            source = f"historical_{city.city_id}"
        else:
            source = f"historical_interpolated_{city.city_id}"
        return WeatherSample(
            temperature=round(record.temperature + city.temp_offset, 1),
            humidity=round(_clamp(record.humidity + city.humidity_offset, 0, 100)),
            wind_speed=round(max(0.0, record.wind_speed + city.wind_offset), 1),
            condition=map_condition(record.conditions),
            pressure=estimate_pressure(record.conditions),
            precipitation=record.precipitation,
            provenance=WeatherProvenance.HISTORICAL,
            source=source,
            simulation_time=simulated_time,
            historical_time=historical_time,
            raw_conditions=record.conditions,
            time_diff_seconds=None if record.exact else record.time_diff_seconds,
        )

    # ── Fallback ─────────────────────────────────────────────────────────

    def generate_fallback(self, simulated_time: datetime) -> WeatherSample:
        """Synthesize a plausible sample for *simulated_time*."""
        local = simulated_time.astimezone(self._city.tz)
        city = self._city
        rng = self._rng

        time_of_day = math.sin((local.hour - 6) * math.pi / 12)
        base_temp = SEASONAL_BASE_TEMPS[season_of(local)] + time_of_day * 8

        temperature = base_temp + city.temp_offset + (rng.random() - 0.5) * 4
        humidity = (
            60 + city.humidity_offset + (1 - time_of_day) * 25 + (rng.random() - 0.5) * 20
        )
        wind_speed = max(0.0, 5 + city.wind_offset + (rng.random() - 0.5) * 15)
        pressure = 1013 + (rng.random() - 0.5) * 40

        return WeatherSample(
            temperature=round(temperature, 1),
            humidity=round(_clamp(humidity, 0, 100)),
            wind_speed=round(wind_speed, 1),
            condition=derive_condition(temperature, humidity, wind_speed),
            pressure=round(pressure, 1),
            provenance=WeatherProvenance.FALLBACK,
            source=f"fallback_generated_{city.city_id}",
            simulation_time=simulated_time,
        )
