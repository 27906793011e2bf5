"""WeatherSample — one weather observation for a simulated timestamp."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from citysim.domain.enums import WeatherCondition, WeatherProvenance


class WeatherSample(BaseModel):
    """Immutable weather reading, either replayed or synthesized."""

    temperature: float = Field(..., description="Air temperature (°C)")
    humidity: float = Field(..., ge=0.0, le=100.0, description="Relative humidity (%)")
    wind_speed: float = Field(..., ge=0.0, description="Wind speed (km/h)")
    condition: WeatherCondition
    pressure: float = Field(..., description="Estimated pressure (hPa)")
    precipitation: float | None = None
    provenance: WeatherProvenance
    source: str = Field(..., description="Provenance tag including city id")
    simulation_time: datetime
    historical_time: datetime | None = None
    raw_conditions: str | None = None
    time_diff_seconds: int | None = Field(
        None, description="Distance to the nearest historical record (nearest-match only)"
    )

    model_config = {"frozen": True}
