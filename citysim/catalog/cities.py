"""Per-city configuration records.

Each supported city has one explicit, validated ``CityConfig``.  Lookups
go through ``get_city_config`` which fails loudly for unknown ids.
"""

from __future__ import annotations

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator

from citysim.domain.errors import UnknownCityError


class CityConfig(BaseModel):
    """Static description of one city and where its data lives."""

    city_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    country: str
    timezone: str
    datazones_file: str = Field(..., description="Zone topology JSON, relative to the data dir")
    events_file: str = Field(..., description="Event catalog JSON, relative to the data dir")
    temp_offset: float = 0.0
    humidity_offset: float = 0.0
    wind_offset: float = 0.0

    model_config = {"frozen": True}

    @field_validator("timezone")
    @classmethod
    def timezone_must_exist(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone: {v}") from exc
        return v

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def public_info(self) -> dict:
        return {
            "city_id": self.city_id,
            "name": self.name,
            "country": self.country,
            "timezone": self.timezone,
        }


# Weather offsets differentiate cities that replay the same base dataset.
CITY_CONFIGS: dict[str, CityConfig] = {
    cfg.city_id: cfg
    for cfg in (
        CityConfig(
            city_id="edinburgh",
            name="Edinburgh, Scotland",
            country="UK",
            timezone="Europe/London",
            datazones_file="datazones/edinburgh_datazones_with_streets.json",
            events_file="events/edinburgh_events.json",
            temp_offset=-1.0,
            humidity_offset=2,
            wind_offset=1.0,
        ),
        CityConfig(
            city_id="york",
            name="York, England",
            country="UK",
            timezone="Europe/London",
            datazones_file="datazones/york_datazones_with_streets.json",
            events_file="events/york_events.json",
            temp_offset=0.5,
            humidity_offset=-1,
            wind_offset=-0.5,
        ),
        CityConfig(
            city_id="hull",
            name="Hull, England",
            country="UK",
            timezone="Europe/London",
            datazones_file="datazones/hull_datazones_with_streets.json",
            events_file="events/hull_events.json",
        ),
        CityConfig(
            city_id="manchester",
            name="Manchester, England",
            country="UK",
            timezone="Europe/London",
            datazones_file="datazones/manchester_datazones_with_streets.json",
            events_file="events/manchester_events.json",
            humidity_offset=3,
            wind_offset=0.5,
        ),
    )
}


def get_city_config(city_id: str) -> CityConfig:
    """Return the configuration for *city_id*.

    Raises:
        UnknownCityError: If the city has no configuration record.
    """
    config = CITY_CONFIGS.get(city_id)
    if config is None:
        raise UnknownCityError(city_id, sorted(CITY_CONFIGS))
    return config


def available_cities() -> list[dict]:
    return [cfg.public_info() for cfg in CITY_CONFIGS.values()]
