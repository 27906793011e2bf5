"""TickSnapshot — the immutable record composed once per tick.

The ready buffer of a simulation instance always holds exactly the most
recent TickSnapshot.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from citysim.domain.event import EventsView
from citysim.domain.traffic import TrafficAggregate
from citysim.domain.weather import WeatherSample


class TickSnapshot(BaseModel):
    """Weather, events and traffic for one simulated hour."""

    simulation_id: str
    city_id: str
    city_name: str
    timestamp: datetime = Field(..., description="Simulated time of this tick")
    hour: int = Field(..., ge=0, le=23, description="Hour of day in the city's timezone")
    hour_counter: int = Field(..., ge=1, description="Ticks computed so far, this one included")
    seconds_per_hour: float
    generated_at: datetime = Field(..., description="Wall-clock time the tick was computed")
    weather: WeatherSample
    events: EventsView
    traffic: TrafficAggregate

    model_config = {"frozen": True}
