"""Pydantic response models for the simulation control surface."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from citysim.domain.snapshot import TickSnapshot


class TrafficSummary(BaseModel):
    congestion_level: float
    average_speed: float
    total_datazones: int


class SimulationStatus(BaseModel):
    """Structural facts about one running instance."""

    simulation_id: str
    city_id: str
    city_name: str
    state: str
    is_running: bool
    current_time: datetime
    hour_counter: int = Field(..., ge=0)
    seconds_per_hour: float = Field(..., gt=0)
    autonomous: bool
    sink: str
    sink_enabled: bool
    historical_weather: bool
    last_weather: dict[str, Any] | None = None
    last_traffic: TrafficSummary | None = None
    events: dict[str, int] = Field(default_factory=dict)
    created_at: datetime
    has_ready_data: bool
    is_generating: bool


class SimulationStarted(BaseModel):
    simulation_id: str
    city_id: str
    city_name: str
    seconds_per_hour: float
    status: str = "started"
    message: str = ""


class SimulationStopped(BaseModel):
    simulation_id: str
    status: str = "stopped"
    total_hours_simulated: int


class TimeCompressionUpdated(BaseModel):
    simulation_id: str
    old_seconds_per_hour: float
    new_seconds_per_hour: float


class SimulationList(BaseModel):
    simulations: list[SimulationStatus]
    count: int


class SnapshotResponse(BaseModel):
    """A tick snapshot plus how it was served."""

    simulation_id: str
    served_at: datetime
    next_tick_scheduled: bool = False
    data: TickSnapshot
