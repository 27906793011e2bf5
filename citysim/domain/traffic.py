"""Immutable traffic observations produced by one tick.

Congestion is a dimensionless multiplier on the engine's configured valid
range (0.1-10.0 by default).  The same scale is used end-to-end, from the
zone baseline to the city aggregate and the API response.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from citysim.domain.enums import AreaType, BottleneckRisk


class StreetCongestion(BaseModel):
    street_id: str
    congestion_level: float

    model_config = {"frozen": True}


class ZoneTraffic(BaseModel):
    """Per-zone traffic for one tick."""

    datazone_code: str
    datazone_congestion: float = Field(..., description="Congestion multiplier, clamped to the valid range")
    congestion_trend: float = Field(..., description="Signed delta from the previous tick")
    area_type: AreaType
    bottleneck_risk: BottleneckRisk
    estimated_vehicles: int = Field(..., ge=0)
    average_speed: float = Field(..., description="Derived mean speed (km/h)")
    street_congestion: tuple[StreetCongestion, ...] = ()

    model_config = {"frozen": True}


class TrafficAggregate(BaseModel):
    """City-wide traffic for one tick plus the per-zone breakdown."""

    congestion_level: float = Field(..., description="Mean zone congestion")
    average_speed: float
    total_vehicles: int = Field(..., ge=0)
    peak_hour: bool
    weather_impact: float
    events_impact: float
    weekend_mode: bool
    simulation_time: datetime
    datazones: tuple[ZoneTraffic, ...] = ()

    model_config = {"frozen": True}

    def congestion_by_zone(self) -> dict[str, float]:
        return {z.datazone_code: z.datazone_congestion for z in self.datazones}
