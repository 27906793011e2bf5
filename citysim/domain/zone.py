"""Zone topology and per-instance zone traffic state.

``Zone`` is static topology loaded once per city and shared read-only by
every simulation of that city.  ``ZoneTrafficState`` is the mutable,
per-instance view owned by exactly one TrafficEngine.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from citysim.domain.enums import AreaType, BottleneckRisk
from citysim.domain.traffic import StreetCongestion


class Zone(BaseModel):
    """A datazone with static road-topology statistics."""

    datazone_code: str = Field(..., min_length=1)
    street_count: int = Field(0, ge=0)
    street_type_counts: dict[str, int] = Field(default_factory=dict)
    dominant_street_type: str | None = None
    street_ids: tuple[str, ...] = ()

    model_config = {"frozen": True}

    @property
    def histogram_total(self) -> int:
        return sum(self.street_type_counts.values())

    def count_of(self, *road_types: str) -> int:
        return sum(self.street_type_counts.get(rt, 0) for rt in road_types)


class ZoneTrafficState:
    """Derived traffic state for one zone in one simulation instance.

    Mutated only by the owning TrafficEngine's tick.
    """

    __slots__ = (
        "zone",
        "baseline_congestion",
        "current_congestion",
        "congestion_trend",
        "area_type",
        "traffic_capacity",
        "bottleneck_risk",
        "street_congestion",
    )

    def __init__(
        self,
        zone: Zone,
        baseline_congestion: float,
        area_type: AreaType,
        traffic_capacity: int,
        bottleneck_risk: BottleneckRisk,
    ) -> None:
        self.zone = zone
        self.baseline_congestion = baseline_congestion
        self.current_congestion = baseline_congestion
        self.congestion_trend = 0.0
        self.area_type = area_type
        self.traffic_capacity = traffic_capacity
        self.bottleneck_risk = bottleneck_risk
        self.street_congestion: list[StreetCongestion] = []

    @property
    def datazone_code(self) -> str:
        return self.zone.datazone_code

    def __repr__(self) -> str:
        return (
            f"ZoneTrafficState(code={self.datazone_code}, "
            f"baseline={self.baseline_congestion:.2f}, "
            f"current={self.current_congestion:.2f}, area={self.area_type.value})"
        )
