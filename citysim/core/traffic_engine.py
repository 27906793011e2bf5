"""TrafficEngine — per-zone and city-wide congestion for each tick.

Congestion formula per zone:
    raw = baseline
        × time_of_day(hour)
        × (weekday: peak(area, dominant road) | weekend: weekend(area))
        × weather(condition, wind)
        × event_impact(zone)

    blended = raw × (1 - momentum) + previous × momentum
    congestion = clamp(blended, min_congestion, max_congestion)

Congestion is a multiplier on a single scale (default 0.1-10.0) used
unchanged from baseline to API output.  The zone baseline is computed
once at initialization and never changes.

Event impact: an event's primary zone (first listed) gets
``1 + impact_factor``; the i-th secondary zone gets
``1 + impact_factor × max(floor, 1 - i × step)``.  Overlapping events
take the maximum impact, never the sum.
"""

from __future__ import annotations

import logging
import math
import random
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime

from citysim.domain.enums import AreaType, BottleneckRisk, WeatherCondition
from citysim.domain.errors import NotInitializedError
from citysim.domain.event import Event
from citysim.domain.traffic import StreetCongestion, TrafficAggregate, ZoneTraffic
from citysim.domain.weather import WeatherSample
from citysim.domain.zone import Zone, ZoneTrafficState

logger = logging.getLogger(__name__)

ROAD_TYPE_WEIGHTS: dict[str, float] = {
    "primary": 100,
    "secondary": 80,
    "tertiary": 60,
    "trunk": 120,
    "motorway": 150,
    "residential": 20,
    "unclassified": 15,
    "service": 10,
    "footway": 0,
    "cycleway": 0,
}

PEAK_HOUR_MULTIPLIERS: dict[str, float] = {
    "primary": 2.5,
    "secondary": 2.2,
    "tertiary": 1.8,
    "trunk": 2.8,
    "motorway": 3.0,
    "residential": 1.3,
    "unclassified": 1.2,
    "service": 1.1,
}

AREA_MULTIPLIERS: dict[AreaType, float] = {
    AreaType.MAJOR_TRANSPORT_HUB: 1.8,
    AreaType.COMMERCIAL_ARTERIAL: 1.6,
    AreaType.MIXED_DEVELOPMENT: 1.4,
    AreaType.DENSE_RESIDENTIAL: 1.2,
    AreaType.SUBURBAN_RESIDENTIAL: 1.1,
    AreaType.MIXED_LOCAL: 1.3,
}

WEEKEND_MULTIPLIERS: dict[AreaType, float] = {
    AreaType.MAJOR_TRANSPORT_HUB: 0.7,
    AreaType.COMMERCIAL_ARTERIAL: 0.6,
    AreaType.MIXED_DEVELOPMENT: 0.8,
    AreaType.DENSE_RESIDENTIAL: 0.9,
    AreaType.SUBURBAN_RESIDENTIAL: 1.1,
    AreaType.MIXED_LOCAL: 0.85,
}

WEATHER_MULTIPLIERS: dict[WeatherCondition, float] = {
    WeatherCondition.RAINY: 1.4,
    WeatherCondition.SNOWY: 2.2,
    WeatherCondition.STORMY: 1.8,
    WeatherCondition.SUNNY: 0.95,
}


@dataclass(frozen=True)
class TrafficConfig:
    """Scales, weights and thresholds for the congestion model."""

    min_congestion: float = 0.1
    max_congestion: float = 10.0
    baseline_min: float = 0.3
    baseline_max: float = 3.0
    momentum: float = 0.3
    peak_threshold: float = 1.5

    high_wind_speed: float = 30.0
    high_wind_penalty: float = 1.2

    secondary_decay_step: float = 0.1
    secondary_decay_floor: float = 0.3

    road_type_weights: Mapping[str, float] = field(default_factory=lambda: dict(ROAD_TYPE_WEIGHTS))
    peak_hour_multipliers: Mapping[str, float] = field(default_factory=lambda: dict(PEAK_HOUR_MULTIPLIERS))
    area_multipliers: Mapping[AreaType, float] = field(default_factory=lambda: dict(AREA_MULTIPLIERS))
    weekend_multipliers: Mapping[AreaType, float] = field(default_factory=lambda: dict(WEEKEND_MULTIPLIERS))


# ── Pure factor functions ────────────────────────────────────────────────────

def time_of_day_multiplier(hour: int) -> float:
    if 7 <= hour <= 9:
        return 1.6
    if 16 <= hour <= 18:
        return 1.8
    if hour >= 22 or hour <= 5:
        return 0.3
    if 10 <= hour <= 15:
        return 0.8
    return 1.0


def weather_multiplier(weather: WeatherSample, config: TrafficConfig) -> float:
    multiplier = WEATHER_MULTIPLIERS.get(weather.condition, 1.0)
    if weather.wind_speed > config.high_wind_speed:
        multiplier *= config.high_wind_penalty
    return multiplier


def zone_event_impacts(events: Iterable[Event], config: TrafficConfig) -> dict[str, float]:
    """Impact multiplier per affected zone, taking the max across events."""
    impacts: dict[str, float] = {}
    for event in events:
        factor = event.impact_factor
        for position, code in enumerate(event.affected_datazones):
            if position == 0:
                impact = 1.0 + factor
            else:
                decay = max(config.secondary_decay_floor, 1.0 - position * config.secondary_decay_step)
                impact = 1.0 + factor * decay
            impacts[code] = max(impacts.get(code, 1.0), impact)
    return impacts


def determine_area_type(zone: Zone) -> AreaType:
    total = zone.histogram_total
    if total == 0:
        return AreaType.MIXED_LOCAL
    if zone.count_of("motorway", "trunk") > total * 0.3:
        return AreaType.MAJOR_TRANSPORT_HUB
    if zone.count_of("primary", "secondary") > total * 0.4:
        return AreaType.COMMERCIAL_ARTERIAL
    if zone.count_of("residential") > total * 0.6:
        return AreaType.DENSE_RESIDENTIAL if total > 50 else AreaType.SUBURBAN_RESIDENTIAL
    return AreaType.MIXED_DEVELOPMENT


def traffic_capacity(zone: Zone) -> int:
    street_count = zone.street_count or 10
    street_multiplier = math.log(street_count + 1) * 50
    type_multiplier = 1.0 + zone.count_of("motorway", "trunk", "primary") * 0.5
    return round(100 + street_multiplier * type_multiplier)


def bottleneck_risk(zone: Zone) -> BottleneckRisk:
    density = (len(zone.street_ids) or 1) / (zone.street_count or 1)
    if density < 0.5:
        return BottleneckRisk.HIGH
    if density < 1.0:
        return BottleneckRisk.MEDIUM
    return BottleneckRisk.LOW


def speed_for(congestion: float) -> float:
    """Mean speed (km/h), monotonically decreasing in congestion."""
    return max(5.0, 50.0 - congestion * 8.0)


# ── Engine ───────────────────────────────────────────────────────────────────

class TrafficEngine:
    """Per-instance congestion model over a city's static zones."""

    def __init__(
        self,
        city_id: str,
        config: TrafficConfig | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._city_id = city_id
        self._config = config or TrafficConfig()
        self._rng = rng or random.Random()
        self._zones: list[ZoneTrafficState] = []
        self._initialized = False

    @property
    def config(self) -> TrafficConfig:
        return self._config

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def zone_states(self) -> tuple[ZoneTrafficState, ...]:
        return tuple(self._zones)

    def initialize(self, zones: Iterable[Zone]) -> None:
        """Compute each zone's one-time baseline and static attributes."""
        if self._initialized:
            return
        states = []
        for zone in zones:
            state = ZoneTrafficState(
                zone=zone,
                baseline_congestion=self._baseline_congestion(zone),
                area_type=determine_area_type(zone),
                traffic_capacity=traffic_capacity(zone),
                bottleneck_risk=bottleneck_risk(zone),
            )
            state.street_congestion = self._street_congestion(zone, state.baseline_congestion)
            states.append(state)
        if not states:
            raise ValueError(f"{self._city_id} topology has no zones")
        self._zones = states
        self._initialized = True
        logger.info(
            "%s traffic initialized with %d datazones, average baseline %.2f",
            self._city_id,
            len(states),
            self.average_baseline(),
        )

    def average_baseline(self) -> float:
        if not self._zones:
            return 0.0
        return sum(z.baseline_congestion for z in self._zones) / len(self._zones)

    async def tick(
        self,
        now: datetime,
        weather: WeatherSample,
        active_events: Iterable[Event],
        previous: TrafficAggregate | None,
    ) -> TrafficAggregate:
        """Compute the traffic aggregate for *now*.

        Raises:
            NotInitializedError: If called before initialize().
        """
        if not self._initialized:
            raise NotInitializedError(f"{self._city_id} traffic engine")

        cfg = self._config
        events = list(active_events)
        weekend = now.weekday() >= 5
        time_mult = time_of_day_multiplier(now.hour)
        weather_mult = weather_multiplier(weather, cfg)
        impacts = zone_event_impacts(events, cfg)
        events_impact = 1.0 + sum(e.impact_factor * 0.1 for e in events)
        previous_by_zone = previous.congestion_by_zone() if previous is not None else {}

        zone_results: list[ZoneTraffic] = []
        total_congestion = 0.0
        total_speed = 0.0
        total_vehicles = 0

        for state in self._zones:
            if weekend:
                day_mult = cfg.weekend_multipliers.get(state.area_type, 0.8)
            else:
                day_mult = self._peak_multiplier(state)

            congestion = (
                state.baseline_congestion
                * time_mult
                * day_mult
                * weather_mult
                * impacts.get(state.datazone_code, 1.0)
            )

            prior = previous_by_zone.get(state.datazone_code)
            if prior is not None:
                congestion = congestion * (1.0 - cfg.momentum) + prior * cfg.momentum
            congestion = self._clamp(congestion)

            state.congestion_trend = round(congestion - prior, 2) if prior is not None else 0.0
            state.current_congestion = congestion
            state.street_congestion = self._street_congestion(state.zone, congestion)

            speed = speed_for(congestion)
            vehicles = round(congestion * state.traffic_capacity * (0.8 + self._rng.random() * 0.4))
            total_congestion += congestion
            total_speed += speed
            total_vehicles += vehicles

            zone_results.append(
                ZoneTraffic(
                    datazone_code=state.datazone_code,
                    datazone_congestion=round(congestion, 2),
                    congestion_trend=state.congestion_trend,
                    area_type=state.area_type,
                    bottleneck_risk=state.bottleneck_risk,
                    estimated_vehicles=vehicles,
                    average_speed=round(speed, 1),
                    street_congestion=tuple(state.street_congestion),
                )
            )

        count = len(self._zones)
        aggregate = TrafficAggregate(
            congestion_level=round(total_congestion / count, 2),
            average_speed=round(total_speed / count, 1),
            total_vehicles=total_vehicles,
            peak_hour=time_mult > cfg.peak_threshold,
            weather_impact=round(weather_mult, 2),
            events_impact=round(events_impact, 2),
            weekend_mode=weekend,
            simulation_time=now,
            datazones=tuple(zone_results),
        )
        logger.debug(
            "%s traffic at %s: congestion %.2f over %d zones (%d events)",
            self._city_id,
            now.isoformat(),
            aggregate.congestion_level,
            count,
            len(events),
        )
        return aggregate

    # ── Internals ────────────────────────────────────────────────────────

    def _clamp(self, value: float) -> float:
        return max(self._config.min_congestion, min(self._config.max_congestion, value))

    def _baseline_congestion(self, zone: Zone) -> float:
        cfg = self._config
        score = 0.8
        total = zone.street_count or zone.histogram_total
        if total:
            for road_type, count in zone.street_type_counts.items():
                weight = cfg.road_type_weights.get(road_type, 20)
                score += weight * (count / total) / 100
        variation = 0.8 + self._rng.random() * 0.4
        return max(cfg.baseline_min, min(cfg.baseline_max, score * variation))

    def _peak_multiplier(self, state: ZoneTrafficState) -> float:
        cfg = self._config
        area = cfg.area_multipliers.get(state.area_type, 1.3)
        road = cfg.peak_hour_multipliers.get(state.zone.dominant_street_type or "", 1.2)
        return (road + area) / 2

    def _street_congestion(self, zone: Zone, zone_congestion: float) -> list[StreetCongestion]:
        return [
            StreetCongestion(
                street_id=street_id,
                congestion_level=round(self._clamp(zone_congestion * (0.7 + self._rng.random() * 0.6)), 2),
            )
            for street_id in zone.street_ids
        ]
