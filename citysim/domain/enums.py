"""Controlled enumerations for the citysim domain.

Every categorical field in the domain MUST reference an enum defined here.
"""

from __future__ import annotations

from enum import Enum


class WeatherCondition(str, Enum):
    """Canonical weather conditions understood by the traffic model."""

    SUNNY = "sunny"
    CLOUDY = "cloudy"
    PARTLY_CLOUDY = "partly_cloudy"
    RAINY = "rainy"
    STORMY = "stormy"
    SNOWY = "snowy"


class WeatherProvenance(str, Enum):
    """Where a weather sample came from."""

    HISTORICAL = "historical"
    FALLBACK = "fallback"


class EventStatus(str, Enum):
    """Event lifecycle states.  Transitions only move forward."""

    SCHEDULED = "scheduled"
    ACTIVE = "active"
    COMPLETED = "completed"


class AreaType(str, Enum):
    """Zone classification derived from its road-type histogram."""

    MAJOR_TRANSPORT_HUB = "major_transport_hub"
    COMMERCIAL_ARTERIAL = "commercial_arterial"
    MIXED_DEVELOPMENT = "mixed_development"
    DENSE_RESIDENTIAL = "dense_residential"
    SUBURBAN_RESIDENTIAL = "suburban_residential"
    MIXED_LOCAL = "mixed_local"


class BottleneckRisk(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SimulationState(str, Enum):
    """Lifecycle of one simulation instance: uninitialized → running → stopped."""

    UNINITIALIZED = "uninitialized"
    RUNNING = "running"
    STOPPED = "stopped"


class SinkStrategy(str, Enum):
    """Where generated snapshots are forwarded."""

    NONE = "none"
    PUSH = "push"
    BROADCAST = "broadcast"
    BOTH = "both"
