"""Error taxonomy for the simulation core.

Transient conditions (``NotReadyError``) are kept distinct from contract
violations (``NotInitializedError``) so callers can decide whether to retry.
"""

from __future__ import annotations


class CitySimError(Exception):
    """Base class for all citysim errors."""


class UnknownCityError(CitySimError):
    """Raised when a city identifier has no configuration record."""

    def __init__(self, city_id: str, available: list[str]) -> None:
        self.city_id = city_id
        self.available = available
        super().__init__(
            f"City '{city_id}' not found. Available cities: {', '.join(available)}"
        )


class DataLoadError(CitySimError):
    """Raised when a topology or event catalog file is missing or invalid."""

    def __init__(self, city_id: str, path: str, reason: str) -> None:
        self.city_id = city_id
        self.path = path
        self.reason = reason
        super().__init__(f"Could not load data for '{city_id}' from {path}: {reason}")


class NotInitializedError(CitySimError):
    """Raised when an engine is used before its one-time setup."""

    def __init__(self, component: str) -> None:
        self.component = component
        super().__init__(f"{component} used before initialization")


class NotReadyError(CitySimError):
    """No tick has completed yet.  Expected while starting up; retry later."""

    def __init__(self, simulation_id: str, retry_after: float = 5.0) -> None:
        self.simulation_id = simulation_id
        self.retry_after = retry_after
        super().__init__(
            f"No data available yet for simulation {simulation_id} - simulation is starting up"
        )


class NotRunningError(CitySimError):
    """Raised for operations against a simulation that is not running."""

    def __init__(self, simulation_id: str) -> None:
        self.simulation_id = simulation_id
        super().__init__(f"Simulation {simulation_id} is not running")


class SimulationNotFoundError(CitySimError):
    """Raised by the registry when no instance has the given id."""

    def __init__(self, simulation_id: str) -> None:
        self.simulation_id = simulation_id
        super().__init__(f"Simulation {simulation_id} not found")


class SinkError(CitySimError):
    """External telemetry push failed."""

    def __init__(self, reason: str, status: int | None = None) -> None:
        self.reason = reason
        self.status = status
        super().__init__(f"Sink push failed ({status}): {reason}" if status else reason)

    @property
    def is_auth_failure(self) -> bool:
        return self.status in (401, 403)
