"""REST control surface for city simulations.

Path prefix: /api

Every read returns the instance's ready buffer; nothing here computes a
tick inline.  ``advance`` additionally schedules the next tick in the
background.  Domain errors are translated to HTTP status codes in one
place (``_to_http``).
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import JSONResponse

from citysim.catalog.cities import available_cities
from citysim.domain.errors import (
    CitySimError,
    DataLoadError,
    NotReadyError,
    NotRunningError,
    SimulationNotFoundError,
    UnknownCityError,
)
from citysim.foundation.clock import utc_now
from citysim.models.responses import (
    SimulationList,
    SimulationStarted,
    SimulationStatus,
    SimulationStopped,
    SnapshotResponse,
    TimeCompressionUpdated,
)
from citysim.store.simulation_registry import SimulationRegistry

logger = logging.getLogger(__name__)


def _to_http(exc: CitySimError) -> HTTPException:
    if isinstance(exc, (UnknownCityError, SimulationNotFoundError)):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, NotRunningError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, DataLoadError):
        return HTTPException(status_code=503, detail=str(exc))
    logger.error("Unmapped simulation error: %s", exc)
    return HTTPException(status_code=500, detail=str(exc))


def _not_ready(exc: NotReadyError) -> JSONResponse:
    return JSONResponse(
        status_code=202,
        content={
            "simulation_id": exc.simulation_id,
            "status": "generating",
            "message": str(exc),
            "retry_after": exc.retry_after,
        },
        headers={"Retry-After": str(int(exc.retry_after))},
    )


def create_simulations_router(
    registry: SimulationRegistry,
    default_seconds_per_hour: float = 10,
    min_seconds_per_hour: float = 1,
    max_seconds_per_hour: float = 3600,
) -> APIRouter:
    """Factory that wires the control endpoints to a registry."""

    router = APIRouter(prefix="/api", tags=["simulations"])

    @router.get("/cities")
    async def list_cities() -> dict[str, Any]:
        cities = available_cities()
        return {"cities": cities, "count": len(cities)}

    @router.get("/simulations", response_model=SimulationList)
    async def list_simulations() -> SimulationList:
        statuses = [SimulationStatus.model_validate(s) for s in registry.list_status()]
        return SimulationList(simulations=statuses, count=len(statuses))

    @router.post("/simulations/start", response_model=SimulationStarted)
    async def start_simulation(
        city_id: str = Query(..., min_length=1),
        seconds_per_hour: float = Query(
            default_seconds_per_hour, ge=min_seconds_per_hour, le=max_seconds_per_hour
        ),
    ) -> SimulationStarted:
        try:
            instance = await registry.start(city_id.lower(), seconds_per_hour)
        except CitySimError as exc:
            raise _to_http(exc) from exc
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return SimulationStarted(
            simulation_id=instance.simulation_id,
            city_id=instance.city_id,
            city_name=instance.city_name,
            seconds_per_hour=instance.seconds_per_hour,
            message=f"{instance.city_name} simulation started with first hour ready",
        )

    @router.get("/simulations/{simulation_id}/status", response_model=SimulationStatus)
    async def simulation_status(simulation_id: str) -> SimulationStatus:
        try:
            instance = registry.get(simulation_id)
        except CitySimError as exc:
            raise _to_http(exc) from exc
        return SimulationStatus.model_validate(instance.status())

    @router.get("/simulations/{simulation_id}/data", response_model=SnapshotResponse)
    async def simulation_data(simulation_id: str) -> Any:
        try:
            snapshot = registry.get_snapshot(simulation_id)
        except NotReadyError as exc:
            return _not_ready(exc)
        except CitySimError as exc:
            raise _to_http(exc) from exc
        return SnapshotResponse(simulation_id=simulation_id, served_at=utc_now(), data=snapshot)

    @router.get("/simulations/{simulation_id}/advance", response_model=SnapshotResponse)
    async def advance_simulation(simulation_id: str) -> Any:
        """Return the ready hour and start computing the next one."""
        try:
            snapshot = registry.advance(simulation_id)
            scheduled = registry.get(simulation_id).is_generating
        except NotReadyError as exc:
            return _not_ready(exc)
        except CitySimError as exc:
            raise _to_http(exc) from exc
        return SnapshotResponse(
            simulation_id=simulation_id,
            served_at=utc_now(),
            next_tick_scheduled=scheduled,
            data=snapshot,
        )

    @router.post("/simulations/{simulation_id}/stop", response_model=SimulationStopped)
    async def stop_simulation(simulation_id: str) -> SimulationStopped:
        try:
            hours = await registry.stop(simulation_id)
        except CitySimError as exc:
            raise _to_http(exc) from exc
        return SimulationStopped(simulation_id=simulation_id, total_hours_simulated=hours)

    @router.post(
        "/simulations/{simulation_id}/time-compression",
        response_model=TimeCompressionUpdated,
    )
    async def update_time_compression(
        simulation_id: str,
        seconds_per_hour: float = Query(..., ge=min_seconds_per_hour, le=max_seconds_per_hour),
    ) -> TimeCompressionUpdated:
        try:
            previous = registry.set_time_compression(simulation_id, seconds_per_hour)
        except CitySimError as exc:
            raise _to_http(exc) from exc
        return TimeCompressionUpdated(
            simulation_id=simulation_id,
            old_seconds_per_hour=previous,
            new_seconds_per_hour=seconds_per_hour,
        )

    return router
