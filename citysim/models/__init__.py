from citysim.models.responses import (
    SimulationList,
    SimulationStarted,
    SimulationStatus,
    SimulationStopped,
    SnapshotResponse,
    TimeCompressionUpdated,
)

__all__ = [
    "SimulationList",
    "SimulationStarted",
    "SimulationStatus",
    "SimulationStopped",
    "SnapshotResponse",
    "TimeCompressionUpdated",
]
