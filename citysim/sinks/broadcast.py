"""BroadcastSink — sends snapshots to WebSocket subscribers."""

from __future__ import annotations

from citysim.domain.snapshot import TickSnapshot
from citysim.services.connection_manager import ConnectionManager
from citysim.sinks.base import TelemetrySink


class BroadcastSink(TelemetrySink):
    def __init__(self, manager: ConnectionManager) -> None:
        self._manager = manager

    async def push(self, snapshot: TickSnapshot) -> None:
        if self._manager.active_count == 0:
            return
        await self._manager.broadcast_json(
            {"type": "simulation_data", **snapshot.model_dump(mode="json")}
        )

    @property
    def name(self) -> str:
        return "broadcast"
