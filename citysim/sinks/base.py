"""Abstract base for telemetry sinks.

A sink receives every TickSnapshot a simulation instance publishes.

Architectural rules:
    1. Sinks are best-effort.  push() raises SinkError on failure and the
       caller logs it; a failed push never aborts or delays a tick.
    2. Each simulation instance owns its own sink (and its own credentials).
    3. No sink may mutate the snapshot or the instance that produced it.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from citysim.domain.errors import SinkError
from citysim.domain.snapshot import TickSnapshot

logger = logging.getLogger(__name__)


class TelemetrySink(ABC):
    """Destination for published snapshots."""

    async def open(self) -> None:
        """Prepare connections or credentials.  Failures are logged, not raised."""

    @abstractmethod
    async def push(self, snapshot: TickSnapshot) -> None:
        """Forward *snapshot*.

        Raises:
            SinkError: If the snapshot could not be delivered.
        """
        ...

    async def close(self) -> None:
        """Release any held resources."""

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @property
    def enabled(self) -> bool:
        return True


class NullSink(TelemetrySink):
    """Discards everything.  Used when no sink is configured."""

    async def push(self, snapshot: TickSnapshot) -> None:
        return None

    @property
    def name(self) -> str:
        return "none"

    @property
    def enabled(self) -> bool:
        return False


class CompositeSink(TelemetrySink):
    """Fans each snapshot out to several sinks, isolating their failures."""

    def __init__(self, sinks: list[TelemetrySink]) -> None:
        self._sinks = sinks

    async def open(self) -> None:
        for sink in self._sinks:
            await sink.open()

    async def push(self, snapshot: TickSnapshot) -> None:
        failures: list[str] = []
        for sink in self._sinks:
            try:
                await sink.push(snapshot)
            except SinkError as exc:
                failures.append(f"{sink.name}: {exc}")
        if failures:
            raise SinkError("; ".join(failures))

    async def close(self) -> None:
        for sink in self._sinks:
            await sink.close()

    @property
    def name(self) -> str:
        return "+".join(s.name for s in self._sinks)

    @property
    def sinks(self) -> list[TelemetrySink]:
        return list(self._sinks)
