"""Maps the configured sink strategy to a per-instance sink constructor."""

from __future__ import annotations

import logging
from typing import Callable

from citysim.config import Settings
from citysim.domain.enums import SinkStrategy
from citysim.services.connection_manager import ConnectionManager
from citysim.sinks.base import CompositeSink, NullSink, TelemetrySink
from citysim.sinks.broadcast import BroadcastSink
from citysim.sinks.stream import StreamConfig, StreamSink

logger = logging.getLogger(__name__)

SinkFactory = Callable[[str], TelemetrySink]


def build_sink_factory(settings: Settings, manager: ConnectionManager) -> SinkFactory:
    """Return a callable producing a fresh sink for each simulation id.

    Raises:
        ValueError: If ``sink_strategy`` is not a known strategy.
    """
    strategy = SinkStrategy(settings.sink_strategy.lower())
    wants_push = strategy in (SinkStrategy.PUSH, SinkStrategy.BOTH)
    wants_broadcast = strategy in (SinkStrategy.BROADCAST, SinkStrategy.BOTH)

    stream_config = StreamConfig.from_settings(settings) if wants_push else None
    logger.info(
        "Sink strategy %s (push=%s, broadcast=%s)",
        strategy.value,
        stream_config is not None,
        wants_broadcast,
    )

    def factory(simulation_id: str) -> TelemetrySink:
        sinks: list[TelemetrySink] = []
        if stream_config is not None:
            sinks.append(StreamSink(stream_config, simulation_id))
        if wants_broadcast:
            sinks.append(BroadcastSink(manager))
        if not sinks:
            return NullSink()
        if len(sinks) == 1:
            return sinks[0]
        return CompositeSink(sinks)

    return factory
