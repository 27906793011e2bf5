"""Manages WebSocket subscribers that receive broadcast snapshots."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Tracks connected WebSocket clients and broadcasts JSON to them."""

    def __init__(self) -> None:
        self._connections: set[WebSocket] = set()
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._connections.add(websocket)
        logger.info("Snapshot subscriber connected (%d total)", len(self._connections))

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._connections.discard(websocket)
        logger.info("Snapshot subscriber disconnected (%d remaining)", len(self._connections))

    @property
    def active_count(self) -> int:
        return len(self._connections)

    async def broadcast_json(self, data: dict[str, Any]) -> int:
        """Send *data* to every client, dropping the ones that fail.

        Returns the number of clients that received it.
        """
        async with self._lock:
            clients = list(self._connections)

        dead: list[WebSocket] = []
        for ws in clients:
            try:
                await ws.send_json(data)
            except Exception as exc:
                logger.warning("Dropping snapshot subscriber: %s", exc)
                dead.append(ws)

        if dead:
            async with self._lock:
                for ws in dead:
                    self._connections.discard(ws)
        return len(clients) - len(dead)
