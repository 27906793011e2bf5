"""WebSocket endpoint streaming broadcast snapshots to subscribers.

Path: /ws/simulations

Clients receive every snapshot published through a BroadcastSink.  Text
frames from the client are treated as keep-alives: ``ping`` is answered
with ``pong``, anything else is ignored.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from citysim.services.connection_manager import ConnectionManager

logger = logging.getLogger(__name__)


def create_ws_simulations_router(manager: ConnectionManager) -> APIRouter:
    router = APIRouter()

    @router.websocket("/ws/simulations")
    async def simulations_stream(websocket: WebSocket) -> None:
        await manager.connect(websocket)
        try:
            while True:
                message = await websocket.receive_text()
                if message.strip().lower() == "ping":
                    await websocket.send_text("pong")
        except WebSocketDisconnect:
            pass
        finally:
            await manager.disconnect(websocket)

    return router
