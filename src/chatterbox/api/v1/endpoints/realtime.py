"""WebSocket endpoint carrying the realtime event catalog."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from chatterbox.realtime.connection import Connection
from chatterbox.realtime.hub import ChatHub

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


def _handshake_token(websocket: WebSocket) -> str | None:
    token = websocket.query_params.get("token")
    if token:
        return token
    header = websocket.headers.get("authorization")
    if header and header.lower().startswith("bearer "):
        return header[7:].strip()
    return None


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket) -> None:
    """Serve one persistent connection until the client goes away."""
    hub: ChatHub = websocket.app.state.hub
    await websocket.accept()

    async def send(frame: dict[str, Any]) -> None:
        await websocket.send_json(frame)

    connection = Connection(send, token=_handshake_token(websocket))
    await hub.connect(connection)
    try:
        while True:
            try:
                raw = await websocket.receive_json()
            except (ValueError, KeyError, TypeError):
                connection.emit("error", {"message": "Frames must be JSON objects"})
                continue
            hub.dispatch(connection, raw)
    except WebSocketDisconnect:
        logger.debug("Client closed connection %s", connection.id)
    finally:
        await hub.disconnect(connection)
