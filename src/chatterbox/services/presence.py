"""Typing indicator relay. Nothing here is persisted or acknowledged."""

from __future__ import annotations

from chatterbox.realtime.connection import Connection
from chatterbox.realtime.gateway import ConnectionGateway
from chatterbox.schemas.events import TypingPayload

TYPING_EVENT = "user-typing"


class TypingBroadcaster:
    """Relays typing state to the other subscribers of a room."""

    def __init__(self, gateway: ConnectionGateway) -> None:
        self.gateway = gateway

    async def notify_typing(self, connection: Connection, payload: TypingPayload) -> int:
        """Relay a typing signal, excluding the originating connection.

        Clients apply signals last-write-wins per (room, user); a late "stopped"
        may clear a newer "started".
        """
        user = await self.gateway.require_user(connection)
        return self.gateway.broadcast(
            payload.room_id,
            TYPING_EVENT,
            {
                "roomId": payload.room_id,
                "user": user.username,
                "userId": user.id,
                "isTyping": payload.is_typing,
            },
            exclude=connection,
        )
