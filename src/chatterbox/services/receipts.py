"""Read receipts for room messages."""

from __future__ import annotations

import logging

from chatterbox.realtime.connection import Connection
from chatterbox.realtime.gateway import ConnectionGateway
from chatterbox.repositories.chat_repo import ChatRepository
from chatterbox.schemas.events import MarkReadPayload

logger = logging.getLogger(__name__)

READ_EVENT = "message-read"


class ReadReceiptTracker:
    """Records who has read a message and tells the rest of the room."""

    def __init__(self, repository: ChatRepository, gateway: ConnectionGateway) -> None:
        self.repository = repository
        self.gateway = gateway

    async def mark_read(self, connection: Connection, payload: MarkReadPayload) -> bool:
        """Add the acknowledging identity to the message's ``readBy`` set.

        Repeat acknowledgements leave the set unchanged and notify nobody.
        The acknowledging connection never receives its own receipt.

        Returns:
            True if the receipt was new.

        Raises:
            AuthenticationFailure: If the connection's credential is invalid.
            NotFoundError: If the message is not in the given room.
        """
        reader = await self.gateway.identify(connection)
        if payload.user_id and payload.user_id != reader.id:
            logger.debug(
                "Ignoring client-supplied reader %s on connection %s",
                payload.user_id,
                connection.id,
            )

        added = await self.repository.add_reader(payload.message_id, reader.id, payload.room_id)
        if added:
            self.gateway.broadcast(
                payload.room_id,
                READ_EVENT,
                {"messageId": payload.message_id, "userId": reader.id},
                exclude=connection,
            )
        return added
