"""Room key distribution.

Each distribution event mints a fresh symmetric room key, seals it for every
member that has a public key on file and publishes the bundle to the room's
subscribers. The server never stores the key. There is no epoch counter:
concurrent distributions for one room produce unrelated keys and clients keep
whichever bundle arrived last.
"""

from __future__ import annotations

import logging
from typing import Any

from chatterbox.core.errors import FeatureDisabled
from chatterbox.realtime.gateway import ConnectionGateway
from chatterbox.repositories.chat_repo import ChatRepository
from chatterbox.services.crypto import CryptoService, encode_b64

logger = logging.getLogger(__name__)

ROOM_KEY_EVENT = "room-key-distribution"


class KeyDistributionService:
    """Service generating and publishing wrapped room keys."""

    def __init__(
        self,
        repository: ChatRepository,
        gateway: ConnectionGateway,
        *,
        enabled: bool = True,
        crypto: CryptoService | None = None,
    ) -> None:
        self.repository = repository
        self.gateway = gateway
        self.enabled = enabled
        self.crypto = crypto or CryptoService()

    async def distribute_room_key(self, room_id: str) -> dict[str, Any] | None:
        """Generate, seal and broadcast a room key.

        Args:
            room_id: Room whose subscribers receive the bundle

        Returns:
            The published bundle, or None when the room does not exist.

        Raises:
            FeatureDisabled: If end-to-end encryption is switched off.
        """
        if not self.enabled:
            raise FeatureDisabled("End-to-end encryption is disabled")

        members = await self.repository.get_keyed_members(room_id)
        if members is None:
            logger.debug("Skipping key distribution for unknown room %s", room_id)
            return None

        room_key = self.crypto.generate_room_key()
        encrypted_keys = {
            member.user_id: encode_b64(self.crypto.seal_room_key(room_key, member.public_key))
            for member in members
        }
        bundle = {"roomId": room_id, "encryptedKeys": encrypted_keys}
        delivered = self.gateway.broadcast(room_id, ROOM_KEY_EVENT, bundle)
        logger.info(
            "Distributed room key for %s to %d member(s) over %d connection(s)",
            room_id,
            len(encrypted_keys),
            delivered,
        )
        return bundle
