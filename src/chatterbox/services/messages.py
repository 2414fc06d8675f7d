"""Message pipeline: validate, persist and fan out room messages.

Delivery order within a room follows the order in which persistence
completes. Under concurrent senders this need not match submission order.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any

from chatterbox.core.errors import CollaboratorFailure, NotFoundError, ValidationFailure
from chatterbox.models import Message
from chatterbox.realtime.connection import Connection
from chatterbox.realtime.gateway import ConnectionGateway
from chatterbox.repositories.chat_repo import ChatRepository, NewMessage
from chatterbox.schemas.events import SendMessagePayload
from chatterbox.services.assistant import Assistant
from chatterbox.services.crypto import NONCE_BYTES, decode_b64, encode_b64

logger = logging.getLogger(__name__)

RECEIVE_EVENT = "receive-message"
MAX_CONTENT_LENGTH = 10_000


@dataclass(frozen=True)
class RegularMessage:
    """Content persisted as the sender's own message."""

    content: str | None = None
    ciphertext: bytes | None = None
    nonce: bytes | None = None
    is_encrypted: bool = False


@dataclass(frozen=True)
class AssistantQuery:
    """Plaintext addressed to the assistant, with the marker removed."""

    prompt: str


MessageIntent = RegularMessage | AssistantQuery


def _marker_pattern(marker: str) -> re.Pattern[str]:
    return re.compile(rf"(?<!\S){re.escape(marker)}(?!\w)", re.IGNORECASE)


def classify_intent(payload: SendMessagePayload, marker: str = "@ai") -> MessageIntent:
    """Decide once whether a submission is a regular message or an assistant query.

    Encrypted submissions are always regular messages since the server cannot
    read them. Plaintext containing the standalone marker with a non-empty
    remainder becomes an :class:`AssistantQuery`.

    Raises:
        ValidationFailure: If the payload carries neither usable plaintext nor
            a well-formed ciphertext/nonce pair.
    """
    if payload.is_encrypted:
        if not payload.ciphertext or not payload.nonce:
            raise ValidationFailure("Encrypted messages require ciphertext and nonce")
        try:
            ciphertext = decode_b64(payload.ciphertext)
            nonce = decode_b64(payload.nonce)
        except ValueError as err:
            raise ValidationFailure("Ciphertext and nonce must be base64") from err
        if len(nonce) != NONCE_BYTES:
            raise ValidationFailure(f"Nonce must be {NONCE_BYTES} bytes")
        if not ciphertext:
            raise ValidationFailure("Ciphertext is empty")
        return RegularMessage(ciphertext=ciphertext, nonce=nonce, is_encrypted=True)

    content = (payload.content or "").strip()
    if not content:
        raise ValidationFailure("Message content is required")
    if len(content) > MAX_CONTENT_LENGTH:
        raise ValidationFailure("Message content is too long")

    pattern = _marker_pattern(marker)
    if pattern.search(content):
        prompt = " ".join(pattern.sub(" ", content).split())
        if prompt:
            return AssistantQuery(prompt=prompt)
    return RegularMessage(content=content)


def serialize_message(message: Message, assistant_name: str = "AI Assistant") -> dict[str, Any]:
    """Serialize a Message instance into wire payload form."""
    if message.sender_id is None:
        sender: dict[str, Any] = {"id": None, "username": assistant_name, "isAssistant": True}
    else:
        username = message.sender.username if message.sender is not None else None
        sender = {"id": message.sender_id, "username": username, "isAssistant": False}
    return {
        "id": message.id,
        "roomId": message.room_id,
        "sender": sender,
        "content": None if message.is_encrypted else message.content,
        "ciphertext": encode_b64(message.ciphertext) if message.ciphertext else None,
        "nonce": encode_b64(message.nonce) if message.nonce else None,
        "isEncrypted": message.is_encrypted,
        "timestamp": message.created_at.isoformat() if message.created_at else None,
        "readBy": message.read_by,
    }


class MessagePipeline:
    """Turns ``send-message`` submissions into persisted, fanned-out messages."""

    def __init__(
        self,
        repository: ChatRepository,
        gateway: ConnectionGateway,
        assistant: Assistant,
        *,
        mention_marker: str = "@ai",
        assistant_name: str = "AI Assistant",
    ) -> None:
        self.repository = repository
        self.gateway = gateway
        self.assistant = assistant
        self.mention_marker = mention_marker
        self.assistant_name = assistant_name

    async def submit(self, connection: Connection, payload: SendMessagePayload) -> Message | None:
        """Validate, persist and broadcast one submission.

        The sender is re-derived from the connection's credential (or the
        payload token), never taken from payload fields.

        Returns:
            The persisted message, or None when the assistant produced nothing.

        Raises:
            AuthenticationFailure: If the credential is missing or invalid.
            ValidationFailure: If the payload is malformed.
            NotFoundError: If the room does not exist.
            PersistenceFailure: If the message could not be stored.
        """
        sender = await self.gateway.identify(connection, payload.token)
        intent = classify_intent(payload, self.mention_marker)

        if not await self.repository.room_exists(payload.room_id):
            raise NotFoundError("Room not found")

        if isinstance(intent, AssistantQuery):
            return await self._answer(payload.room_id, intent)

        message = await self.repository.create_message(
            NewMessage(
                room_id=payload.room_id,
                sender_id=sender.id,
                content=intent.content,
                ciphertext=intent.ciphertext,
                nonce=intent.nonce,
                is_encrypted=intent.is_encrypted,
            )
        )
        self._fan_out(message)
        return message

    async def _answer(self, room_id: str, query: AssistantQuery) -> Message | None:
        try:
            reply = await self.assistant.reply(query.prompt, room_id)
        except CollaboratorFailure as exc:
            logger.warning("Assistant failed for room %s: %s", room_id, exc.message)
            return None

        message = await self.repository.create_message(
            NewMessage(room_id=room_id, sender_id=None, content=reply)
        )
        self._fan_out(message)
        return message

    def _fan_out(self, message: Message) -> None:
        payload = serialize_message(message, self.assistant_name)
        delivered = self.gateway.broadcast(message.room_id, RECEIVE_EVENT, payload)
        logger.debug(
            "Message %s delivered to %d connection(s) in room %s",
            message.id,
            delivered,
            message.room_id,
        )
