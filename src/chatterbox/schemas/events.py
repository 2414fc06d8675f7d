"""Pydantic schemas for realtime event payloads (client to server)."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class EventPayload(BaseModel):
    """Base for inbound payloads; accepts camelCase keys and ignores extras."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class EventFrame(BaseModel):
    """Envelope of every frame on the socket."""

    event: str = Field(..., min_length=1)
    data: Any = None


class AuthenticatePayload(EventPayload):
    token: str = Field(..., min_length=1)


class RoomPayload(EventPayload):
    """Payload naming a room; clients may send the bare room id."""

    room_id: str = Field(..., alias="roomId", min_length=1)

    @model_validator(mode="before")
    @classmethod
    def _accept_bare_room_id(cls, value: object) -> object:
        if isinstance(value, str):
            return {"roomId": value}
        return value


class SendMessagePayload(EventPayload):
    """Either plaintext ``content`` or ``ciphertext`` + ``nonce`` with ``isEncrypted``."""

    room_id: str = Field(..., alias="roomId", min_length=1)
    content: str | None = None
    ciphertext: str | None = None
    nonce: str | None = None
    is_encrypted: bool = Field(default=False, alias="isEncrypted")
    token: str | None = None


class TypingPayload(EventPayload):
    room_id: str = Field(..., alias="roomId", min_length=1)
    user: str | None = None
    is_typing: bool = Field(..., alias="isTyping")


class MarkReadPayload(EventPayload):
    message_id: int = Field(..., alias="messageId")
    room_id: str = Field(..., alias="roomId", min_length=1)
    user_id: str | None = Field(default=None, alias="userId")
