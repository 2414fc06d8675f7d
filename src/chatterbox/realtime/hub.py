"""Composition of the realtime services behind the socket event catalog."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chatterbox.core.errors import ChatError
from chatterbox.core.settings import settings
from chatterbox.realtime.connection import Connection
from chatterbox.realtime.dispatcher import ERROR_EVENT, EventDispatcher, parse_payload
from chatterbox.realtime.gateway import ConnectionGateway
from chatterbox.repositories.chat_repo import ChatRepository
from chatterbox.schemas.events import (
    AuthenticatePayload,
    MarkReadPayload,
    RoomPayload,
    SendMessagePayload,
    TypingPayload,
)
from chatterbox.services.assistant import Assistant
from chatterbox.services.key_distribution import KeyDistributionService
from chatterbox.services.messages import MessagePipeline
from chatterbox.services.presence import TypingBroadcaster
from chatterbox.services.receipts import ReadReceiptTracker

logger = logging.getLogger(__name__)


class ChatHub:
    """Owns the gateway and services and binds them to socket events."""

    def __init__(
        self,
        repository: ChatRepository,
        assistant: Assistant,
        *,
        e2ee_enabled: bool = True,
        mention_marker: str = "@ai",
        assistant_name: str = "AI Assistant",
    ) -> None:
        self.repository = repository
        self.gateway = ConnectionGateway(repository)
        self.keys = KeyDistributionService(repository, self.gateway, enabled=e2ee_enabled)
        self.pipeline = MessagePipeline(
            repository,
            self.gateway,
            assistant,
            mention_marker=mention_marker,
            assistant_name=assistant_name,
        )
        self.presence = TypingBroadcaster(self.gateway)
        self.receipts = ReadReceiptTracker(repository, self.gateway)
        self.dispatcher = EventDispatcher()
        self._register()

    @property
    def e2ee_enabled(self) -> bool:
        return self.keys.enabled

    def _register(self) -> None:
        self.dispatcher.on("authenticate", self.on_authenticate)
        self.dispatcher.on("join-room", self.on_join_room)
        self.dispatcher.on("leave-room", self.on_leave_room)
        self.dispatcher.on("request-room-key", self.on_request_room_key)
        self.dispatcher.on("send-message", self.on_send_message)
        self.dispatcher.on("typing", self.on_typing)
        self.dispatcher.on("mark-read", self.on_mark_read)

    async def connect(self, connection: Connection) -> None:
        """Start a connection and authenticate it if it presented a credential."""
        connection.start()
        logger.info("Connection %s opened", connection.id)
        if connection.token:
            try:
                await self._authenticate(connection, connection.token)
            except ChatError as exc:
                connection.emit(ERROR_EVENT, {"message": exc.message})

    async def disconnect(self, connection: Connection) -> None:
        """Drop every subscription of a connection and flush its queue."""
        self.gateway.disconnect(connection)
        await connection.close()

    def dispatch(self, connection: Connection, raw: Any) -> asyncio.Task[None] | None:
        return self.dispatcher.dispatch(connection, raw)

    async def _authenticate(self, connection: Connection, token: str) -> None:
        identity = await self.gateway.authenticate(connection, token)
        connection.emit("authenticated", {"userId": identity.id, "username": identity.username})

    async def on_authenticate(self, connection: Connection, data: Any) -> None:
        payload = parse_payload(AuthenticatePayload, data)
        await self._authenticate(connection, payload.token)

    async def on_join_room(self, connection: Connection, data: Any) -> None:
        payload = parse_payload(RoomPayload, data)
        await self.gateway.require_member(connection, payload.room_id)
        self.gateway.subscribe(connection, payload.room_id)
        if self.keys.enabled:
            await self.keys.distribute_room_key(payload.room_id)

    async def on_leave_room(self, connection: Connection, data: Any) -> None:
        payload = parse_payload(RoomPayload, data)
        self.gateway.unsubscribe(connection, payload.room_id)

    async def on_request_room_key(self, connection: Connection, data: Any) -> None:
        payload = parse_payload(RoomPayload, data)
        await self.gateway.require_member(connection, payload.room_id)
        await self.keys.distribute_room_key(payload.room_id)

    async def on_send_message(self, connection: Connection, data: Any) -> None:
        payload = parse_payload(SendMessagePayload, data)
        await self.pipeline.submit(connection, payload)

    async def on_typing(self, connection: Connection, data: Any) -> None:
        payload = parse_payload(TypingPayload, data)
        await self.presence.notify_typing(connection, payload)

    async def on_mark_read(self, connection: Connection, data: Any) -> None:
        payload = parse_payload(MarkReadPayload, data)
        await self.receipts.mark_read(connection, payload)


def build_hub(
    session_factory: async_sessionmaker[AsyncSession],
    assistant: Assistant,
) -> ChatHub:
    """Build a hub configured from application settings."""
    return ChatHub(
        ChatRepository(session_factory),
        assistant,
        e2ee_enabled=settings.e2ee_enabled,
        mention_marker=settings.ai_mention_marker,
        assistant_name=settings.ai_sender_name,
    )
