"""Lifecycle-scoped chat client session."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable
from typing import Any

import httpx

from chatterbox.client.agent import CryptoAgent
from chatterbox.client.transport import Frame, Transport, WebSocketTransport
from chatterbox.core.errors import RoomKeyUnavailable
from chatterbox.services.crypto import encode_b64

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"
KEY_DISTRIBUTION_EVENT = "room-key-distribution"
RECEIVE_EVENT = "receive-message"


class ChatSession:
    """One authenticated connection to a chat server.

    Use as an async context manager. On connect the session reads the
    server's encryption switch, publishes the user's public key when
    encryption is on, and starts a reader that consumes room key bundles
    and decrypts inbound messages before handing events to ``events()``.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        agent: CryptoAgent,
        *,
        rooms: Iterable[str] = (),
        transport: Transport | None = None,
        http_client: httpx.AsyncClient | None = None,
        key_wait_timeout: float = 5.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.agent = agent
        self.key_wait_timeout = key_wait_timeout
        self.rooms = list(rooms)
        self.e2ee_enabled = False
        self.transport = transport or WebSocketTransport(self._ws_url(), token)
        self._http = http_client
        self._owns_http = http_client is None
        self._events: asyncio.Queue[tuple[str, Any] | None] = asyncio.Queue()
        self._reader: asyncio.Task[None] | None = None
        self._connected = False

    def _ws_url(self) -> str:
        if self.base_url.startswith("https://"):
            return "wss://" + self.base_url[len("https://"):] + "/ws"
        if self.base_url.startswith("http://"):
            return "ws://" + self.base_url[len("http://"):] + "/ws"
        return self.base_url + "/ws"

    @property
    def user_id(self) -> str:
        return self.agent.user_id

    async def __aenter__(self) -> ChatSession:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def connect(self) -> None:
        if self._connected:
            return
        if self._http is None:
            self._http = httpx.AsyncClient(base_url=self.base_url, timeout=10.0)

        response = await self._http.get(
            f"{API_PREFIX}/crypto/config", headers=self._auth_headers()
        )
        response.raise_for_status()
        self.e2ee_enabled = bool(response.json().get("e2eeEnabled"))

        if self.e2ee_enabled:
            keypair = await self.agent.ensure_keypair()
            published = await self._http.put(
                f"{API_PREFIX}/users/me/public-key",
                json={"publicKey": encode_b64(keypair.public_key)},
                headers=self._auth_headers(),
            )
            published.raise_for_status()

        await self.transport.open()
        self._reader = asyncio.create_task(self._read_loop(), name="chat-session-reader")
        self._connected = True
        for room_id in self.rooms:
            await self.join(room_id)
        logger.info("Session connected (e2ee=%s)", self.e2ee_enabled)

    async def close(self) -> None:
        if not self._connected:
            return
        self._connected = False
        await self.transport.close()
        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None
        self._events.put_nowait(None)
        if self._owns_http and self._http is not None:
            await self._http.aclose()
            self._http = None

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    async def _send(self, event: str, data: Any) -> None:
        await self.transport.send({"event": event, "data": data})

    async def _read_loop(self) -> None:
        while True:
            frame = await self.transport.receive()
            if frame is None:
                logger.info("Server closed the connection")
                self._events.put_nowait(None)
                return
            await self._handle_frame(frame)

    async def _handle_frame(self, frame: Frame) -> None:
        event = frame.get("event")
        data = frame.get("data")
        if event == KEY_DISTRIBUTION_EVENT:
            if isinstance(data, dict):
                await self.agent.handle_key_distribution(data)
            return
        if event == RECEIVE_EVENT and isinstance(data, dict):
            opened, key_missing = self.agent.open_message(data)
            if key_missing:
                await self.request_room_key(str(data.get("roomId")))
            self._events.put_nowait((RECEIVE_EVENT, opened))
            return
        if isinstance(event, str):
            self._events.put_nowait((event, data))

    async def events(self) -> AsyncIterator[tuple[str, Any]]:
        """Yield ``(event, data)`` pairs until the session closes."""
        while True:
            item = await self._events.get()
            if item is None:
                return
            yield item

    async def join(self, room_id: str) -> None:
        await self._send("join-room", {"roomId": room_id})

    async def leave(self, room_id: str) -> None:
        await self._send("leave-room", {"roomId": room_id})

    async def request_room_key(self, room_id: str) -> None:
        await self._send("request-room-key", {"roomId": room_id})

    async def send_message(self, room_id: str, content: str) -> None:
        """Send a message, encrypting it when the server has encryption on.

        Raises:
            RoomKeyUnavailable: If encryption is on and no room key arrives
                within ``key_wait_timeout`` seconds.
        """
        if not self.e2ee_enabled:
            await self._send(
                "send-message", {"roomId": room_id, "content": content, "token": self.token}
            )
            return

        room_key = self.agent.room_key(room_id)
        if room_key is None:
            await self.request_room_key(room_id)
            room_key = await self.agent.wait_for_room_key(room_id, self.key_wait_timeout)
        if room_key is None:
            raise RoomKeyUnavailable(f"No key for room {room_id}")

        payload = self.agent.encrypt(content, room_key)
        await self._send(
            "send-message",
            {
                "roomId": room_id,
                "ciphertext": encode_b64(payload.ciphertext),
                "nonce": encode_b64(payload.nonce),
                "isEncrypted": True,
                "token": self.token,
            },
        )

    async def typing(self, room_id: str, is_typing: bool, *, display_name: str | None = None) -> None:
        await self._send(
            "typing",
            {"roomId": room_id, "user": display_name or self.user_id, "isTyping": is_typing},
        )

    async def mark_read(self, room_id: str, message_id: int) -> None:
        await self._send(
            "mark-read", {"messageId": message_id, "userId": self.user_id, "roomId": room_id}
        )
