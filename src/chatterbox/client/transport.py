"""Frame transports for the chat client."""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed

logger = logging.getLogger(__name__)

Frame = dict[str, Any]


class Transport(Protocol):
    """Bidirectional channel carrying ``{"event", "data"}`` frames."""

    async def open(self) -> None:
        ...

    async def send(self, frame: Frame) -> None:
        ...

    async def receive(self) -> Frame | None:
        """Return the next frame, or None once the channel is closed."""
        ...

    async def close(self) -> None:
        ...


class WebSocketTransport:
    """Transport over the server's ``/ws`` endpoint.

    The credential travels as the ``token`` query parameter so the server
    can authenticate during the handshake.
    """

    def __init__(self, url: str, token: str | None = None, *, open_timeout: float = 10.0) -> None:
        self.url = url
        self.token = token
        self.open_timeout = open_timeout
        self._ws: Any = None

    @property
    def uri(self) -> str:
        if not self.token:
            return self.url
        separator = "&" if "?" in self.url else "?"
        return f"{self.url}{separator}{urlencode({'token': self.token})}"

    async def open(self) -> None:
        self._ws = await websockets.connect(self.uri, open_timeout=self.open_timeout)
        logger.info("Connected to %s", self.url)

    async def send(self, frame: Frame) -> None:
        if self._ws is None:
            raise RuntimeError("Transport is not open")
        await self._ws.send(json.dumps(frame))

    async def receive(self) -> Frame | None:
        if self._ws is None:
            return None
        while True:
            try:
                raw = await self._ws.recv()
            except ConnectionClosed:
                return None
            try:
                frame = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning("Dropping non-JSON frame from server")
                continue
            if isinstance(frame, dict):
                return frame
            logger.warning("Dropping frame that is not an object")

    async def close(self) -> None:
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
