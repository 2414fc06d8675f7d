"""Server-side handle for one persistent client connection."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

Frame = dict[str, Any]
SendFrame = Callable[[Frame], Awaitable[None]]


@dataclass(frozen=True)
class AuthenticatedUser:
    """Identity bound to a connection after credential verification."""

    id: str
    username: str


class Connection:
    """One client connection with a fire-and-forget outbound queue.

    ``emit`` never suspends the caller. A writer task drains the queue in
    order, so frames reach the client in the order they were emitted on this
    connection. Emitting after ``close`` is a no-op.
    """

    def __init__(self, send: SendFrame, token: str | None = None) -> None:
        self.id = uuid.uuid4().hex
        self.token = token
        self.user: AuthenticatedUser | None = None
        # Held while a credential is being verified for this connection.
        self.auth_lock = asyncio.Lock()
        self.closed = False
        self._send = send
        self._outbox: asyncio.Queue[Frame | None] = asyncio.Queue()
        self._writer: asyncio.Task[None] | None = None

    def start(self) -> None:
        """Start draining the outbound queue."""
        if self._writer is None or self._writer.done():
            self._writer = asyncio.create_task(self._drain(), name=f"conn-writer-{self.id}")

    def emit(self, event: str, data: Any) -> None:
        """Queue an event for delivery to this connection."""
        if self.closed:
            return
        self._outbox.put_nowait({"event": event, "data": data})

    async def close(self) -> None:
        """Stop accepting frames and wait for queued frames to flush."""
        if self.closed:
            return
        self.closed = True
        self._outbox.put_nowait(None)
        if self._writer is not None:
            await self._writer

    async def _drain(self) -> None:
        while True:
            frame = await self._outbox.get()
            if frame is None:
                return
            try:
                await self._send(frame)
            except Exception as exc:  # transport gone; drop the rest
                logger.info("Connection %s stopped accepting frames: %s", self.id, exc)
                self.closed = True
                return

    def __repr__(self) -> str:
        user = self.user.id if self.user else None
        return f"Connection(id={self.id!r}, user={user!r})"
