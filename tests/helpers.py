"""Test doubles shared across the suite."""
from __future__ import annotations

import asyncio
from typing import Any

from chatterbox.core.security import create_access_token
from chatterbox.models import User


class StubAssistant:
    """Assistant double that records prompts and returns a canned reply."""

    def __init__(self, reply: str = "Hello from the assistant", error: Exception | None = None) -> None:
        self.reply_text = reply
        self.error = error
        self.calls: list[tuple[str, str]] = []

    async def reply(self, message: str, room_id: str) -> str:
        self.calls.append((message, room_id))
        if self.error is not None:
            raise self.error
        return self.reply_text


class Recorder:
    """Send callable for a Connection that keeps every frame it is handed."""

    def __init__(self) -> None:
        self.frames: list[dict[str, Any]] = []

    async def __call__(self, frame: dict[str, Any]) -> None:
        self.frames.append(frame)

    def of(self, event: str) -> list[Any]:
        return [frame["data"] for frame in self.frames if frame["event"] == event]

    async def wait_for(self, event: str, count: int = 1, timeout: float = 2.0) -> list[Any]:
        async def _poll() -> list[Any]:
            while len(self.of(event)) < count:
                await asyncio.sleep(0.01)
            return self.of(event)

        return await asyncio.wait_for(_poll(), timeout)


def token_for(user: User) -> str:
    return create_access_token(user.id)


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {token_for(user)}"}
