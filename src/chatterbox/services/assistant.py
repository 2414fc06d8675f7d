"""Client for the assistant collaborator.

The assistant receives a plaintext message and a room id and returns a
plaintext reply. Any OpenAI-compatible chat completions endpoint works.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from chatterbox.core.errors import CollaboratorFailure
from chatterbox.core.settings import settings

logger = logging.getLogger(__name__)

HTTP_OK = 200


class Assistant(Protocol):
    """Anything able to answer a room message."""

    async def reply(self, message: str, room_id: str) -> str:
        ...


@dataclass(frozen=True)
class AssistantConfig:
    """Immutable configuration for assistant calls."""

    enabled: bool
    base_url: str
    api_key: str | None
    model: str
    max_tokens: int
    temperature: float
    timeout_seconds: float
    system_prompt: str

    @classmethod
    def from_settings(cls) -> AssistantConfig:
        return cls(
            enabled=settings.ai_enabled,
            base_url=settings.ai_base_url.rstrip("/"),
            api_key=settings.ai_api_key,
            model=settings.ai_model,
            max_tokens=settings.ai_max_tokens,
            temperature=settings.ai_temperature,
            timeout_seconds=settings.ai_timeout_seconds,
            system_prompt=settings.ai_system_prompt,
        )


class ChatCompletionsAssistant:
    """Assistant backed by a chat completions HTTP API."""

    def __init__(self, config: AssistantConfig | None = None) -> None:
        self.config = config or AssistantConfig.from_settings()
        self._client: httpx.AsyncClient | None = None
        self._lock = asyncio.Lock()

    @property
    def enabled(self) -> bool:
        return self.config.enabled and bool(self.config.api_key)

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            async with self._lock:
                if self._client is None:
                    self._client = httpx.AsyncClient(
                        base_url=self.config.base_url,
                        timeout=httpx.Timeout(self.config.timeout_seconds),
                        headers={"Authorization": f"Bearer {self.config.api_key}"},
                    )
        return self._client

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _build_request(self, message: str) -> dict[str, Any]:
        return {
            "model": self.config.model,
            "messages": [
                {"role": "system", "content": self.config.system_prompt},
                {"role": "user", "content": message},
            ],
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
        }

    async def reply(self, message: str, room_id: str) -> str:
        """Return the assistant's answer to ``message``.

        Raises:
            CollaboratorFailure: If the assistant is disabled, unreachable or
                returns an unusable response.
        """
        if not self.enabled:
            raise CollaboratorFailure("Assistant is not configured")

        client = await self._ensure_client()
        try:
            response = await client.post("/chat/completions", json=self._build_request(message))
        except httpx.HTTPError as exc:
            raise CollaboratorFailure("Failed to get AI response") from exc

        if response.status_code != HTTP_OK:
            logger.warning(
                "Assistant returned HTTP %s for room %s", response.status_code, room_id
            )
            raise CollaboratorFailure("Failed to get AI response")

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise CollaboratorFailure("Malformed AI response") from exc
        if not isinstance(content, str) or not content.strip():
            raise CollaboratorFailure("Empty AI response")
        return content.strip()


class _AssistantSingleton:
    """Singleton wrapper for ChatCompletionsAssistant."""

    _instance: ChatCompletionsAssistant | None = None

    @classmethod
    def get_instance(cls) -> ChatCompletionsAssistant:
        """Get or create the singleton assistant instance."""
        if cls._instance is None:
            cls._instance = ChatCompletionsAssistant()
        return cls._instance


def get_assistant() -> ChatCompletionsAssistant:
    """Return a singleton assistant client instance."""
    return _AssistantSingleton.get_instance()
