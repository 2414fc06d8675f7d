# src/chatterbox/schemas/__init__.py
"""
Pydantic schemas for API request/response models and realtime payloads.

These schemas define the structure of API data for serialization and validation.
"""

from .ai import AIChatRequest, AIChatResponse
from .events import (
    AuthenticatePayload,
    EventFrame,
    MarkReadPayload,
    RoomPayload,
    SendMessagePayload,
    TypingPayload,
)
from .room import RoomCreate, RoomMembersResponse, RoomResponse
from .user import PublicKeyResponse, PublicKeyUpdate
