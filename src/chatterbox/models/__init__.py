"""SQLAlchemy models for the Chatterbox application."""

from .message import Message, MessageRead
from .room import Room, RoomMember
from .user import User

__all__ = [
    "Message", "MessageRead",
    "Room", "RoomMember",
    "User",
]
