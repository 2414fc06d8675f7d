"""Room and membership schemas."""

from datetime import datetime

from pydantic import Field

from .common import CamelModel


class RoomCreate(CamelModel):
    """Schema for creating a room."""

    name: str = Field(..., min_length=1, max_length=128)


class RoomMemberResponse(CamelModel):
    """Room member with the public key used for key wrapping."""

    user_id: str
    username: str
    public_key: str | None = None


class RoomResponse(CamelModel):
    """Schema for room information returned by the API."""

    id: str
    name: str
    created_at: datetime
    member_count: int


class RoomMembersResponse(CamelModel):
    """Members of a room that can receive wrapped room keys."""

    room_id: str
    members: list[RoomMemberResponse]


class RoomLeaveResponse(CamelModel):
    room_id: str
    deleted: bool
