"""Room membership and history endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Query, status

from chatterbox.core.errors import NotFoundError, ValidationFailure
from chatterbox.schemas.room import (
    RoomCreate,
    RoomLeaveResponse,
    RoomMemberResponse,
    RoomMembersResponse,
    RoomResponse,
)
from chatterbox.services.crypto import encode_b64
from chatterbox.services.messages import serialize_message

from ..dependencies import CurrentUserDep, HubDep, RepositoryDep

router = APIRouter(prefix="/rooms", tags=["rooms"])


@router.post("/", status_code=status.HTTP_201_CREATED, response_model=RoomResponse)
async def create_room(
    payload: RoomCreate,
    current_user: CurrentUserDep,
    repository: RepositoryDep,
) -> RoomResponse:
    """Create a room with the caller as its first member."""
    name = payload.name.strip()
    if not name:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Room name is required",
        )
    try:
        room = await repository.create_room(name, current_user.id)
    except ValidationFailure as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message) from exc
    return RoomResponse(
        id=room.id,
        name=room.name,
        created_at=room.created_at,
        member_count=len(room.members),
    )


@router.post("/{room_id}/join")
async def join_room(
    room_id: str,
    current_user: CurrentUserDep,
    repository: RepositoryDep,
) -> dict[str, Any]:
    """Add the caller to a room's membership."""
    try:
        added = await repository.add_member(room_id, current_user.id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message) from exc
    return {"roomId": room_id, "joined": added}


@router.post("/{room_id}/leave", response_model=RoomLeaveResponse)
async def leave_room(
    room_id: str,
    current_user: CurrentUserDep,
    repository: RepositoryDep,
) -> RoomLeaveResponse:
    """Remove the caller from a room; the room is deleted once empty."""
    try:
        deleted = await repository.remove_member(room_id, current_user.id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message) from exc
    return RoomLeaveResponse(room_id=room_id, deleted=deleted)


@router.get("/{room_id}/members", response_model=RoomMembersResponse)
async def get_room_members(
    room_id: str,
    _: CurrentUserDep,
    repository: RepositoryDep,
) -> RoomMembersResponse:
    """Return room members that have a public key on file."""
    members = await repository.get_keyed_members(room_id)
    if members is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room not found")
    return RoomMembersResponse(
        room_id=room_id,
        members=[
            RoomMemberResponse(
                user_id=member.user_id,
                username=member.username,
                public_key=encode_b64(member.public_key),
            )
            for member in members
        ],
    )


@router.get("/{room_id}/messages")
async def get_room_messages(
    room_id: str,
    _: CurrentUserDep,
    repository: RepositoryDep,
    hub: HubDep,
    limit: int = Query(50, ge=1, le=100),
    before: int | None = Query(None),
) -> list[dict[str, Any]]:
    """Return room history, oldest first. Encrypted content stays encrypted."""
    if not await repository.room_exists(room_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room not found")
    messages = await repository.list_messages(room_id, limit=limit, before=before)
    return [serialize_message(message, hub.pipeline.assistant_name) for message in messages]
