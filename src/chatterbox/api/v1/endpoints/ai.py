"""Direct assistant endpoint for clients that call the collaborator themselves."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, status

from chatterbox.core.errors import CollaboratorFailure
from chatterbox.core.settings import settings
from chatterbox.db.time import utcnow
from chatterbox.schemas.ai import AIChatRequest, AIChatResponse

from ..dependencies import CurrentUserDep, HubDep

router = APIRouter(prefix="/ai", tags=["ai"])


@router.post("/chat", response_model=AIChatResponse)
async def chat(payload: AIChatRequest, _: CurrentUserDep, hub: HubDep) -> AIChatResponse:
    """Return the assistant's reply to a plaintext message without persisting it."""
    try:
        reply = await hub.pipeline.assistant.reply(payload.message, payload.room_id)
    except CollaboratorFailure as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.message) from exc
    return AIChatResponse(
        message=reply,
        sender=settings.ai_sender_name,
        timestamp=utcnow(),
        room_id=payload.room_id,
    )
