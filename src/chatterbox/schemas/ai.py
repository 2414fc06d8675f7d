"""Assistant chat schemas."""

from datetime import datetime

from pydantic import Field

from .common import CamelModel


class AIChatRequest(CamelModel):
    message: str = Field(..., min_length=1)
    room_id: str = Field(default="general")


class AIChatResponse(CamelModel):
    message: str
    sender: str
    timestamp: datetime
    room_id: str
