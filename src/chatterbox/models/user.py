"""SQLAlchemy model for chat identities."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, LargeBinary, String
from sqlalchemy.orm import Mapped, mapped_column

from chatterbox.db.session import Base
from chatterbox.db.time import utcnow


def new_identifier() -> str:
    """Return a fresh 32-character hex identifier."""
    return uuid.uuid4().hex


class User(Base):
    """Chat identity with an optional long-term X25519 public key.

    Rows are owned by the authentication collaborator; the chat core only
    reads them, apart from publishing the public key.
    """

    __tablename__ = "user_account"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_identifier)
    username: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    public_key: Mapped[bytes | None] = mapped_column(LargeBinary(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
