"""Models describing room messages and their read receipts."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, LargeBinary, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from chatterbox.db.session import Base
from chatterbox.db.time import utcnow
from chatterbox.models.user import User


class Message(Base):
    """Message posted to a room.

    When ``is_encrypted`` is set, ``ciphertext`` and ``nonce`` are authoritative
    and ``content`` is empty; the server never holds the room key. A null
    ``sender_id`` marks an assistant reply.
    """

    __tablename__ = "message"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    room_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("room.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sender_id: Mapped[str | None] = mapped_column(
        String(32), ForeignKey("user_account.id", ondelete="SET NULL"), nullable=True
    )

    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    ciphertext: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)
    nonce: Mapped[bytes | None] = mapped_column(LargeBinary(24), nullable=True)
    is_encrypted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    sender: Mapped[User | None] = relationship("User")
    reads: Mapped[list[MessageRead]] = relationship(
        "MessageRead",
        back_populates="message",
        cascade="all, delete-orphan",
        order_by="MessageRead.read_at",
    )

    @property
    def read_by(self) -> list[str]:
        """Return the reader identifiers in acknowledgement order."""
        return [read.reader_id for read in self.reads]


class MessageRead(Base):
    """A reader's acknowledgement of a message. One row per (message, reader)."""

    __tablename__ = "message_read"
    __table_args__ = (UniqueConstraint("message_id", "reader_id", name="uq_message_reader"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    message_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("message.id", ondelete="CASCADE"), nullable=False, index=True
    )
    reader_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("user_account.id", ondelete="CASCADE"), nullable=False
    )
    read_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    message: Mapped[Message] = relationship("Message", back_populates="reads")
