"""Models describing rooms and their membership."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from chatterbox.db.session import Base
from chatterbox.db.time import utcnow
from chatterbox.models.user import User, new_identifier


class Room(Base):
    """Named chat room. Membership is ordered by join time."""

    __tablename__ = "room"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_identifier)
    name: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    members: Mapped[list[RoomMember]] = relationship(
        "RoomMember",
        back_populates="room",
        cascade="all, delete-orphan",
        order_by="RoomMember.joined_at",
    )


class RoomMember(Base):
    """Association between a room and a user."""

    __tablename__ = "room_member"
    __table_args__ = (UniqueConstraint("room_id", "user_id", name="uq_room_member"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    room_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("room.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("user_account.id", ondelete="CASCADE"), nullable=False, index=True
    )
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    room: Mapped[Room] = relationship("Room", back_populates="members")
    user: Mapped[User] = relationship("User")
