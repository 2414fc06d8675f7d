"""Data access helpers for rooms, members and messages."""
from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from chatterbox.core.errors import NotFoundError, PersistenceFailure, ValidationFailure
from chatterbox.models import Message, MessageRead, Room, RoomMember, User

__all__ = ["ChatRepository", "KeyedMember", "NewMessage"]


@dataclass(frozen=True)
class KeyedMember:
    """Room member that has a public key on file."""

    user_id: str
    username: str
    public_key: bytes


@dataclass(frozen=True)
class NewMessage:
    """Fields of a message about to be persisted."""

    room_id: str
    sender_id: str | None
    content: str | None = None
    ciphertext: bytes | None = None
    nonce: bytes | None = None
    is_encrypted: bool = False


class ChatRepository:
    """Async storage access for the realtime services.

    Each call opens its own short-lived session so concurrent handlers never
    share transaction state.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Initialize the repository with an async session factory."""
        self.session_factory = session_factory

    async def get_user(self, user_id: str) -> User | None:
        """Return a user by identifier."""
        async with self.session_factory() as session:
            return await session.get(User, user_id)

    async def get_or_create_user(self, username: str) -> User:
        """Return the user with ``username``, creating it when missing."""
        async with self.session_factory() as session:
            result = await session.execute(select(User).where(User.username == username))
            user = result.scalar_one_or_none()
            if user is not None:
                return user
            user = User(username=username)
            session.add(user)
            await session.commit()
            return user

    async def room_exists(self, room_id: str) -> bool:
        """Return True when the room is known."""
        async with self.session_factory() as session:
            result = await session.execute(select(Room.id).where(Room.id == room_id))
            return result.scalar_one_or_none() is not None

    async def is_member(self, room_id: str, user_id: str) -> bool:
        """Return True when the user belongs to the room."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(RoomMember.id).where(
                    RoomMember.room_id == room_id, RoomMember.user_id == user_id
                )
            )
            return result.scalar_one_or_none() is not None

    async def get_keyed_members(self, room_id: str) -> list[KeyedMember] | None:
        """Return members with a public key on file, ordered by join time.

        Returns None when the room does not exist.
        """
        async with self.session_factory() as session:
            room = await session.get(Room, room_id)
            if room is None:
                return None
            result = await session.execute(
                select(User)
                .join(RoomMember, RoomMember.user_id == User.id)
                .where(RoomMember.room_id == room_id, User.public_key.is_not(None))
                .order_by(RoomMember.joined_at, RoomMember.id)
            )
            return [
                KeyedMember(user_id=user.id, username=user.username, public_key=user.public_key)
                for user in result.scalars()
                if user.public_key
            ]

    async def create_message(self, new_message: NewMessage) -> Message:
        """Persist a message and return it with its sender loaded.

        Raises:
            PersistenceFailure: If the write fails.
        """
        try:
            async with self.session_factory() as session:
                message = Message(
                    room_id=new_message.room_id,
                    sender_id=new_message.sender_id,
                    content=new_message.content,
                    ciphertext=new_message.ciphertext,
                    nonce=new_message.nonce,
                    is_encrypted=new_message.is_encrypted,
                )
                session.add(message)
                await session.commit()
                result = await session.execute(
                    select(Message)
                    .options(selectinload(Message.sender), selectinload(Message.reads))
                    .where(Message.id == message.id)
                    .execution_options(populate_existing=True)
                )
                return result.scalar_one()
        except SQLAlchemyError as err:
            raise PersistenceFailure("Failed to send message") from err

    async def add_reader(
        self, message_id: int, reader_id: str, room_id: str | None = None
    ) -> bool:
        """Add a reader to a message's read set.

        Returns:
            True if the reader was newly added, False if already present.

        Raises:
            NotFoundError: If the message does not exist or is not in ``room_id``.
            PersistenceFailure: If the write fails.
        """
        try:
            async with self.session_factory() as session:
                message = await session.get(Message, message_id)
                if message is None or (room_id is not None and message.room_id != room_id):
                    raise NotFoundError("Message not found")
                existing = await session.execute(
                    select(MessageRead.id).where(
                        MessageRead.message_id == message_id,
                        MessageRead.reader_id == reader_id,
                    )
                )
                if existing.scalar_one_or_none() is not None:
                    return False
                session.add(MessageRead(message_id=message_id, reader_id=reader_id))
                try:
                    await session.commit()
                except IntegrityError:
                    # a concurrent acknowledgement from the same reader won
                    await session.rollback()
                    return False
                return True
        except SQLAlchemyError as err:
            raise PersistenceFailure("Failed to record read receipt") from err

    async def get_read_by(self, message_id: int) -> list[str]:
        """Return the reader identifiers for a message."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(MessageRead.reader_id)
                .where(MessageRead.message_id == message_id)
                .order_by(MessageRead.read_at, MessageRead.id)
            )
            return list(result.scalars())

    async def list_messages(
        self, room_id: str, *, limit: int = 50, before: int | None = None
    ) -> list[Message]:
        """Return the most recent messages of a room, oldest first."""
        async with self.session_factory() as session:
            stmt = (
                select(Message)
                .options(selectinload(Message.sender), selectinload(Message.reads))
                .where(Message.room_id == room_id)
            )
            if before is not None:
                stmt = stmt.where(Message.id < before)
            stmt = stmt.order_by(Message.id.desc()).limit(limit)
            result = await session.execute(stmt)
            return list(reversed(result.scalars().all()))

    async def create_room(self, name: str, creator_id: str) -> Room:
        """Create a room whose first member is its creator.

        Raises:
            ValidationFailure: If the name is already taken.
        """
        async with self.session_factory() as session:
            room = Room(name=name)
            room.members.append(RoomMember(user_id=creator_id))
            session.add(room)
            try:
                await session.commit()
            except IntegrityError as err:
                raise ValidationFailure("Room name already exists") from err
            return room

    async def add_member(self, room_id: str, user_id: str) -> bool:
        """Add a member to a room. Returns False if already a member.

        Raises:
            NotFoundError: If the room does not exist.
        """
        async with self.session_factory() as session:
            if await session.get(Room, room_id) is None:
                raise NotFoundError("Room not found")
            existing = await session.execute(
                select(RoomMember.id).where(
                    RoomMember.room_id == room_id, RoomMember.user_id == user_id
                )
            )
            if existing.scalar_one_or_none() is not None:
                return False
            session.add(RoomMember(room_id=room_id, user_id=user_id))
            await session.commit()
            return True

    async def remove_member(self, room_id: str, user_id: str) -> bool:
        """Remove a member, deleting the room once nobody is left.

        Returns:
            True if the room was deleted as a result.

        Raises:
            NotFoundError: If the room does not exist or the user is not a member.
        """
        async with self.session_factory() as session:
            room = await session.get(Room, room_id, options=[selectinload(Room.members)])
            if room is None:
                raise NotFoundError("Room not found")
            membership = next((m for m in room.members if m.user_id == user_id), None)
            if membership is None:
                raise NotFoundError("Not a member of this room")
            room.members.remove(membership)
            deleted = not room.members
            if deleted:
                room_messages = select(Message.id).where(Message.room_id == room_id)
                await session.execute(
                    delete(MessageRead).where(MessageRead.message_id.in_(room_messages))
                )
                await session.execute(delete(Message).where(Message.room_id == room_id))
                await session.delete(room)
            await session.commit()
            return deleted

    async def set_public_key(self, user_id: str, public_key: bytes) -> User:
        """Store a user's long-term public key.

        Raises:
            NotFoundError: If the user does not exist.
        """
        async with self.session_factory() as session:
            user = await session.get(User, user_id)
            if user is None:
                raise NotFoundError("User not found")
            user.public_key = public_key
            await session.commit()
            return user
