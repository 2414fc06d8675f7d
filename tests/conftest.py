# tests/conftest.py
from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import NullPool

from chatterbox.core.errors import CollaboratorFailure
from chatterbox.db.session import Base
from chatterbox.main import create_app
from chatterbox.models import Room, RoomMember, User
from chatterbox.repositories.chat_repo import ChatRepository
from chatterbox.services.crypto import CryptoService, KeyPair
from tests.helpers import StubAssistant


@pytest.fixture()
def database_path(tmp_path: Path) -> Path:
    return tmp_path / "chat.db"


@pytest.fixture()
def sync_engine(database_path: Path) -> Iterator[Engine]:
    engine = create_engine(f"sqlite:///{database_path}")
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture()
def db_session(sync_engine: Engine) -> Iterator[Session]:
    """Synchronous session used to seed the database before a test runs."""
    with Session(sync_engine, expire_on_commit=False) as session:
        yield session


@pytest.fixture()
def async_engine(sync_engine: Engine, database_path: Path) -> AsyncEngine:
    # NullPool: each session opens its own connection on whichever loop is running.
    return create_async_engine(f"sqlite+aiosqlite:///{database_path}", poolclass=NullPool)


@pytest.fixture()
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(async_engine, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def repository(session_factory: async_sessionmaker[AsyncSession]) -> ChatRepository:
    return ChatRepository(session_factory)


@pytest.fixture()
def assistant() -> StubAssistant:
    return StubAssistant()


@pytest.fixture()
def failing_assistant() -> StubAssistant:
    return StubAssistant(error=CollaboratorFailure("Failed to get AI response"))


@pytest.fixture()
def app(
    async_engine: AsyncEngine,
    session_factory: async_sessionmaker[AsyncSession],
    assistant: StubAssistant,
) -> FastAPI:
    return create_app(bind=async_engine, session_factory=session_factory, assistant=assistant)


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


@pytest.fixture()
def make_user(db_session: Session) -> Callable[..., User]:
    """Factory persisting a user, optionally with a public key."""

    def _make_user(username: str, public_key: bytes | None = None) -> User:
        user = User(username=username, public_key=public_key)
        db_session.add(user)
        db_session.commit()
        return user

    return _make_user


@pytest.fixture()
def make_room(db_session: Session) -> Callable[..., Room]:
    """Factory persisting a room with the given members."""

    def _make_room(name: str, *members: User) -> Room:
        room = Room(name=name)
        db_session.add(room)
        db_session.flush()
        for member in members:
            db_session.add(RoomMember(room_id=room.id, user_id=member.id))
        db_session.commit()
        return room

    return _make_room


@pytest.fixture()
def alice_keys() -> KeyPair:
    return CryptoService.generate_keypair()


@pytest.fixture()
def bob_keys() -> KeyPair:
    return CryptoService.generate_keypair()


@pytest.fixture()
def alice(make_user: Callable[..., User], alice_keys: KeyPair) -> User:
    return make_user("alice", alice_keys.public_key)


@pytest.fixture()
def bob(make_user: Callable[..., User], bob_keys: KeyPair) -> User:
    return make_user("bob", bob_keys.public_key)


@pytest.fixture()
def room(make_room: Callable[..., Room], alice: User, bob: User) -> Room:
    return make_room("general", alice, bob)
