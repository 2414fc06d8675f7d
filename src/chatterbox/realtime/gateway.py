"""Connection gateway: authentication and room subscriptions.

A connection may be subscribed to many rooms, and a room may have many
subscribing connections, including several connections of one user.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any

from chatterbox.core.errors import AuthenticationFailure, NotFoundError
from chatterbox.core.security import decode_access_token
from chatterbox.realtime.connection import AuthenticatedUser, Connection
from chatterbox.repositories.chat_repo import ChatRepository

logger = logging.getLogger(__name__)


class ConnectionGateway:
    """Tracks live connections and the rooms they listen to."""

    def __init__(self, repository: ChatRepository) -> None:
        self.repository = repository
        self._rooms: dict[str, set[Connection]] = defaultdict(set)
        self._subscriptions: dict[str, set[str]] = defaultdict(set)

    async def identify(self, connection: Connection, token: str | None = None) -> AuthenticatedUser:
        """Derive the identity behind a credential.

        Without an explicit token the connection's stored credential is used,
        after any authentication still in flight on the connection settles.

        Args:
            connection: Connection whose stored credential is used by default
            token: Explicit credential overriding the stored one

        Raises:
            AuthenticationFailure: If the credential is missing, invalid or
                names an unknown user.
        """
        if token is None:
            await self._settled(connection)
        return await self._resolve(token or connection.token)

    async def _resolve(self, token: str | None) -> AuthenticatedUser:
        user_id = decode_access_token(token)
        user = await self.repository.get_user(user_id)
        if user is None:
            raise AuthenticationFailure("User not found")
        return AuthenticatedUser(id=user.id, username=user.username)

    async def _settled(self, connection: Connection) -> None:
        async with connection.auth_lock:
            pass

    async def authenticate(self, connection: Connection, token: str | None) -> AuthenticatedUser:
        """Verify a credential and bind it to the connection.

        Frames that need an identity wait until this returns, so a client
        may send them right behind ``authenticate`` without waiting.
        """
        async with connection.auth_lock:
            identity = await self._resolve(token)
            connection.token = token
            connection.user = identity
        logger.info("Connection %s authenticated as %s", connection.id, identity.id)
        return identity

    async def require_user(self, connection: Connection) -> AuthenticatedUser:
        """Return the identity bound at authentication time."""
        await self._settled(connection)
        if connection.user is None:
            raise AuthenticationFailure("Authentication required")
        return connection.user

    async def require_member(self, connection: Connection, room_id: str) -> AuthenticatedUser:
        """Return the connection's identity if it belongs to the room.

        Raises:
            AuthenticationFailure: If the connection is not authenticated.
            NotFoundError: If the user is not a member of the room.
        """
        user = await self.require_user(connection)
        if not await self.repository.is_member(room_id, user.id):
            raise NotFoundError("Not a member of this room")
        return user

    def subscribe(self, connection: Connection, room_id: str) -> bool:
        """Subscribe a connection to a room. Returns False if already subscribed."""
        if connection in self._rooms[room_id]:
            return False
        self._rooms[room_id].add(connection)
        self._subscriptions[connection.id].add(room_id)
        logger.debug("Connection %s joined room %s", connection.id, room_id)
        return True

    def unsubscribe(self, connection: Connection, room_id: str) -> None:
        """Remove a connection from a room."""
        subscribers = self._rooms.get(room_id)
        if subscribers is not None:
            subscribers.discard(connection)
            if not subscribers:
                del self._rooms[room_id]
        rooms = self._subscriptions.get(connection.id)
        if rooms is not None:
            rooms.discard(room_id)
            if not rooms:
                del self._subscriptions[connection.id]

    def disconnect(self, connection: Connection) -> list[str]:
        """Unsubscribe a connection from every room it listened to."""
        rooms = sorted(self._subscriptions.get(connection.id, ()))
        for room_id in rooms:
            self.unsubscribe(connection, room_id)
        logger.info("Connection %s disconnected from %d room(s)", connection.id, len(rooms))
        return rooms

    def subscribers(self, room_id: str) -> list[Connection]:
        """Return the connections currently subscribed to a room."""
        return list(self._rooms.get(room_id, ()))

    def rooms_for(self, connection: Connection) -> set[str]:
        """Return the rooms a connection is subscribed to."""
        return set(self._subscriptions.get(connection.id, ()))

    def broadcast(
        self,
        room_id: str,
        event: str,
        data: Any,
        *,
        exclude: Connection | None = None,
    ) -> int:
        """Emit an event to every subscriber of a room.

        Returns:
            Number of connections the event was queued for.
        """
        delivered = 0
        for connection in self.subscribers(room_id):
            if connection is exclude or connection.closed:
                continue
            connection.emit(event, data)
            delivered += 1
        return delivered
