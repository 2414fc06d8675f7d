"""Shared API dependencies for authentication and common functionality."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from chatterbox.core.errors import AuthenticationFailure
from chatterbox.core.security import decode_access_token
from chatterbox.models import User
from chatterbox.realtime.hub import ChatHub
from chatterbox.repositories.chat_repo import ChatRepository

# HTTP Bearer scheme for JWT authentication
bearer_scheme = HTTPBearer(auto_error=False)


def get_hub(request: Request) -> ChatHub:
    """Return the realtime hub created at application startup."""
    hub: ChatHub = request.app.state.hub
    return hub


HubDep = Annotated[ChatHub, Depends(get_hub)]


def get_repository(hub: HubDep) -> ChatRepository:
    """Return the repository shared with the realtime services."""
    return hub.repository


# Type alias for repository dependency
RepositoryDep = Annotated[ChatRepository, Depends(get_repository)]


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    repository: RepositoryDep,
) -> User:
    """Get the current authenticated user from JWT token.

    Args:
        credentials: HTTP Bearer token credentials
        repository: Chat repository

    Returns:
        User object for the authenticated user

    Raises:
        HTTPException: If token is invalid or user not found
    """
    try:
        user_id = decode_access_token(credentials.credentials if credentials else None)
    except AuthenticationFailure as err:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        ) from err

    user = await repository.get_user(user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    return user


# Type alias for current user dependency
CurrentUserDep = Annotated[User, Depends(get_current_user)]
