"""Public-key endpoints used by the key distribution protocol."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, status

from chatterbox.core.errors import NotFoundError
from chatterbox.models import User
from chatterbox.schemas.user import PublicKeyResponse, PublicKeyUpdate
from chatterbox.services.crypto import CryptoService, encode_b64

from ..dependencies import CurrentUserDep, RepositoryDep

router = APIRouter(prefix="/users", tags=["users"])
crypto_service = CryptoService()


def _public_key_response(user: User) -> PublicKeyResponse:
    public_key = encode_b64(user.public_key) if user.public_key is not None else None
    return PublicKeyResponse(user_id=user.id, username=user.username, public_key=public_key)


@router.put("/me/public-key", response_model=PublicKeyResponse)
async def update_public_key(
    payload: PublicKeyUpdate,
    current_user: CurrentUserDep,
    repository: RepositoryDep,
) -> PublicKeyResponse:
    """Publish the caller's long-term X25519 public key."""
    try:
        public_key = crypto_service.validate_and_decode_pubkey(payload.public_key)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc

    try:
        user = await repository.set_public_key(current_user.id, public_key)
    except NotFoundError as exc:  # pragma: no cover - user vanished mid-request
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message) from exc

    return _public_key_response(user)


@router.get("/{user_id}/public-key", response_model=PublicKeyResponse)
async def get_public_key(
    user_id: str,
    _: CurrentUserDep,
    repository: RepositoryDep,
) -> PublicKeyResponse:
    """Return a user's public key (null until one is published)."""
    user = await repository.get_user(user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return _public_key_response(user)
