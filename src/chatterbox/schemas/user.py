"""User public-key schemas."""

from pydantic import Field

from .common import CamelModel


class PublicKeyUpdate(CamelModel):
    """Schema for publishing a long-term public key."""

    public_key: str = Field(..., description="X25519 public key, URL-safe base64 or hex")


class PublicKeyResponse(CamelModel):
    """Schema for a user's public key."""

    user_id: str
    username: str
    public_key: str | None = Field(None, description="URL-safe base64, unpadded")
