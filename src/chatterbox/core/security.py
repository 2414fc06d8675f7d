"""Bearer token issuance and verification built on python-jose."""
from __future__ import annotations

from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt

from chatterbox.core.errors import AuthenticationFailure
from chatterbox.core.settings import settings


def create_access_token(subject: str, extra_claims: dict[str, str] | None = None) -> str:
    """Create a JWT access token whose ``sub`` claim is the user id."""
    to_encode: dict[str, object] = {"sub": subject}
    if extra_claims:
        to_encode.update(extra_claims)
    expire = datetime.now(UTC) + timedelta(minutes=settings.access_token_expire_minutes)
    to_encode["exp"] = expire
    encoded_jwt: str = jwt.encode(
        to_encode,
        settings.secret_key,
        algorithm=settings.jwt_algorithm,
    )
    return encoded_jwt


def decode_access_token(token: str | None) -> str:
    """Verify a bearer token and return the user id it names.

    Args:
        token: Encoded JWT, optionally prefixed with ``Bearer``.

    Returns:
        The ``sub`` claim.

    Raises:
        AuthenticationFailure: If the token is missing, malformed or expired.
    """
    if not token:
        raise AuthenticationFailure("Authentication required")
    if token.lower().startswith("bearer "):
        token = token[7:].strip()
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError as err:
        raise AuthenticationFailure("Invalid token") from err

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise AuthenticationFailure("Invalid token")
    return subject
