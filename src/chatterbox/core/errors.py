"""Error taxonomy shared by the realtime and REST layers.

Every error carries a client-safe ``message``. The realtime dispatcher turns
these into ``error`` events; REST endpoints map them to HTTP status codes.
"""

from __future__ import annotations


class ChatError(RuntimeError):
    """Base class for operation-level failures."""

    default_message = "Operation failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class AuthenticationFailure(ChatError):
    """Missing, invalid or unknown credential."""

    default_message = "Authentication required"


class NotFoundError(ChatError):
    """A referenced room, user or message does not exist."""

    default_message = "Not found"


class ValidationFailure(ChatError):
    """An inbound payload is malformed."""

    default_message = "Invalid payload"


class CryptoFailure(ChatError):
    """Unsealing or decryption failed."""

    default_message = "Cryptographic operation failed"


class PersistenceFailure(ChatError):
    """A storage read or write failed."""

    default_message = "Storage operation failed"


class CollaboratorFailure(ChatError):
    """An external collaborator (the assistant) failed."""

    default_message = "Assistant unavailable"


class FeatureDisabled(ChatError):
    """The requested operation is switched off by configuration."""

    default_message = "Feature disabled"


class RoomKeyUnavailable(CryptoFailure):
    """No room key arrived in time for an encrypted send."""

    default_message = "Room key not available"
