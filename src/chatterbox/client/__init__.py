"""Client-side pieces: key storage, the crypto agent and the session."""

from chatterbox.client.agent import (
    DECRYPT_FAILED_PLACEHOLDER,
    KEY_UNAVAILABLE_PLACEHOLDER,
    CryptoAgent,
)
from chatterbox.client.keystore import FileKeystore, Keystore, MemoryKeystore
from chatterbox.client.session import ChatSession
from chatterbox.client.transport import Transport, WebSocketTransport

__all__ = [
    "ChatSession",
    "CryptoAgent",
    "DECRYPT_FAILED_PLACEHOLDER",
    "FileKeystore",
    "KEY_UNAVAILABLE_PLACEHOLDER",
    "Keystore",
    "MemoryKeystore",
    "Transport",
    "WebSocketTransport",
]
