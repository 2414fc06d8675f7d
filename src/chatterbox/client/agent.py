"""Client-resident crypto agent.

Owns the user's long-term keypair, opens distributed room keys, caches them
in a keystore and encrypts/decrypts message content. Failures are reported
as ``None`` and logged; callers substitute placeholders and carry on.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Mapping
from typing import Any

from chatterbox.client.keystore import Keystore
from chatterbox.core.errors import CryptoFailure
from chatterbox.services.crypto import (
    ROOM_KEY_BYTES,
    CryptoService,
    EncryptedPayload,
    KeyPair,
    decode_b64,
    encode_b64,
)

logger = logging.getLogger(__name__)

PUBLIC_KEY_ENTRY = "keypair.public"
PRIVATE_KEY_ENTRY = "keypair.private"
ROOM_KEY_PREFIX = "room-key:"

KEY_UNAVAILABLE_PLACEHOLDER = "[Encrypted message - key not available]"
DECRYPT_FAILED_PLACEHOLDER = "[Failed to decrypt]"


class CryptoAgent:
    """Per-user crypto state bound to one keystore."""

    def __init__(self, user_id: str, keystore: Keystore, crypto: CryptoService | None = None) -> None:
        self.user_id = user_id
        self.keystore = keystore
        self.crypto = crypto or CryptoService()
        self._keypair: KeyPair | None = None
        self._keypair_lock = asyncio.Lock()
        self._key_waiters: dict[str, list[asyncio.Future[bytes]]] = defaultdict(list)

    # -- long-term keypair -------------------------------------------------

    def _load_keypair(self) -> KeyPair | None:
        public_b64 = self.keystore.get(PUBLIC_KEY_ENTRY)
        private_b64 = self.keystore.get(PRIVATE_KEY_ENTRY)
        if not public_b64 or not private_b64:
            return None
        return KeyPair(public_key=decode_b64(public_b64), private_key=decode_b64(private_b64))

    async def ensure_keypair(self) -> KeyPair:
        """Return the user's keypair, generating and storing it on first use.

        Concurrent first calls share a single generation.
        """
        if self._keypair is not None:
            return self._keypair
        async with self._keypair_lock:
            if self._keypair is None:
                keypair = self._load_keypair()
                if keypair is None:
                    keypair = self.crypto.generate_keypair()
                    self.keystore.set(PUBLIC_KEY_ENTRY, encode_b64(keypair.public_key))
                    self.keystore.set(PRIVATE_KEY_ENTRY, encode_b64(keypair.private_key))
                    logger.info("Generated long-term keypair for user %s", self.user_id)
                self._keypair = keypair
        return self._keypair

    # -- envelopes ---------------------------------------------------------

    def seal_room_key(self, room_key: bytes, recipient_public_key: bytes) -> bytes:
        return self.crypto.seal_room_key(room_key, recipient_public_key)

    def unseal_room_key(self, sealed: bytes, keypair: KeyPair) -> bytes | None:
        """Open a sealed room key; None if it was not sealed for ``keypair``."""
        try:
            return self.crypto.unseal_room_key(sealed, keypair)
        except CryptoFailure as exc:
            logger.warning("Room key decryption failed: %s", exc.message)
            return None

    # -- message content ---------------------------------------------------

    def encrypt(self, plaintext: str, room_key: bytes) -> EncryptedPayload:
        """Encrypt under ``room_key``; every call draws a fresh random nonce."""
        return self.crypto.encrypt(plaintext, room_key)

    def decrypt(self, ciphertext: bytes, nonce: bytes, room_key: bytes) -> str | None:
        """Decrypt message content; None on failure."""
        try:
            return self.crypto.decrypt(ciphertext, nonce, room_key)
        except CryptoFailure as exc:
            logger.warning("Failed to decrypt message: %s", exc.message)
            return None

    # -- room key cache ----------------------------------------------------

    def room_key(self, room_id: str) -> bytes | None:
        """Return the cached key for a room."""
        value = self.keystore.get(ROOM_KEY_PREFIX + room_id)
        if value is None:
            return None
        try:
            key = decode_b64(value)
        except ValueError:
            logger.warning("Discarding unreadable cached key for room %s", room_id)
            return None
        return key if len(key) == ROOM_KEY_BYTES else None

    def store_room_key(self, room_id: str, room_key: bytes) -> None:
        """Cache a room key and wake anyone waiting for it."""
        self.keystore.set(ROOM_KEY_PREFIX + room_id, encode_b64(room_key))
        for waiter in self._key_waiters.pop(room_id, []):
            if not waiter.done():
                waiter.set_result(room_key)

    async def wait_for_room_key(self, room_id: str, timeout: float) -> bytes | None:
        """Wait up to ``timeout`` seconds for a room key to be cached."""
        cached = self.room_key(room_id)
        if cached is not None:
            return cached
        waiter: asyncio.Future[bytes] = asyncio.get_running_loop().create_future()
        self._key_waiters[room_id].append(waiter)
        try:
            return await asyncio.wait_for(waiter, timeout)
        except TimeoutError:
            return None
        finally:
            waiters = self._key_waiters.get(room_id)
            if waiters and waiter in waiters:
                waiters.remove(waiter)
                if not waiters:
                    del self._key_waiters[room_id]

    async def handle_key_distribution(self, bundle: Mapping[str, Any]) -> bool:
        """Open this user's entry of a room-key bundle and cache the key.

        Returns:
            True if a key was stored.
        """
        room_id = bundle.get("roomId")
        encrypted_keys = bundle.get("encryptedKeys") or {}
        if not isinstance(room_id, str) or not isinstance(encrypted_keys, Mapping):
            logger.warning("Ignoring malformed room key bundle")
            return False

        sealed_b64 = encrypted_keys.get(self.user_id)
        if not sealed_b64:
            logger.info("No encrypted key for this user in room %s", room_id)
            return False

        keypair = await self.ensure_keypair()
        try:
            sealed = decode_b64(sealed_b64)
        except ValueError:
            logger.warning("Room key bundle for %s is not base64", room_id)
            return False
        room_key = self.unseal_room_key(sealed, keypair)
        if room_key is None:
            return False
        self.store_room_key(room_id, room_key)
        return True

    def open_message(self, message: Mapping[str, Any]) -> tuple[dict[str, Any], bool]:
        """Return a displayable copy of a ``receive-message`` payload.

        Returns:
            The message with ``content`` filled in, and whether the room key
            was missing (the caller should then request one).
        """
        opened = dict(message)
        if not message.get("isEncrypted"):
            return opened, False

        room_key = self.room_key(str(message.get("roomId")))
        if room_key is None:
            logger.error("No room key available for decryption")
            opened["content"] = KEY_UNAVAILABLE_PLACEHOLDER
            return opened, True

        try:
            ciphertext = decode_b64(str(message.get("ciphertext") or ""))
            nonce = decode_b64(str(message.get("nonce") or ""))
        except ValueError:
            opened["content"] = DECRYPT_FAILED_PLACEHOLDER
            return opened, False

        plaintext = self.decrypt(ciphertext, nonce, room_key)
        opened["content"] = plaintext if plaintext is not None else DECRYPT_FAILED_PLACEHOLDER
        return opened, False
