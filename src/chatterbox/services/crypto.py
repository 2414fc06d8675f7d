# src/chatterbox/services/crypto.py
"""Cryptographic primitives for room key distribution and message content."""

from __future__ import annotations

import base64
from dataclasses import dataclass

from nacl.exceptions import CryptoError
from nacl.public import PrivateKey, PublicKey, SealedBox
from nacl.secret import SecretBox
from nacl.utils import random as random_bytes

from chatterbox.core.errors import CryptoFailure

PUBKEY_LENGTH_BYTES = PublicKey.SIZE
ROOM_KEY_BYTES = SecretBox.KEY_SIZE
NONCE_BYTES = SecretBox.NONCE_SIZE


@dataclass(frozen=True)
class KeyPair:
    """Raw X25519 keypair."""

    public_key: bytes
    private_key: bytes


@dataclass(frozen=True)
class EncryptedPayload:
    """Secretbox ciphertext (MAC included) and the nonce it was sealed with."""

    ciphertext: bytes
    nonce: bytes


def encode_b64(data: bytes) -> str:
    """Encode bytes as URL-safe base64 without padding."""
    return base64.urlsafe_b64encode(data).decode().rstrip("=")


def decode_b64(data: str) -> bytes:
    """Decode a URL-safe base64 string, accepting omitted padding."""
    padding = "=" * (-len(data) % 4)
    try:
        return base64.urlsafe_b64decode(data + padding)
    except Exception as err:
        raise ValueError(f"Invalid base64 encoding: {err}") from err


class CryptoService:
    """Service handling cryptographic operations."""

    @staticmethod
    def _decode_hex(data: str) -> bytes:
        try:
            return bytes.fromhex(data)
        except ValueError as err:
            raise ValueError(f"Invalid hex encoding: {err}") from err

    @staticmethod
    def validate_and_decode_pubkey(pubkey_encoded: str) -> bytes:
        """Validate and decode an X25519 public key given as base64 or hex."""
        cleaned = pubkey_encoded.strip()
        errors: list[str] = []
        for decoder in (
            decode_b64,
            CryptoService._decode_hex,
        ):
            try:
                result = decoder(cleaned)
            except ValueError as err:
                errors.append(str(err))
                continue
            if len(result) != PUBKEY_LENGTH_BYTES:
                errors.append("X25519 public keys must be 32 bytes")
                continue
            return result
        joined = "; ".join(errors) if errors else "unknown decoding error"
        raise ValueError(f"Invalid public key format: {joined}")

    @staticmethod
    def generate_keypair() -> KeyPair:
        """Generate a new long-term X25519 keypair."""
        private_key = PrivateKey.generate()
        return KeyPair(
            public_key=bytes(private_key.public_key),
            private_key=bytes(private_key),
        )

    @staticmethod
    def generate_room_key() -> bytes:
        """Return a fresh 256-bit symmetric room key."""
        return random_bytes(ROOM_KEY_BYTES)

    @staticmethod
    def seal_room_key(room_key: bytes, recipient_public_key: bytes) -> bytes:
        """Seal a room key so only the recipient's private key can open it.

        Args:
            room_key: Raw symmetric key
            recipient_public_key: Raw X25519 public key of the recipient

        Returns:
            Sealed box bytes (ephemeral public key, MAC and ciphertext)
        """
        try:
            box = SealedBox(PublicKey(recipient_public_key))
        except (TypeError, ValueError) as err:
            raise CryptoFailure(f"Invalid recipient public key: {err}") from err
        return bytes(box.encrypt(room_key))

    @staticmethod
    def unseal_room_key(sealed: bytes, keypair: KeyPair) -> bytes:
        """Open a sealed room key with the recipient's keypair.

        Raises:
            CryptoFailure: If the box was sealed for a different key or tampered with.
        """
        try:
            box = SealedBox(PrivateKey(keypair.private_key))
            room_key = box.decrypt(sealed)
        except (CryptoError, TypeError, ValueError) as err:
            raise CryptoFailure("Unable to open sealed room key") from err
        if len(room_key) != ROOM_KEY_BYTES:
            raise CryptoFailure("Sealed payload is not a room key")
        return room_key

    @staticmethod
    def encrypt(plaintext: str, room_key: bytes) -> EncryptedPayload:
        """Encrypt message text under a room key with a fresh random nonce."""
        try:
            box = SecretBox(room_key)
        except (TypeError, ValueError) as err:
            raise CryptoFailure(f"Invalid room key: {err}") from err
        nonce = random_bytes(NONCE_BYTES)
        encrypted = box.encrypt(plaintext.encode("utf-8"), nonce)
        return EncryptedPayload(ciphertext=encrypted.ciphertext, nonce=nonce)

    @staticmethod
    def decrypt(ciphertext: bytes, nonce: bytes, room_key: bytes) -> str:
        """Decrypt message text.

        Raises:
            CryptoFailure: On a wrong key, wrong nonce or tampered ciphertext.
        """
        try:
            box = SecretBox(room_key)
            plaintext = box.decrypt(ciphertext, nonce)
            return plaintext.decode("utf-8")
        except (CryptoError, TypeError, ValueError, UnicodeDecodeError) as err:
            raise CryptoFailure("Unable to decrypt message") from err
