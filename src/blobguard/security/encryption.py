"""AES-256-GCM envelope encryption for payloads at rest.

Envelope layout:
    b"BGE1" || nonce (12 bytes) || AESGCM ciphertext || tag (16 bytes)

The magic prefix and the GCM tag make every envelope longer than its plaintext
and let decryption reject anything Encrypt did not produce. Any malformed
envelope or authentication failure raises DecryptionError; raw bytes are never
returned in place of plaintext.

SECURITY: Never log keys, nonces or plaintext.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
from typing import Final

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from blobguard.errors import ConfigError, DecryptionError

logger = logging.getLogger(__name__)

ENVELOPE_MAGIC: Final[bytes] = b"BGE1"
NONCE_SIZE: Final[int] = 12
TAG_SIZE: Final[int] = 16
KEY_SIZE: Final[int] = 32
ENVELOPE_OVERHEAD: Final[int] = len(ENVELOPE_MAGIC) + NONCE_SIZE + TAG_SIZE

_HKDF_INFO: Final[bytes] = b"blobguard-content-encryption-v1"
_HKDF_SALT: Final[bytes] = b"blobguard"


def derive_key(key_material: str | None) -> bytes:
    """Turn configured key material into a 32-byte AES key.

    A urlsafe-base64 value that decodes to exactly 32 bytes is used as-is; any
    other non-empty string is treated as a passphrase and stretched with
    HKDF-SHA256. When no material is configured a random key is generated, so
    payloads written by this process cannot be read by another.

    Raises:
        ConfigError: If key_material is an empty string.
    """
    if key_material is None:
        logger.warning(
            "No encryption key configured; generated a random per-process key. "
            "Encrypted objects will be unreadable after restart."
        )
        return AESGCM.generate_key(bit_length=256)

    if not key_material.strip():
        raise ConfigError("BLOBGUARD_ENCRYPTION_KEY cannot be empty")

    try:
        decoded = base64.urlsafe_b64decode(key_material.encode("ascii"))
    except (binascii.Error, UnicodeEncodeError, ValueError):
        decoded = b""
    if len(decoded) == KEY_SIZE:
        return decoded

    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=_HKDF_SALT,
        info=_HKDF_INFO,
    )
    return hkdf.derive(key_material.encode("utf-8"))


class ContentCipher:
    """Reversible authenticated encryption of payload bytes."""

    def __init__(self, key: bytes) -> None:
        if len(key) != KEY_SIZE:
            raise ConfigError(f"Encryption key must be {KEY_SIZE} bytes, got {len(key)}")
        self._aead = AESGCM(key)

    @classmethod
    def from_key_material(cls, key_material: str | None) -> ContentCipher:
        """Build a cipher from configured key material (see derive_key)."""
        return cls(derive_key(key_material))

    def encrypt(self, plaintext: bytes) -> bytes:
        """Encrypt plaintext into a new envelope with a fresh random nonce."""
        nonce = os.urandom(NONCE_SIZE)
        return ENVELOPE_MAGIC + nonce + self._aead.encrypt(nonce, plaintext, ENVELOPE_MAGIC)

    def decrypt(self, envelope: bytes) -> bytes:
        """Decrypt an envelope produced by encrypt.

        Raises:
            DecryptionError: If the envelope is malformed or fails authentication.
        """
        if len(envelope) < ENVELOPE_OVERHEAD or not envelope.startswith(ENVELOPE_MAGIC):
            raise DecryptionError("Payload is not a blobguard encryption envelope")
        header = len(ENVELOPE_MAGIC)
        nonce = envelope[header : header + NONCE_SIZE]
        ciphertext = envelope[header + NONCE_SIZE :]
        try:
            return self._aead.decrypt(nonce, ciphertext, ENVELOPE_MAGIC)
        except InvalidTag as e:
            raise DecryptionError("Payload failed integrity verification") from e
