"""Symmetric encryption for access tokens stored in browser cookies."""

import hashlib
import logging
import secrets
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

logger = logging.getLogger(__name__)

DEFAULT_ENCRYPTION_SECRET = "default-encryption-key-change-this-in-production"

NONCE_LENGTH = 16
TAG_LENGTH = 16


class CryptoError(Exception):
    """Base exception for cryptographic operations."""


class DecryptionError(CryptoError):
    """Raised when a cookie blob cannot be decrypted.

    Covers malformed blobs, wrong key, truncation and tampering.
    """


def derive_key(secret: Optional[str]) -> bytes:
    """Derive the 32-byte AES key from a configured secret.

    Falls back to a built-in secret when none is configured. That key is
    public, so anything encrypted with it is effectively plaintext.
    """
    if not secret:
        logger.warning(
            "ENCRYPTION_KEY is not set, using the default access-token key "
            "(not secure for production)"
        )
        secret = DEFAULT_ENCRYPTION_SECRET
    return hashlib.sha256(secret.encode("utf-8")).digest()


class TokenCipher:
    """AES-256-GCM cipher producing ``hex(nonce):hex(ciphertext)`` blobs.

    The key is derived once, when the cipher is built. Each call to
    encrypt() uses a fresh random nonce, so encrypting the same token twice
    yields different blobs.
    """

    def __init__(self, key: bytes):
        if len(key) != 32:
            raise CryptoError(f"Encryption key must be 32 bytes, got {len(key)}")
        self._aesgcm = AESGCM(key)

    @classmethod
    def from_secret(cls, secret: Optional[str]) -> "TokenCipher":
        return cls(derive_key(secret))

    def encrypt(self, plaintext: str) -> Optional[str]:
        """Encrypt a token. Returns None for invalid input, never raises."""
        if not plaintext or not isinstance(plaintext, str):
            logger.warning("Encrypt: invalid input text")
            return None

        try:
            nonce = secrets.token_bytes(NONCE_LENGTH)
            ciphertext = self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
        except Exception as e:
            logger.error(f"Encryption error: {e}", exc_info=True)
            return None

        return nonce.hex() + ":" + ciphertext.hex()

    def open(self, blob: str) -> str:
        """Decrypt a blob produced by encrypt().

        Raises:
            DecryptionError: With the reason the blob was rejected.
        """
        if not blob or not isinstance(blob, str):
            raise DecryptionError("Encrypted data is empty or not a string")

        parts = blob.split(":")
        if len(parts) != 2:
            raise DecryptionError("Invalid encrypted data format")

        try:
            nonce = bytes.fromhex(parts[0])
            ciphertext = bytes.fromhex(parts[1])
        except ValueError as e:
            raise DecryptionError(f"Encrypted data is not valid hex: {e}") from e

        if len(nonce) != NONCE_LENGTH:
            raise DecryptionError(f"Invalid nonce length: {len(nonce)} bytes")
        if len(ciphertext) <= TAG_LENGTH:
            raise DecryptionError(f"Ciphertext too short: {len(ciphertext)} bytes")

        try:
            plaintext = self._aesgcm.decrypt(nonce, ciphertext, None)
        except InvalidTag as e:
            raise DecryptionError("Authentication tag mismatch (tampered data or wrong key)") from e

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionError(f"Decrypted data is not UTF-8: {e}") from e

    def decrypt(self, blob: str) -> Optional[str]:
        """Decrypt a blob. Returns None on any failure, never raises."""
        try:
            return self.open(blob)
        except DecryptionError as e:
            logger.debug(f"Decrypt failed: {e}")
            return None
