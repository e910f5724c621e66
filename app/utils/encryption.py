"""Encryption helpers for sensitive payloads.

Uses AES-256-GCM from ``cryptography``. The 32-byte key is derived from the
configured secret with SHA-256, so secrets of any length are accepted.
Encrypted payloads are hex-encoded dicts: ``iv``, ``encrypted_data`` and
``auth_tag``.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from typing import TypedDict

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from app.core.errors import EncryptionAppError

logger = logging.getLogger(__name__)

IV_LENGTH = 16
AUTH_TAG_LENGTH = 16


class EncryptedPayload(TypedDict):
    iv: str
    encrypted_data: str
    auth_tag: str


class FieldCipher:
    """Authenticated encryption for short text values.

    Usage:
        cipher = FieldCipher(settings.app.encryption_key)
        payload = cipher.encrypt("secret")
        cipher.decrypt(payload)
    """

    def __init__(self, secret: str | None) -> None:
        if not secret:
            raise EncryptionAppError(
                code="encryption_key_missing",
                message="Encryption key is not configured",
                details={"hint": "Set APP_ENCRYPTION_KEY"},
            )
        self._aesgcm = AESGCM(hashlib.sha256(secret.encode()).digest())

    def encrypt(self, text: str) -> EncryptedPayload:
        iv = secrets.token_bytes(IV_LENGTH)
        sealed = self._aesgcm.encrypt(iv, text.encode("utf-8"), None)
        # AESGCM appends the tag to the ciphertext
        ciphertext, tag = sealed[:-AUTH_TAG_LENGTH], sealed[-AUTH_TAG_LENGTH:]
        return {
            "iv": iv.hex(),
            "encrypted_data": ciphertext.hex(),
            "auth_tag": tag.hex(),
        }

    def decrypt(self, payload: EncryptedPayload) -> str:
        """Decrypt a payload produced by ``encrypt``.

        Raises:
            EncryptionAppError: If the payload is malformed or was tampered with.
        """
        try:
            iv = bytes.fromhex(payload["iv"])
            sealed = bytes.fromhex(payload["encrypted_data"]) + bytes.fromhex(payload["auth_tag"])
            return self._aesgcm.decrypt(iv, sealed, None).decode("utf-8")
        except (InvalidTag, KeyError, ValueError, TypeError) as exc:
            logger.warning("encryption.decrypt_failed", extra={"error_type": type(exc).__name__})
            raise EncryptionAppError(
                code="decryption_failed",
                message="Failed to decrypt data",
            ) from exc


def hash_value(text: str) -> str:
    """One-way SHA-256 hex digest."""
    return hashlib.sha256(text.encode()).hexdigest()


def generate_token(length: int = 32) -> str:
    """Random token of ``length`` bytes, hex-encoded."""
    return secrets.token_hex(length)


def create_hmac(data: str, secret: str) -> str:
    return hmac.new(secret.encode(), data.encode(), hashlib.sha256).hexdigest()


def verify_hmac(data: str, signature: str, secret: str) -> bool:
    """Constant-time check of an HMAC-SHA256 signature."""
    return hmac.compare_digest(create_hmac(data, secret), signature)
