"""AES-256-GCM encryption for payslip payloads at rest.

A payslip carries tax codes, salary and contribution data, so the stored
JSON payload is encrypted before it reaches the database.
Uses 12-byte random nonces (96-bit, NIST recommended for GCM).
Stored format: base64(nonce || ciphertext || tag).

Usage:
    from bustapaga.security.encryption import payload_encryptor

    token = payload_encryptor.encrypt('{"netSalary": 1624.71}')
    plaintext = payload_encryptor.decrypt(token)
"""

from __future__ import annotations

import base64
import binascii
import logging
import os

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from bustapaga.config import settings

logger = logging.getLogger(__name__)

_NONCE_SIZE = 12  # 96-bit nonce for AES-GCM
_TAG_SIZE = 16


class PayloadEncryptor:
    """AES-256-GCM encryptor for text payloads.

    Stateless: each encrypt call generates a fresh nonce.
    """

    def __init__(self, key: bytes, *, ephemeral: bool = False) -> None:
        if len(key) != 32:
            msg = f"AES-256 requires a 32-byte key, got {len(key)} bytes"
            raise ValueError(msg)
        self._aesgcm = AESGCM(key)
        # Random per-process key: tokens do not survive a restart
        self.ephemeral = ephemeral

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a string. Returns base64(nonce + ciphertext + tag)."""
        nonce = os.urandom(_NONCE_SIZE)
        ct = self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.b64encode(nonce + ct).decode("ascii")

    def decrypt(self, token: str) -> str:
        """Decrypt a base64-encoded token produced by ``encrypt``."""
        raw = base64.b64decode(token)
        if len(raw) < _NONCE_SIZE + _TAG_SIZE:
            msg = "Invalid encrypted token: too short"
            raise ValueError(msg)
        return self._aesgcm.decrypt(raw[:_NONCE_SIZE], raw[_NONCE_SIZE:], None).decode("utf-8")


def _load_key() -> bytes | None:
    """Load the encryption key from settings (base64-encoded); None when unusable."""
    raw = settings.security.encryption_key
    if not raw:
        logger.warning("ENCRYPTION_KEY not set: payslips will be stored unencrypted")
        return None
    try:
        key = base64.b64decode(raw, validate=True)
    except binascii.Error:
        logger.warning("ENCRYPTION_KEY is not valid base64: payslips will be stored unencrypted")
        return None
    if len(key) != 32:
        logger.warning("ENCRYPTION_KEY decoded to %d bytes (expected 32): payslips will be stored unencrypted", len(key))
        return None
    return key


def _build_encryptor() -> PayloadEncryptor:
    key = _load_key()
    if key is None:
        return PayloadEncryptor(os.urandom(32), ephemeral=True)
    return PayloadEncryptor(key)


# Module-level singleton: import this wherever encryption is needed.
payload_encryptor = _build_encryptor()
