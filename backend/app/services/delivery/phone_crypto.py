"""AES-256-GCM decryption of contact phone numbers stored at rest."""

from __future__ import annotations

import os

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from app.core.config import settings

NONCE_SIZE = 12


class PhoneCipher:
    """Hex-encoded `nonce || ciphertext || tag` envelope, keyed by a 32-byte hex key."""

    def __init__(self, key_hex: str | None = None) -> None:
        raw = (key_hex if key_hex is not None else settings.phone_encryption_key).strip()
        if not raw:
            raise ValueError("phone encryption key is not configured")
        key = bytes.fromhex(raw)
        if len(key) != 32:
            raise ValueError("phone encryption key must be 32 bytes")
        self._aesgcm = AESGCM(key)

    def encrypt(self, plaintext: str) -> str:
        nonce = os.urandom(NONCE_SIZE)
        return (nonce + self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)).hex()

    def decrypt(self, ciphertext: str) -> str:
        combined = bytes.fromhex(ciphertext)
        if len(combined) <= NONCE_SIZE:
            raise ValueError("ciphertext too short")
        nonce, sealed = combined[:NONCE_SIZE], combined[NONCE_SIZE:]
        return self._aesgcm.decrypt(nonce, sealed, None).decode("utf-8")
