"""Envelope encryption for publish integration credentials.

AES-256-GCM with a random 96-bit IV per encryption.
Stored format: iv:ciphertext:authTag (each part base64).

Requires DRUPAL_ENCRYPTION_KEY (64 hex chars = 32 bytes).
"""

import base64
import json
import os
from typing import Optional

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

_TAG_LENGTH = 16


def _get_key(hex_key: Optional[str] = None) -> bytes:
    hex_key = hex_key or os.environ.get("DRUPAL_ENCRYPTION_KEY", "")
    if len(hex_key) != 64:
        raise RuntimeError(
            "DRUPAL_ENCRYPTION_KEY must be set (64 hex chars = 32 bytes). "
            "Generate with: python -c \"import secrets; print(secrets.token_hex(32))\""
        )
    return bytes.fromhex(hex_key)


def encrypt_credentials(credentials: dict, hex_key: Optional[str] = None) -> str:
    """Encrypt a credentials dict (username/password or token)."""
    key = _get_key(hex_key)
    iv = os.urandom(12)
    plaintext = json.dumps(credentials).encode("utf-8")
    # AESGCM appends the tag to the ciphertext; the stored format keeps it separate.
    sealed = AESGCM(key).encrypt(iv, plaintext, None)
    ciphertext, tag = sealed[:-_TAG_LENGTH], sealed[-_TAG_LENGTH:]
    return ":".join(base64.b64encode(part).decode("ascii") for part in (iv, ciphertext, tag))


def decrypt_credentials(encrypted: str, hex_key: Optional[str] = None) -> dict:
    """Decrypt stored credentials.

    Raises:
        ValueError: malformed payload
        cryptography.exceptions.InvalidTag: wrong key or tampered data
    """
    key = _get_key(hex_key)
    parts = encrypted.split(":")
    if len(parts) != 3:
        raise ValueError("Invalid encrypted credentials format")

    iv, ciphertext, tag = (base64.b64decode(p) for p in parts)
    plaintext = AESGCM(key).decrypt(iv, ciphertext + tag, None)
    return json.loads(plaintext.decode("utf-8"))
