"""Helpers for encrypting/decrypting secrets kept in system_config."""

from __future__ import annotations

import base64
import hashlib
from itertools import cycle


def _derived_key(secret_key: str) -> bytes:
    return hashlib.sha256(secret_key.encode("utf-8")).digest()


def _xor(secret_key: str, data: bytes) -> bytes:
    key_stream = cycle(_derived_key(secret_key))
    return bytes(b ^ next(key_stream) for b in data)


def encrypt_secret(secret_key: str, plaintext: str) -> str:
    """Encrypt ``plaintext`` (e.g. the routing API key) for storage in system_config."""

    cipher_bytes = _xor(secret_key, plaintext.encode("utf-8"))
    return base64.urlsafe_b64encode(cipher_bytes).decode("utf-8")


def decrypt_secret(secret_key: str, ciphertext: str) -> str:
    data = base64.urlsafe_b64decode(ciphertext.encode("utf-8"))
    return _xor(secret_key, data).decode("utf-8")
