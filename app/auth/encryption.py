"""Symmetric encryption for cookie payloads and stored OAuth tokens.

Tokens have the shape ``base64(iv || ciphertext)`` where ``iv`` is a fresh
16-byte random value and ``ciphertext`` is AES-256-GCM output including its
authentication tag, so tampered tokens are rejected rather than decrypted into
altered plaintext.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
import secrets
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from app.auth.errors import ConfigurationError, DecryptionError

logger = logging.getLogger(__name__)

KEY_LENGTH = 32
IV_LENGTH = 16
_TAG_LENGTH = 16


@dataclass(frozen=True, slots=True)
class EncryptedTokenPair:
    encrypted_access_token: str
    encrypted_refresh_token: str


class TokenCipher:
    def __init__(self, key_hex: str) -> None:
        self._aesgcm = AESGCM(_parse_key(key_hex))

    def encrypt(self, plaintext: str) -> str:
        iv = os.urandom(IV_LENGTH)
        ciphertext = self._aesgcm.encrypt(iv, plaintext.encode("utf-8"), None)
        return base64.b64encode(iv + ciphertext).decode("ascii")

    def decrypt(self, token: str) -> str:
        try:
            combined = base64.b64decode(token.encode("ascii"), validate=True)
        except (UnicodeEncodeError, binascii.Error, ValueError) as exc:
            logger.warning("rejecting ciphertext token: %s", type(exc).__name__)
            raise DecryptionError("ciphertext token is not valid base64") from exc

        if len(combined) < IV_LENGTH + _TAG_LENGTH:
            logger.warning("rejecting ciphertext token: truncated")
            raise DecryptionError("ciphertext token is truncated")

        iv, ciphertext = combined[:IV_LENGTH], combined[IV_LENGTH:]
        try:
            plaintext = self._aesgcm.decrypt(iv, ciphertext, None)
            return plaintext.decode("utf-8")
        except (InvalidTag, UnicodeDecodeError) as exc:
            logger.warning("rejecting ciphertext token: %s", type(exc).__name__)
            raise DecryptionError("ciphertext token could not be decrypted") from exc

    def encrypt_json(self, payload: Mapping[str, Any]) -> str:
        return self.encrypt(json.dumps(dict(payload), separators=(",", ":")))

    def decrypt_json(self, token: str) -> dict[str, Any]:
        plaintext = self.decrypt(token)
        try:
            payload = json.loads(plaintext)
        except json.JSONDecodeError as exc:
            raise DecryptionError("decrypted payload is not valid JSON") from exc

        if not isinstance(payload, dict):
            raise DecryptionError("decrypted payload must be a JSON object")
        return payload

    def encrypt_tokens(self, *, access_token: str, refresh_token: str) -> EncryptedTokenPair:
        return EncryptedTokenPair(
            encrypted_access_token=self.encrypt(access_token),
            encrypted_refresh_token=self.encrypt(refresh_token),
        )

    def decrypt_tokens(self, pair: EncryptedTokenPair) -> tuple[str, str]:
        return (
            self.decrypt(pair.encrypted_access_token),
            self.decrypt(pair.encrypted_refresh_token),
        )


def generate_encryption_key() -> str:
    return secrets.token_hex(KEY_LENGTH)


def _parse_key(key_hex: str) -> bytes:
    normalized = key_hex.strip()
    if not normalized:
        raise ConfigurationError("ENCRYPTION_KEY is required")
    if len(normalized) != KEY_LENGTH * 2:
        raise ConfigurationError("ENCRYPTION_KEY must be 64 hex characters (32 bytes)")

    try:
        return bytes.fromhex(normalized)
    except ValueError as exc:
        raise ConfigurationError("ENCRYPTION_KEY must be hex encoded") from exc
