"""OAuth PKCE and anti-forgery token helpers."""

from __future__ import annotations

import base64
import hashlib
import secrets
from urllib.parse import urlencode

from app.auth.errors import ConfigurationError

CODE_VERIFIER_CHARSET = (
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-._~"
)
CODE_VERIFIER_MIN_LENGTH = 43
CODE_VERIFIER_MAX_LENGTH = 128


def generate_state() -> str:
    return secrets.token_urlsafe(32)


def generate_nonce() -> str:
    return secrets.token_urlsafe(16)


def generate_code_verifier(length: int = CODE_VERIFIER_MAX_LENGTH) -> str:
    if length < CODE_VERIFIER_MIN_LENGTH or length > CODE_VERIFIER_MAX_LENGTH:
        raise ConfigurationError(
            "code verifier length must be between "
            f"{CODE_VERIFIER_MIN_LENGTH} and {CODE_VERIFIER_MAX_LENGTH} characters"
        )
    return "".join(secrets.choice(CODE_VERIFIER_CHARSET) for _ in range(length))


def generate_code_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def build_authorization_url(
    *,
    authorization_url: str,
    client_id: str,
    redirect_uri: str,
    scope: str,
    state: str,
    code_challenge: str,
) -> str:
    query_params = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": scope,
        "state": state,
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
        "access_type": "offline",
        # Forces Google to issue a refresh token on every consent.
        "prompt": "consent",
    }
    return f"{authorization_url}?{urlencode(query_params)}"
