"""Authentication helpers."""

from app.auth.encryption import EncryptedTokenPair, TokenCipher, generate_encryption_key
from app.auth.errors import (
    AuthError,
    ConfigurationError,
    DecryptionError,
    OAuthTokenError,
    SessionError,
    TokenNotFoundError,
    UpstreamError,
    ValidationError,
)
from app.auth.pkce import (
    build_authorization_url,
    generate_code_challenge,
    generate_code_verifier,
    generate_nonce,
    generate_state,
)

__all__ = [
    "AuthError",
    "ConfigurationError",
    "DecryptionError",
    "EncryptedTokenPair",
    "OAuthTokenError",
    "SessionError",
    "TokenCipher",
    "TokenNotFoundError",
    "UpstreamError",
    "ValidationError",
    "build_authorization_url",
    "generate_code_challenge",
    "generate_code_verifier",
    "generate_encryption_key",
    "generate_nonce",
    "generate_state",
]
