"""Authentication error taxonomy.

Every error carries a stable ``code`` that is safe to show to clients (it is
used as the ``error`` value of JSON bodies and of error-page redirects) and an
HTTP ``status_code`` used when the error reaches a JSON endpoint.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base authentication exception."""

    code = "auth_error"
    status_code = 500

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code


class ConfigurationError(AuthError):
    """Raised when server configuration is missing or malformed."""

    code = "configuration_error"
    status_code = 500


class ValidationError(AuthError):
    """Raised when request parameters are missing or fail validation."""

    code = "invalid_request"
    status_code = 400


class SessionError(AuthError):
    """Raised when a session cookie is absent or unusable."""

    code = "session_expired"
    status_code = 401


class DecryptionError(SessionError):
    """Raised when a ciphertext token cannot be decrypted.

    The message never includes key material or the ciphertext itself.
    """

    code = "invalid_session"


class TokenNotFoundError(SessionError):
    """Raised when no stored token exists for a user."""

    code = "token_not_found"


class UpstreamError(AuthError):
    """Raised when a Google endpoint answers with a non-2xx status."""

    code = "upstream_error"
    status_code = 502

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message, code=code)
        self.status = status
        self.body = body


class OAuthTokenError(UpstreamError):
    """Raised when a refresh-token grant fails."""

    code = "token_refresh_failed"
