"""Access-token expiry checks and refresh-token exchange.

Callers that are about to hit a Google API ask the policy for an access token.
A token whose expiry is in the past, unknown or unparseable is refreshed
exactly once through the token endpoint, the new pair is encrypted and
persisted, and only then is the fresh access token handed back. A failed
refresh raises ``OAuthTokenError`` so the downstream call never runs with a
stale token.

Two concurrent requests for the same user may both refresh; the second write
wins and both tokens stay valid at Google, so no lock is taken.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Protocol

from sqlalchemy.orm import Session

from app.auth.encryption import TokenCipher
from app.auth.errors import OAuthTokenError, TokenNotFoundError, UpstreamError
from app.auth.sessions import OAuthTokens
from app.integrations.google import GoogleClientProtocol, GoogleTokenResponse
from app.repositories.oauth_tokens import OauthTokenRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StoredToken:
    encrypted_access_token: str
    encrypted_refresh_token: str
    expires_at: datetime | None


class TokenStore(Protocol):
    def load(self, user_id: uuid.UUID) -> StoredToken | None: ...

    def save(
        self,
        user_id: uuid.UUID,
        *,
        encrypted_access_token: str,
        encrypted_refresh_token: str,
        expires_at: datetime,
    ) -> None: ...


class DatabaseTokenStore(TokenStore):
    """Token store backed by the ``oauth_token`` table; commits on save."""

    def __init__(self, session: Session) -> None:
        self._session = session
        self._repo = OauthTokenRepository(session)

    def load(self, user_id: uuid.UUID) -> StoredToken | None:
        row = self._repo.get_for_user(user_id)
        if row is None:
            return None
        return StoredToken(
            encrypted_access_token=row.access_token,
            encrypted_refresh_token=row.refresh_token,
            expires_at=row.expires_at,
        )

    def save(
        self,
        user_id: uuid.UUID,
        *,
        encrypted_access_token: str,
        encrypted_refresh_token: str,
        expires_at: datetime,
    ) -> None:
        row = self._repo.get_for_user(user_id)
        if row is None:
            raise TokenNotFoundError("stored token disappeared during refresh")
        self._repo.update_tokens(
            row,
            encrypted_access_token=encrypted_access_token,
            encrypted_refresh_token=encrypted_refresh_token,
            expires_at=expires_at,
        )
        self._session.commit()


def is_token_expired(expires_at: datetime | None, *, now: datetime | None = None) -> bool:
    if expires_at is None:
        return True
    current = now or datetime.now(UTC)
    return _as_utc(expires_at) <= current


class TokenRefreshPolicy:
    def __init__(
        self,
        *,
        google_client: GoogleClientProtocol,
        cipher: TokenCipher,
        token_store: TokenStore | None = None,
    ) -> None:
        self._google_client = google_client
        self._cipher = cipher
        self._token_store = token_store

    async def get_valid_access_token(
        self,
        user_id: uuid.UUID,
        *,
        now: datetime | None = None,
    ) -> str:
        if self._token_store is None:
            raise TokenNotFoundError("no token store configured")

        stored = self._token_store.load(user_id)
        if stored is None:
            raise TokenNotFoundError(f"no stored Google token for user {user_id}")

        access_token = self._cipher.decrypt(stored.encrypted_access_token)
        refresh_token = self._cipher.decrypt(stored.encrypted_refresh_token)
        current = now or datetime.now(UTC)

        if not is_token_expired(stored.expires_at, now=current):
            return access_token

        logger.info("refreshing expired Google access token for user %s", user_id)
        token_response = await self._refresh(refresh_token)
        new_refresh_token = token_response.refresh_token or refresh_token
        new_expires_at = current + timedelta(seconds=token_response.expires_in)

        encrypted = self._cipher.encrypt_tokens(
            access_token=token_response.access_token,
            refresh_token=new_refresh_token,
        )
        self._token_store.save(
            user_id,
            encrypted_access_token=encrypted.encrypted_access_token,
            encrypted_refresh_token=encrypted.encrypted_refresh_token,
            expires_at=new_expires_at,
        )
        return token_response.access_token

    async def ensure_fresh(
        self,
        tokens: OAuthTokens,
        *,
        now: datetime | None = None,
    ) -> tuple[OAuthTokens, bool]:
        """Refresh cookie-held tokens; the flag tells whether the cookie must be rewritten."""
        current = now or datetime.now(UTC)
        if not is_token_expired(tokens.expires_at, now=current):
            return tokens, False

        if not tokens.refresh_token:
            raise OAuthTokenError("access token expired and no refresh token is available")

        logger.info("refreshing expired Google access token held in session cookie")
        token_response = await self._refresh(tokens.refresh_token)
        refreshed = OAuthTokens.issued(
            access_token=token_response.access_token,
            refresh_token=token_response.refresh_token or tokens.refresh_token,
            token_type=token_response.token_type,
            scope=token_response.scope or tokens.scope,
            expires_in=token_response.expires_in,
            now=current,
        )
        return refreshed, True

    async def _refresh(self, refresh_token: str) -> GoogleTokenResponse:
        if not refresh_token:
            raise OAuthTokenError("no refresh token is available")
        try:
            return await self._google_client.refresh_access_token(refresh_token=refresh_token)
        except OAuthTokenError:
            raise
        except UpstreamError as exc:
            logger.warning("Google token refresh failed: %s", type(exc).__name__)
            raise OAuthTokenError(
                "token refresh failed", status=exc.status, body=exc.body
            ) from exc


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
