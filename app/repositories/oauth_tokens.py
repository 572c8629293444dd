"""Repository for stored, encrypted OAuth tokens."""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.enums import OAuthProvider
from app.db.models import OauthToken


class OauthTokenRepository:
    """Rows hold ciphertext only; callers encrypt before writing."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get_for_user(
        self,
        user_id: uuid.UUID,
        *,
        provider: OAuthProvider = OAuthProvider.GOOGLE,
    ) -> OauthToken | None:
        statement = select(OauthToken).where(
            OauthToken.user_id == user_id,
            OauthToken.provider == provider,
        )
        return self._session.execute(statement).scalar_one_or_none()

    def upsert_for_user(
        self,
        user_id: uuid.UUID,
        *,
        encrypted_access_token: str,
        encrypted_refresh_token: str | None,
        expires_at: datetime,
        scopes: Sequence[str],
        provider: OAuthProvider = OAuthProvider.GOOGLE,
    ) -> OauthToken:
        """Insert or update a user's token row.

        ``encrypted_refresh_token=None`` keeps the stored refresh token; a new
        row cannot be created without one.
        """
        row = self.get_for_user(user_id, provider=provider)
        if row is None:
            if encrypted_refresh_token is None:
                raise ValueError("a new token row requires a refresh token")
            row = OauthToken(
                user_id=user_id,
                provider=provider,
                access_token=encrypted_access_token,
                refresh_token=encrypted_refresh_token,
                expires_at=expires_at,
                scopes=list(scopes),
            )
            self._session.add(row)
        else:
            row.access_token = encrypted_access_token
            if encrypted_refresh_token is not None:
                row.refresh_token = encrypted_refresh_token
            row.expires_at = expires_at
            row.scopes = list(scopes)

        self._session.flush()
        return row

    def update_tokens(
        self,
        row: OauthToken,
        *,
        encrypted_access_token: str,
        encrypted_refresh_token: str,
        expires_at: datetime,
    ) -> OauthToken:
        row.access_token = encrypted_access_token
        row.refresh_token = encrypted_refresh_token
        row.expires_at = expires_at
        self._session.flush()
        return row
