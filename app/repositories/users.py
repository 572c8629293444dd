"""Repositories for app user persistence."""

from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.models import AppUser


class UserRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get_by_id(self, user_id: uuid.UUID) -> AppUser | None:
        return self._session.get(AppUser, user_id)

    def get_by_google_user_id(self, google_user_id: str) -> AppUser | None:
        statement = select(AppUser).where(AppUser.google_user_id == google_user_id)
        return self._session.execute(statement).scalar_one_or_none()

    def upsert_google_user(
        self,
        *,
        tenant_id: str,
        google_user_id: str,
        email: str | None,
        name: str | None,
    ) -> AppUser:
        existing = self.get_by_google_user_id(google_user_id)
        if existing is None:
            existing = AppUser(
                tenant_id=tenant_id,
                google_user_id=google_user_id,
                email=email,
                name=name,
            )
            self._session.add(existing)
        else:
            existing.tenant_id = tenant_id
            existing.email = email
            existing.name = name

        self._session.flush()
        return existing
