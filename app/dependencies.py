"""Common FastAPI dependencies."""

from __future__ import annotations

import uuid
from collections.abc import Generator
from typing import cast

from fastapi import Request
from sqlalchemy.orm import Session, sessionmaker

from app.auth.encryption import TokenCipher
from app.auth.errors import SessionError, ValidationError
from app.auth.sessions import OAuthSession, SessionCookieManager
from app.config import AppSettings
from app.integrations.google import GoogleClientProtocol


def get_app_settings(request: Request) -> AppSettings:
    return cast(AppSettings, request.app.state.settings)


def get_google_client(request: Request) -> GoogleClientProtocol:
    return cast(GoogleClientProtocol, request.app.state.google_client)


def get_cipher(request: Request) -> TokenCipher:
    return cast(TokenCipher, request.app.state.cipher)


def get_cookie_manager(request: Request) -> SessionCookieManager:
    return SessionCookieManager(get_app_settings(request), get_cipher(request))


def get_db_session(request: Request) -> Generator[Session]:
    session_factory = cast(sessionmaker[Session], request.app.state.session_maker)
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def get_oauth_session(request: Request) -> OAuthSession:
    return get_cookie_manager(request).load_oauth_session(request)


def require_session_user_id(session: OAuthSession) -> uuid.UUID:
    if session.user_id is None or session.site_id is None:
        raise ValidationError(
            "site selection has not been completed",
            code="site_setup_required",
        )
    try:
        return uuid.UUID(session.user_id)
    except ValueError as exc:
        raise SessionError("invalid session user", code="invalid_session") from exc
