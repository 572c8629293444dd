"""Encrypted cookie sessions for the OAuth flow.

Two cookies carry all session state:

* the short-lived PKCE cookie, written when a flow starts and consumed by the
  callback exactly once;
* the long-lived OAuth cookie, written after a successful token exchange and
  later reduced to identifiers once the token is promoted to storage.

Both are HTTP-only, ``SameSite=Lax``, scoped to ``/`` and ``Secure`` when the
deployment asks for it.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from typing import Any

from fastapi import Request, Response

from app.auth.encryption import TokenCipher
from app.auth.errors import DecryptionError, SessionError
from app.config import AppSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PkceSession:
    tenant_id: str
    redirect_uri: str
    code_verifier: str
    state: str
    timestamp: int = field(default_factory=lambda: int(time.time() * 1000))

    def to_payload(self) -> dict[str, Any]:
        return {
            "tenantId": self.tenant_id,
            "redirectUri": self.redirect_uri,
            "codeVerifier": self.code_verifier,
            "state": self.state,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> PkceSession:
        return cls(
            tenant_id=_required_str(payload, "tenantId"),
            redirect_uri=_required_str(payload, "redirectUri"),
            code_verifier=_required_str(payload, "codeVerifier"),
            state=_required_str(payload, "state"),
            timestamp=_optional_int(payload.get("timestamp")) or 0,
        )


@dataclass(frozen=True, slots=True)
class OAuthTokens:
    access_token: str
    refresh_token: str | None
    token_type: str
    scope: str
    expires_at: datetime | None
    expires_in: int

    @classmethod
    def issued(
        cls,
        *,
        access_token: str,
        refresh_token: str | None,
        token_type: str,
        scope: str,
        expires_in: int,
        now: datetime | None = None,
    ) -> OAuthTokens:
        issued_at = now or datetime.now(UTC)
        return cls(
            access_token=access_token,
            refresh_token=refresh_token,
            token_type=token_type,
            scope=scope,
            expires_at=issued_at + timedelta(seconds=expires_in),
            expires_in=expires_in,
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "token_type": self.token_type,
            "scope": self.scope,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "expires_in": self.expires_in,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> OAuthTokens:
        access_token = payload.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise SessionError("session carries no access token", code="missing_access_token")

        refresh_token = payload.get("refresh_token")
        return cls(
            access_token=access_token,
            refresh_token=refresh_token if isinstance(refresh_token, str) else None,
            token_type=str(payload.get("token_type") or "Bearer"),
            scope=str(payload.get("scope") or ""),
            expires_at=parse_timestamp(payload.get("expires_at")),
            expires_in=_optional_int(payload.get("expires_in")) or 0,
        )


@dataclass(frozen=True, slots=True)
class OAuthSession:
    profile: dict[str, Any]
    tenant_id: str
    timestamp: str
    tokens: dict[str, Any] | None = None
    selected_sites: dict[str, Any] | None = None
    site_id: str | None = None
    user_id: str | None = None

    def oauth_tokens(self) -> OAuthTokens:
        if not self.tokens:
            raise SessionError("session carries no access token", code="missing_access_token")
        return OAuthTokens.from_payload(self.tokens)

    def with_tokens(self, tokens: OAuthTokens) -> OAuthSession:
        return replace(self, tokens=tokens.to_payload())

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "profile": self.profile,
            "tenantId": self.tenant_id,
            "timestamp": self.timestamp,
        }
        if self.tokens is not None:
            payload["tokens"] = self.tokens
        if self.selected_sites is not None:
            payload["selectedSites"] = self.selected_sites
        if self.site_id is not None:
            payload["site_id"] = self.site_id
        if self.user_id is not None:
            payload["user_id"] = self.user_id
            payload["tenant_id"] = self.tenant_id
        return payload

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> OAuthSession:
        profile = payload.get("profile")
        if not isinstance(profile, Mapping):
            raise DecryptionError("oauth session is missing its profile")

        tenant_id = payload.get("tenantId") or payload.get("tenant_id")
        if not isinstance(tenant_id, str) or not tenant_id:
            raise DecryptionError("oauth session is missing its tenant")

        tokens = payload.get("tokens")
        selected_sites = payload.get("selectedSites")
        return cls(
            profile=dict(profile),
            tenant_id=tenant_id,
            timestamp=str(payload.get("timestamp") or ""),
            tokens=dict(tokens) if isinstance(tokens, Mapping) else None,
            selected_sites=dict(selected_sites) if isinstance(selected_sites, Mapping) else None,
            site_id=_optional_str(payload.get("site_id")),
            user_id=_optional_str(payload.get("user_id")),
        )


class SessionCookieManager:
    def __init__(self, settings: AppSettings, cipher: TokenCipher) -> None:
        self._settings = settings
        self._cipher = cipher

    def issue_pkce_session(self, response: Response, session: PkceSession) -> None:
        self._set_cookie(
            response,
            key=self._settings.pkce_cookie_name,
            value=self._cipher.encrypt_json(session.to_payload()),
            max_age=self._settings.pkce_cookie_max_age_seconds,
        )

    def load_pkce_session(self, request: Request) -> PkceSession:
        raw_value = request.cookies.get(self._settings.pkce_cookie_name)
        if not raw_value:
            raise SessionError("pkce session cookie is missing", code="session_expired")

        payload = self._cipher.decrypt_json(raw_value)
        return PkceSession.from_payload(payload)

    def clear_pkce_session(self, response: Response) -> None:
        self._delete_cookie(response, key=self._settings.pkce_cookie_name)

    def issue_oauth_session(self, response: Response, session: OAuthSession) -> None:
        self._set_cookie(
            response,
            key=self._settings.oauth_cookie_name,
            value=self._cipher.encrypt_json(session.to_payload()),
            max_age=self._settings.oauth_cookie_max_age_seconds,
        )

    def load_oauth_session(self, request: Request) -> OAuthSession:
        raw_value = request.cookies.get(self._settings.oauth_cookie_name)
        if not raw_value:
            raise SessionError("oauth session cookie is missing", code="authentication_required")

        payload = self._cipher.decrypt_json(raw_value)
        return OAuthSession.from_payload(payload)

    def clear_oauth_session(self, response: Response) -> None:
        self._delete_cookie(response, key=self._settings.oauth_cookie_name)

    def _set_cookie(self, response: Response, *, key: str, value: str, max_age: int) -> None:
        response.set_cookie(
            key=key,
            value=value,
            max_age=max_age,
            path="/",
            httponly=True,
            samesite="lax",
            secure=self._settings.cookie_secure,
        )

    def _delete_cookie(self, response: Response, *, key: str) -> None:
        response.delete_cookie(
            key=key,
            path="/",
            httponly=True,
            samesite="lax",
            secure=self._settings.cookie_secure,
        )


def parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return _as_utc(value)
    if not isinstance(value, str) or not value:
        return None

    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.debug("ignoring unparseable token expiry")
        return None
    return _as_utc(parsed)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _required_str(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value:
        raise DecryptionError(f"session field '{key}' is missing")
    return value


def _optional_str(value: Any) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None


def _optional_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None
