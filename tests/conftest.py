from __future__ import annotations

from collections.abc import Generator, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.auth.encryption import TokenCipher
from app.auth.sessions import OAuthSession
from app.config import AppSettings
from app.db import models as _models  # noqa: F401
from app.db.base import Base
from app.integrations.google import (
    Ga4PropertySummary,
    Ga4Report,
    GoogleTokenResponse,
    GoogleUserProfile,
    SearchAnalyticsRow,
    SearchConsoleSite,
)
from app.main import create_app

TEST_ENCRYPTION_KEY = "0123456789abcdef" * 4


@dataclass(slots=True)
class StubGoogleClient:
    token_result: GoogleTokenResponse | Exception = field(
        default_factory=lambda: GoogleTokenResponse(
            access_token="access-token",
            expires_in=3600,
            scope="openid email",
            refresh_token="refresh-token",
        )
    )
    refresh_result: GoogleTokenResponse | Exception = field(
        default_factory=lambda: GoogleTokenResponse(
            access_token="refreshed-access-token",
            expires_in=3600,
        )
    )
    profile_result: GoogleUserProfile | Exception = field(
        default_factory=lambda: GoogleUserProfile(
            id="google-user-1",
            email="owner@example.com",
            name="Site Owner",
        )
    )
    properties_result: tuple[Ga4PropertySummary, ...] | Exception = ()
    sites_result: tuple[SearchConsoleSite, ...] | Exception = ()
    report_result: Ga4Report | Exception = field(
        default_factory=lambda: Ga4Report(
            dimension_headers=(),
            metric_headers=(),
            rows=(),
            row_count=0,
        )
    )
    realtime_result: Ga4Report | Exception = field(
        default_factory=lambda: Ga4Report(
            dimension_headers=(),
            metric_headers=(),
            rows=(),
            row_count=0,
        )
    )
    search_result: tuple[SearchAnalyticsRow, ...] | Exception = ()
    token_calls: list[dict[str, str]] = field(default_factory=list)
    refresh_calls: list[str] = field(default_factory=list)
    profile_calls: list[str] = field(default_factory=list)
    api_calls: list[dict[str, Any]] = field(default_factory=list)

    async def exchange_code_for_tokens(
        self,
        *,
        code: str,
        code_verifier: str,
        redirect_uri: str,
    ) -> GoogleTokenResponse:
        self.token_calls.append(
            {
                "code": code,
                "code_verifier": code_verifier,
                "redirect_uri": redirect_uri,
            }
        )
        return _result(self.token_result)

    async def refresh_access_token(self, *, refresh_token: str) -> GoogleTokenResponse:
        self.refresh_calls.append(refresh_token)
        return _result(self.refresh_result)

    async def fetch_profile(self, *, access_token: str) -> GoogleUserProfile:
        self.profile_calls.append(access_token)
        return _result(self.profile_result)

    async def list_account_summaries(
        self, *, access_token: str
    ) -> tuple[Ga4PropertySummary, ...]:
        self.api_calls.append({"method": "list_account_summaries", "access_token": access_token})
        return _result(self.properties_result)

    async def list_sites(self, *, access_token: str) -> tuple[SearchConsoleSite, ...]:
        self.api_calls.append({"method": "list_sites", "access_token": access_token})
        return _result(self.sites_result)

    async def run_report(
        self,
        *,
        access_token: str,
        property_id: str,
        body: Mapping[str, Any],
    ) -> Ga4Report:
        self.api_calls.append(
            {
                "method": "run_report",
                "access_token": access_token,
                "property_id": property_id,
                "body": dict(body),
            }
        )
        return _result(self.report_result)

    async def run_realtime_report(
        self,
        *,
        access_token: str,
        property_id: str,
        body: Mapping[str, Any],
    ) -> Ga4Report:
        self.api_calls.append(
            {
                "method": "run_realtime_report",
                "access_token": access_token,
                "property_id": property_id,
                "body": dict(body),
            }
        )
        return _result(self.realtime_result)

    async def query_search_analytics(
        self,
        *,
        access_token: str,
        site_url: str,
        body: Mapping[str, Any],
    ) -> tuple[SearchAnalyticsRow, ...]:
        self.api_calls.append(
            {
                "method": "query_search_analytics",
                "access_token": access_token,
                "site_url": site_url,
                "body": dict(body),
            }
        )
        return _result(self.search_result)


def _result(value: Any) -> Any:
    if isinstance(value, Exception):
        raise value
    return value


def build_settings(**overrides: Any) -> AppSettings:
    values: dict[str, Any] = {
        "app_env": "test",
        "encryption_key": TEST_ENCRYPTION_KEY,
        "google_client_id": "client-id",
        "google_client_secret": "client-secret",
        "google_http_timeout_seconds": 2.0,
    }
    values.update(overrides)
    return AppSettings(**values)


def cookie_value(raw: str) -> str:
    return raw.strip('"')


@pytest.fixture()
def app_settings() -> AppSettings:
    return build_settings()


@pytest.fixture()
def cipher() -> TokenCipher:
    return TokenCipher(TEST_ENCRYPTION_KEY)


@pytest.fixture()
def db_engine() -> Generator[Engine]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection: Any, _: Any) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture()
def session_factory(db_engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(
        bind=db_engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )


@pytest.fixture()
def db_session(session_factory: sessionmaker[Session]) -> Generator[Session]:
    with session_factory() as session:
        yield session


@pytest.fixture()
def stub_google_client() -> StubGoogleClient:
    return StubGoogleClient()


@pytest.fixture()
def test_app(
    app_settings: AppSettings,
    session_factory: sessionmaker[Session],
    stub_google_client: StubGoogleClient,
) -> FastAPI:
    app = create_app(settings=app_settings)
    app.state.session_maker = session_factory
    app.state.google_client = stub_google_client
    return app


@pytest.fixture()
def client(test_app: FastAPI) -> Generator[TestClient]:
    with TestClient(test_app) as test_client:
        yield test_client


def set_oauth_cookie(client: TestClient, cipher: TokenCipher, session: OAuthSession) -> None:
    client.cookies.set("google_oauth_data", cipher.encrypt_json(session.to_payload()))


def connected_session(
    *,
    expires_at: datetime | None = None,
    refresh_token: str | None = "refresh-token",
) -> OAuthSession:
    """Session as written by a successful callback, before site setup."""
    expiry = expires_at or datetime.now(UTC) + timedelta(hours=1)
    return OAuthSession(
        profile={"id": "google-user-1", "email": "owner@example.com", "name": "Site Owner"},
        tenant_id="tenant-1",
        timestamp=datetime.now(UTC).isoformat(),
        tokens={
            "access_token": "access-token",
            "refresh_token": refresh_token,
            "token_type": "Bearer",
            "scope": "openid email",
            "expires_at": expiry.isoformat(),
            "expires_in": 3600,
        },
    )


def adopt_oauth_cookie(client: TestClient, response: httpx.Response) -> None:
    """Replace the client's OAuth cookie with the one the response wrote."""
    value = cookie_value(response.cookies["google_oauth_data"])
    client.cookies.clear()
    client.cookies.set("google_oauth_data", value)
