from __future__ import annotations

import base64
from urllib.parse import parse_qs, urlparse

import httpx
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.auth.encryption import TokenCipher
from app.auth.pkce import generate_code_challenge
from app.config import AppSettings
from app.integrations.google import GoogleClient, GoogleProfileError, GoogleTokenExchangeError
from app.main import create_app
from tests.conftest import StubGoogleClient, build_settings, cookie_value

PKCE_COOKIE = "oauth-session"
OAUTH_COOKIE = "google_oauth_data"


def test_auth_start_returns_google_url_and_sets_pkce_cookie(
    client: TestClient,
    cipher: TokenCipher,
) -> None:
    response = client.get("/auth/start?tenantId=tenant-1")

    assert response.status_code == 200
    body = response.json()
    assert body["redirectUri"] == "http://testserver/auth/callback"
    assert body["authUrl"].startswith("https://accounts.google.com/o/oauth2/v2/auth?")

    params = parse_qs(urlparse(body["authUrl"]).query)
    assert params["client_id"] == ["client-id"]
    assert params["redirect_uri"] == ["http://testserver/auth/callback"]
    assert params["response_type"] == ["code"]
    assert params["code_challenge_method"] == ["S256"]
    assert params["access_type"] == ["offline"]
    assert params["prompt"] == ["consent"]
    assert params["scope"][0].split()[0] == "openid"

    pkce_payload = cipher.decrypt_json(cookie_value(response.cookies[PKCE_COOKIE]))
    assert pkce_payload["tenantId"] == "tenant-1"
    assert pkce_payload["state"] == params["state"][0]
    assert pkce_payload["redirectUri"] == "http://testserver/auth/callback"
    assert generate_code_challenge(pkce_payload["codeVerifier"]) == params["code_challenge"][0]

    header = _set_cookie_header(response, PKCE_COOKIE)
    assert "Max-Age=1800" in header
    assert "HttpOnly" in header
    assert "SameSite=lax" in header
    assert "Path=/" in header


def test_auth_start_uses_forwarded_proto(client: TestClient) -> None:
    response = client.get(
        "/auth/start?tenantId=tenant-1",
        headers={"host": "dash.example.com", "x-forwarded-proto": "https"},
    )

    assert response.status_code == 200
    assert response.json()["redirectUri"] == "https://dash.example.com/auth/callback"


def test_auth_start_requires_tenant_id(client: TestClient) -> None:
    response = client.get("/auth/start")

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_request"
    assert PKCE_COOKIE not in response.cookies


def test_auth_callback_success_sets_oauth_cookie_and_redirects_to_setup(
    client: TestClient,
    cipher: TokenCipher,
    stub_google_client: StubGoogleClient,
) -> None:
    start_response = client.get("/auth/start?tenantId=tenant-1")
    state = _state_from_start(start_response)
    pkce_payload = cipher.decrypt_json(cookie_value(start_response.cookies[PKCE_COOKIE]))

    response = client.get(
        f"/auth/callback?code=abc123&state={state}",
        follow_redirects=False,
    )

    assert response.status_code == 302
    assert response.headers["location"] == (
        "http://testserver/setup-sites?oauth_success=true&tenant=tenant-1"
    )
    assert stub_google_client.token_calls == [
        {
            "code": "abc123",
            "code_verifier": pkce_payload["codeVerifier"],
            "redirect_uri": "http://testserver/auth/callback",
        }
    ]
    assert stub_google_client.profile_calls == ["access-token"]

    oauth_payload = cipher.decrypt_json(cookie_value(response.cookies[OAUTH_COOKIE]))
    assert oauth_payload["tenantId"] == "tenant-1"
    assert oauth_payload["profile"]["id"] == "google-user-1"
    assert oauth_payload["tokens"]["access_token"] == "access-token"
    assert oauth_payload["tokens"]["refresh_token"] == "refresh-token"
    assert oauth_payload["tokens"]["expires_at"] is not None
    assert "Max-Age=86400" in _set_cookie_header(response, OAUTH_COOKIE)
    assert _is_cleared(response, PKCE_COOKIE)


def test_auth_callback_rejects_state_mismatch_without_token_exchange(
    client: TestClient,
    stub_google_client: StubGoogleClient,
) -> None:
    client.get("/auth/start?tenantId=tenant-1")

    response = client.get(
        "/auth/callback?code=abc123&state=forged-state",
        follow_redirects=False,
    )

    assert response.status_code == 302
    assert _error_code_from_location(response.headers["location"]) == "invalid_state"
    assert stub_google_client.token_calls == []
    assert _is_cleared(response, PKCE_COOKIE)
    assert OAUTH_COOKIE not in response.cookies


def test_auth_callback_without_pkce_cookie_reports_session_expired(
    client: TestClient,
    stub_google_client: StubGoogleClient,
) -> None:
    response = client.get("/auth/callback?code=abc123&state=some-state", follow_redirects=False)

    assert response.status_code == 302
    assert _error_code_from_location(response.headers["location"]) == "session_expired"
    assert stub_google_client.token_calls == []
    assert _is_cleared(response, PKCE_COOKIE)


def test_auth_callback_with_tampered_pkce_cookie_reports_invalid_session(
    client: TestClient,
    stub_google_client: StubGoogleClient,
) -> None:
    client.cookies.set(PKCE_COOKIE, base64.b64encode(b"x" * 48).decode("ascii"))

    response = client.get("/auth/callback?code=abc123&state=some-state", follow_redirects=False)

    assert response.status_code == 302
    assert _error_code_from_location(response.headers["location"]) == "invalid_session"
    assert stub_google_client.token_calls == []
    assert _is_cleared(response, PKCE_COOKIE)


def test_auth_callback_reports_missing_parameters(client: TestClient) -> None:
    client.get("/auth/start?tenantId=tenant-1")

    response = client.get("/auth/callback?code=abc123", follow_redirects=False)

    assert response.status_code == 302
    assert _error_code_from_location(response.headers["location"]) == "missing_parameters"
    assert _is_cleared(response, PKCE_COOKIE)


def test_auth_callback_forwards_provider_error(
    client: TestClient,
    stub_google_client: StubGoogleClient,
) -> None:
    response = client.get("/auth/callback?error=access_denied", follow_redirects=False)

    assert response.status_code == 302
    assert _error_code_from_location(response.headers["location"]) == "access_denied"
    assert stub_google_client.token_calls == []
    assert _is_cleared(response, PKCE_COOKIE)


def test_auth_callback_token_exchange_failure_carries_details(
    client: TestClient,
    stub_google_client: StubGoogleClient,
) -> None:
    stub_google_client.token_result = GoogleTokenExchangeError(
        "token exchange failed with status=400",
        status=400,
        body='{"error":"invalid_grant"}',
    )
    state = _state_from_start(client.get("/auth/start?tenantId=tenant-1"))

    response = client.get(f"/auth/callback?code=abc123&state={state}", follow_redirects=False)

    params = parse_qs(urlparse(response.headers["location"]).query)
    assert params["error"] == ["callback_failed"]
    assert params["details"] == ['{"error":"invalid_grant"}']
    assert stub_google_client.profile_calls == []
    assert OAUTH_COOKIE not in response.cookies
    assert _is_cleared(response, PKCE_COOKIE)


def test_auth_callback_profile_failure_reports_profile_fetch_failed(
    client: TestClient,
    stub_google_client: StubGoogleClient,
) -> None:
    stub_google_client.profile_result = GoogleProfileError("profile request failed")
    state = _state_from_start(client.get("/auth/start?tenantId=tenant-1"))

    response = client.get(f"/auth/callback?code=abc123&state={state}", follow_redirects=False)

    assert _error_code_from_location(response.headers["location"]) == "profile_fetch_failed"
    assert OAUTH_COOKIE not in response.cookies


def test_auth_callback_pkce_cookie_is_single_use(
    client: TestClient,
    stub_google_client: StubGoogleClient,
) -> None:
    state = _state_from_start(client.get("/auth/start?tenantId=tenant-1"))
    first = client.get(f"/auth/callback?code=abc123&state={state}", follow_redirects=False)
    assert first.status_code == 302

    replay = client.get(f"/auth/callback?code=abc123&state={state}", follow_redirects=False)

    assert _error_code_from_location(replay.headers["location"]) == "session_expired"
    assert len(stub_google_client.token_calls) == 1


def test_auth_clear_deletes_both_cookies_and_is_idempotent(client: TestClient) -> None:
    for _ in range(2):
        response = client.post("/auth/clear")

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert _is_cleared(response, PKCE_COOKIE)
        assert _is_cleared(response, OAUTH_COOKIE)


def test_error_page_maps_known_codes(client: TestClient) -> None:
    response = client.get("/auth/error?error=invalid_state&details=mismatch")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "error"
    assert body["error"] == "invalid_state"
    assert body["details"] == "mismatch"
    assert "restart" in body["message"]

    unknown = client.get("/auth/error?error=something_else").json()
    assert unknown["message"] == "Unknown error"


def test_auth_callback_undecodable_token_response_redirects_and_clears_pkce_cookie(
    test_app: FastAPI,
    client: TestClient,
    app_settings: AppSettings,
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"\x80\x81not-json")

    def factory(**kwargs: object) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler), **kwargs)

    test_app.state.google_client = GoogleClient(app_settings, http_client_factory=factory)
    state = _state_from_start(client.get("/auth/start?tenantId=tenant-1"))

    response = client.get(f"/auth/callback?code=abc123&state={state}", follow_redirects=False)

    assert response.status_code == 302
    assert _error_code_from_location(response.headers["location"]) == "callback_failed"
    assert _is_cleared(response, PKCE_COOKIE)
    assert OAUTH_COOKIE not in response.cookies


def test_auth_callback_unexpected_client_failure_redirects_and_clears_pkce_cookie(
    client: TestClient,
    stub_google_client: StubGoogleClient,
) -> None:
    stub_google_client.token_result = RuntimeError("connection pool exhausted")
    state = _state_from_start(client.get("/auth/start?tenantId=tenant-1"))

    response = client.get(f"/auth/callback?code=abc123&state={state}", follow_redirects=False)

    params = parse_qs(urlparse(response.headers["location"]).query)
    assert params["error"] == ["callback_failed"]
    assert "details" not in params
    assert _is_cleared(response, PKCE_COOKIE)


def test_auth_start_without_client_id_reports_configuration_error() -> None:
    app = create_app(settings=build_settings(google_client_id=""))

    with TestClient(app) as test_client:
        response = test_client.get("/auth/start?tenantId=tenant-1")

    assert response.status_code == 500
    assert response.json()["error"] == "configuration_error"
    assert PKCE_COOKIE not in response.cookies


def test_auth_callback_without_client_secret_reports_oauth_config_error(
    stub_google_client: StubGoogleClient,
) -> None:
    app = create_app(settings=build_settings(google_client_secret=""))
    app.state.google_client = stub_google_client

    with TestClient(app) as test_client:
        state = _state_from_start(test_client.get("/auth/start?tenantId=tenant-1"))
        response = test_client.get(
            f"/auth/callback?code=abc123&state={state}",
            follow_redirects=False,
        )

    assert _error_code_from_location(response.headers["location"]) == "oauth_config_error"
    assert stub_google_client.token_calls == []
    assert _is_cleared(response, PKCE_COOKIE)


def test_cookies_carry_secure_attribute_when_configured(
    stub_google_client: StubGoogleClient,
) -> None:
    app = create_app(settings=build_settings(cookie_secure=True))
    app.state.google_client = stub_google_client

    with TestClient(app, base_url="https://testserver") as test_client:
        start_response = test_client.get("/auth/start?tenantId=tenant-1")
        state = _state_from_start(start_response)
        response = test_client.get(
            f"/auth/callback?code=abc123&state={state}",
            follow_redirects=False,
        )

    assert "Secure" in _set_cookie_header(start_response, PKCE_COOKIE)
    assert response.status_code == 302
    assert "/setup-sites?" in response.headers["location"]
    assert "Secure" in _set_cookie_header(response, OAUTH_COOKIE)
    assert "HttpOnly" in _set_cookie_header(response, OAUTH_COOKIE)


def _state_from_start(response: httpx.Response) -> str:
    auth_url = response.json()["authUrl"]
    return parse_qs(urlparse(auth_url).query)["state"][0]


def _error_code_from_location(location: str) -> str:
    parsed = urlparse(location)
    assert parsed.path == "/auth/error"
    return parse_qs(parsed.query)["error"][0]


def _set_cookie_header(response: httpx.Response, name: str) -> str:
    headers = [
        header
        for header in response.headers.get_list("set-cookie")
        if header.startswith(f"{name}=")
    ]
    assert len(headers) == 1
    return headers[0]


def _is_cleared(response: httpx.Response, name: str) -> bool:
    return "Max-Age=0" in _set_cookie_header(response, name)
