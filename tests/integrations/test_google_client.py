from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any
from urllib.parse import parse_qs

import httpx
import pytest

from app.integrations.google import (
    GoogleApiError,
    GoogleClient,
    GoogleProfileError,
    GoogleTokenExchangeError,
    GoogleTokenRefreshError,
    normalize_property_name,
    parse_report_payload,
    parse_token_payload,
)
from tests.conftest import build_settings


def _mock_client_factory(
    handler: Callable[[httpx.Request], httpx.Response],
) -> Callable[..., httpx.AsyncClient]:
    def factory(**kwargs: Any) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler), **kwargs)

    return factory


def _client(handler: Callable[[httpx.Request], httpx.Response]) -> GoogleClient:
    return GoogleClient(build_settings(), http_client_factory=_mock_client_factory(handler))


def test_exchange_code_posts_pkce_form() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "access_token": "ya29.token",
                "expires_in": 3599,
                "refresh_token": "1//refresh",
                "scope": "openid email",
                "token_type": "Bearer",
            },
        )

    tokens = asyncio.run(
        _client(handler).exchange_code_for_tokens(
            code="auth-code",
            code_verifier="verifier",
            redirect_uri="http://localhost:3001/auth/callback",
        )
    )

    assert tokens.access_token == "ya29.token"
    assert tokens.refresh_token == "1//refresh"
    assert tokens.expires_in == 3599
    assert seen[0].method == "POST"
    assert str(seen[0].url) == "https://oauth2.googleapis.com/token"
    form = parse_qs(seen[0].read().decode("utf-8"))
    assert form["grant_type"] == ["authorization_code"]
    assert form["code_verifier"] == ["verifier"]
    assert form["client_secret"] == ["client-secret"]


def test_exchange_code_failure_carries_status_and_body() -> None:
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(400, text='{"error":"invalid_grant"}')

    with pytest.raises(GoogleTokenExchangeError) as exc_info:
        asyncio.run(
            _client(handler).exchange_code_for_tokens(
                code="bad",
                code_verifier="verifier",
                redirect_uri="http://localhost:3001/auth/callback",
            )
        )

    assert exc_info.value.status == 400
    assert exc_info.value.body == '{"error":"invalid_grant"}'
    assert exc_info.value.code == "callback_failed"


def test_network_failure_is_wrapped() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(GoogleProfileError):
        asyncio.run(_client(handler).fetch_profile(access_token="token"))


def test_refresh_access_token_failure_is_token_refresh_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        form = parse_qs(request.read().decode("utf-8"))
        assert form["grant_type"] == ["refresh_token"]
        assert form["refresh_token"] == ["1//refresh"]
        return httpx.Response(401, text="unauthorized")

    with pytest.raises(GoogleTokenRefreshError) as exc_info:
        asyncio.run(_client(handler).refresh_access_token(refresh_token="1//refresh"))

    assert exc_info.value.code == "token_refresh_failed"


def test_fetch_profile_sends_bearer_token() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer ya29.token"
        return httpx.Response(
            200,
            json={"id": "1234", "email": "owner@example.com", "name": "Owner"},
        )

    profile = asyncio.run(_client(handler).fetch_profile(access_token="ya29.token"))

    assert profile.id == "1234"
    assert profile.email == "owner@example.com"


def test_list_account_summaries_follows_pagination() -> None:
    pages = {
        None: {
            "accountSummaries": [
                {
                    "account": "accounts/1",
                    "displayName": "Account One",
                    "propertySummaries": [
                        {
                            "property": "properties/100",
                            "displayName": "Main site",
                            "propertyType": "PROPERTY_TYPE_ORDINARY",
                            "parent": "accounts/1",
                        }
                    ],
                }
            ],
            "nextPageToken": "page-2",
        },
        "page-2": {
            "accountSummaries": [
                {
                    "account": "accounts/2",
                    "propertySummaries": [{"property": "properties/200"}],
                }
            ]
        },
    }

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1beta/accountSummaries"
        return httpx.Response(200, json=pages[request.url.params.get("pageToken")])

    properties = asyncio.run(_client(handler).list_account_summaries(access_token="token"))

    assert [item.property_id for item in properties] == ["properties/100", "properties/200"]
    assert properties[0].to_payload() == {
        "accountId": "accounts/1",
        "accountDisplayName": "Account One",
        "propertyId": "properties/100",
        "displayName": "Main site",
        "propertyType": "PROPERTY_TYPE_ORDINARY",
        "parent": "accounts/1",
    }
    assert properties[1].property_type == "PROPERTY_TYPE_UNSPECIFIED"


def test_list_sites_rejects_malformed_entries() -> None:
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"siteEntry": [{"siteUrl": "https://example.com/"}]})

    with pytest.raises(GoogleApiError):
        asyncio.run(_client(handler).list_sites(access_token="token"))


def test_run_report_posts_to_property_endpoint() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1beta/properties/123:runReport"
        assert json.loads(request.read())["limit"] == 10
        return httpx.Response(
            200,
            json={
                "dimensionHeaders": [{"name": "date"}],
                "metricHeaders": [{"name": "sessions", "type": "TYPE_INTEGER"}],
                "rows": [
                    {
                        "dimensionValues": [{"value": "20260101"}],
                        "metricValues": [{"value": "42"}],
                    }
                ],
                "rowCount": 1,
            },
        )

    report = asyncio.run(
        _client(handler).run_report(access_token="token", property_id="123", body={"limit": 10})
    )

    assert report.row_count == 1
    assert report.rows[0].dimensions == {"date": "20260101"}
    assert report.rows[0].metrics == {"sessions": "42"}


def test_run_realtime_report_posts_to_realtime_endpoint() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1beta/properties/123:runRealtimeReport"
        assert request.headers["authorization"] == "Bearer token"
        return httpx.Response(
            200,
            json={
                "dimensionHeaders": [{"name": "pagePath"}],
                "metricHeaders": [{"name": "activeUsers", "type": "TYPE_INTEGER"}],
                "rows": [
                    {
                        "dimensionValues": [{"value": "/pricing"}],
                        "metricValues": [{"value": "7"}],
                    }
                ],
                "rowCount": 1,
                "metadata": {"samplingMetadatas": [{"samplesReadCount": "10"}]},
            },
        )

    report = asyncio.run(
        _client(handler).run_realtime_report(
            access_token="token",
            property_id="properties/123",
            body={"limit": 100},
        )
    )

    assert report.rows[0].metrics == {"activeUsers": "7"}
    assert report.sampling_metadatas == ({"samplesReadCount": "10"},)


def test_parse_report_payload_rejects_malformed_sampling_metadata() -> None:
    with pytest.raises(GoogleApiError):
        parse_report_payload({"metadata": {"samplingMetadatas": ["ten"]}})


def test_non_utf8_response_body_is_client_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"\x80\x81not-json")

    with pytest.raises(GoogleProfileError, match="not valid JSON"):
        asyncio.run(_client(handler).fetch_profile(access_token="token"))


def test_query_search_analytics_encodes_site_url() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.raw_path.decode("ascii").startswith(
            "/webmasters/v3/sites/sc-domain%3Aexample.com/searchAnalytics/query"
        )
        return httpx.Response(
            200,
            json={
                "rows": [
                    {
                        "keys": ["seo tools", "https://example.com/"],
                        "clicks": 10,
                        "impressions": 200,
                        "ctr": 0.05,
                        "position": 3.2,
                    }
                ]
            },
        )

    rows = asyncio.run(
        _client(handler).query_search_analytics(
            access_token="token",
            site_url="sc-domain:example.com",
            body={"rowLimit": 1},
        )
    )

    assert rows[0].keys == ("seo tools", "https://example.com/")
    assert rows[0].clicks == 10.0


def test_parse_token_payload_requires_numeric_expiry() -> None:
    with pytest.raises(GoogleTokenExchangeError):
        parse_token_payload({"access_token": "token", "expires_in": "soon"})


def test_parse_report_payload_rejects_mismatched_rows() -> None:
    with pytest.raises(GoogleApiError):
        parse_report_payload(
            {
                "dimensionHeaders": [{"name": "date"}],
                "metricHeaders": [],
                "rows": [{"dimensionValues": []}],
            }
        )


def test_normalize_property_name() -> None:
    assert normalize_property_name("123") == "properties/123"
    assert normalize_property_name("properties/123") == "properties/123"


def test_query_search_analytics_rejects_non_finite_numbers() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            text='{"rows": [{"keys": ["a"], "clicks": NaN, "impressions": 1, '
            '"ctr": 0.1, "position": 1.0}]}',
        )

    with pytest.raises(GoogleApiError, match="finite"):
        asyncio.run(
            _client(handler).query_search_analytics(
                access_token="token",
                site_url="https://example.com/",
                body={},
            )
        )
