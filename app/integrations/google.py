"""Google OAuth, Analytics and Search Console client with strict payload decoding."""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol
from urllib.parse import quote

import httpx

from app.auth.errors import OAuthTokenError, UpstreamError
from app.config import AppSettings

logger = logging.getLogger(__name__)

HTTPClientFactory = Callable[..., httpx.AsyncClient]

_MAX_ACCOUNT_SUMMARY_PAGES = 20


class GoogleClientError(UpstreamError):
    """Base Google client exception."""

    code = "google_api_error"


class GoogleTokenExchangeError(GoogleClientError):
    """Raised when the authorization-code exchange fails."""

    code = "callback_failed"


class GoogleProfileError(GoogleClientError):
    """Raised when the userinfo request fails or is malformed."""

    code = "profile_fetch_failed"


class GoogleTokenRefreshError(GoogleClientError, OAuthTokenError):
    """Raised when a refresh-token grant fails."""

    code = "token_refresh_failed"


class GoogleApiError(GoogleClientError):
    """Raised when an Analytics or Search Console call fails or is malformed."""


@dataclass(frozen=True, slots=True)
class GoogleTokenResponse:
    access_token: str
    expires_in: int
    token_type: str = "Bearer"
    scope: str = ""
    refresh_token: str | None = None
    id_token: str | None = None


@dataclass(frozen=True, slots=True)
class GoogleUserProfile:
    id: str
    email: str | None
    name: str | None
    picture: str | None = None
    verified_email: bool | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "picture": self.picture,
            "verified_email": self.verified_email,
        }


@dataclass(frozen=True, slots=True)
class Ga4PropertySummary:
    account_id: str
    account_display_name: str | None
    property_id: str
    display_name: str | None
    property_type: str
    parent: str | None

    def to_payload(self) -> dict[str, Any]:
        return {
            "accountId": self.account_id,
            "accountDisplayName": self.account_display_name,
            "propertyId": self.property_id,
            "displayName": self.display_name,
            "propertyType": self.property_type,
            "parent": self.parent,
        }


@dataclass(frozen=True, slots=True)
class SearchConsoleSite:
    site_url: str
    permission_level: str

    @property
    def verified(self) -> bool:
        return self.permission_level != "siteUnverifiedUser"

    @property
    def is_domain_property(self) -> bool:
        return self.site_url.startswith("sc-domain:")

    def to_payload(self) -> dict[str, Any]:
        return {
            "siteUrl": self.site_url,
            "permissionLevel": self.permission_level,
            "verified": self.verified,
        }


@dataclass(frozen=True, slots=True)
class Ga4ReportRow:
    dimensions: dict[str, str]
    metrics: dict[str, str]


@dataclass(frozen=True, slots=True)
class Ga4Report:
    dimension_headers: tuple[str, ...]
    metric_headers: tuple[str, ...]
    rows: tuple[Ga4ReportRow, ...]
    row_count: int
    sampling_metadatas: tuple[dict[str, Any], ...] = ()


@dataclass(frozen=True, slots=True)
class SearchAnalyticsRow:
    keys: tuple[str, ...]
    clicks: float
    impressions: float
    ctr: float
    position: float


class GoogleClientProtocol(Protocol):
    async def exchange_code_for_tokens(
        self,
        *,
        code: str,
        code_verifier: str,
        redirect_uri: str,
    ) -> GoogleTokenResponse: ...

    async def refresh_access_token(self, *, refresh_token: str) -> GoogleTokenResponse: ...

    async def fetch_profile(self, *, access_token: str) -> GoogleUserProfile: ...

    async def list_account_summaries(
        self, *, access_token: str
    ) -> tuple[Ga4PropertySummary, ...]: ...

    async def list_sites(self, *, access_token: str) -> tuple[SearchConsoleSite, ...]: ...

    async def run_report(
        self,
        *,
        access_token: str,
        property_id: str,
        body: Mapping[str, Any],
    ) -> Ga4Report: ...

    async def run_realtime_report(
        self,
        *,
        access_token: str,
        property_id: str,
        body: Mapping[str, Any],
    ) -> Ga4Report: ...

    async def query_search_analytics(
        self,
        *,
        access_token: str,
        site_url: str,
        body: Mapping[str, Any],
    ) -> tuple[SearchAnalyticsRow, ...]: ...


class GoogleClient(GoogleClientProtocol):
    def __init__(
        self,
        settings: AppSettings,
        *,
        http_client_factory: HTTPClientFactory = httpx.AsyncClient,
    ) -> None:
        self._settings = settings
        self._http_client_factory = http_client_factory

    async def exchange_code_for_tokens(
        self,
        *,
        code: str,
        code_verifier: str,
        redirect_uri: str,
    ) -> GoogleTokenResponse:
        payload = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "client_id": self._settings.google_client_id,
            "client_secret": self._settings.google_client_secret,
            "code_verifier": code_verifier,
        }
        response = await self._request(
            "POST",
            self._settings.google_token_url,
            error_cls=GoogleTokenExchangeError,
            action="token exchange",
            data=payload,
        )
        return parse_token_payload(
            _json_object(response, error_cls=GoogleTokenExchangeError),
            error_cls=GoogleTokenExchangeError,
        )

    async def refresh_access_token(self, *, refresh_token: str) -> GoogleTokenResponse:
        payload = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self._settings.google_client_id,
            "client_secret": self._settings.google_client_secret,
        }
        response = await self._request(
            "POST",
            self._settings.google_token_url,
            error_cls=GoogleTokenRefreshError,
            action="token refresh",
            data=payload,
        )
        return parse_token_payload(
            _json_object(response, error_cls=GoogleTokenRefreshError),
            error_cls=GoogleTokenRefreshError,
        )

    async def fetch_profile(self, *, access_token: str) -> GoogleUserProfile:
        response = await self._request(
            "GET",
            self._settings.google_userinfo_url,
            error_cls=GoogleProfileError,
            action="profile request",
            headers=_bearer(access_token),
        )
        return parse_profile_payload(_json_object(response, error_cls=GoogleProfileError))

    async def list_account_summaries(
        self, *, access_token: str
    ) -> tuple[Ga4PropertySummary, ...]:
        url = f"{self._settings.google_analytics_admin_url}/accountSummaries"
        properties: list[Ga4PropertySummary] = []
        page_token: str | None = None

        for _ in range(_MAX_ACCOUNT_SUMMARY_PAGES):
            params = {"pageSize": "200"}
            if page_token:
                params["pageToken"] = page_token
            response = await self._request(
                "GET",
                url,
                error_cls=GoogleApiError,
                action="GA4 account summaries request",
                headers=_bearer(access_token),
                params=params,
            )
            data = _json_object(response, error_cls=GoogleApiError)
            properties.extend(parse_account_summaries_payload(data))

            next_token = data.get("nextPageToken")
            if not isinstance(next_token, str) or not next_token:
                break
            page_token = next_token

        return tuple(properties)

    async def list_sites(self, *, access_token: str) -> tuple[SearchConsoleSite, ...]:
        response = await self._request(
            "GET",
            f"{self._settings.google_search_console_url}/sites",
            error_cls=GoogleApiError,
            action="Search Console sites request",
            headers=_bearer(access_token),
        )
        return parse_sites_payload(_json_object(response, error_cls=GoogleApiError))

    async def run_report(
        self,
        *,
        access_token: str,
        property_id: str,
        body: Mapping[str, Any],
    ) -> Ga4Report:
        property_name = normalize_property_name(property_id)
        response = await self._request(
            "POST",
            f"{self._settings.google_analytics_data_url}/{property_name}:runReport",
            error_cls=GoogleApiError,
            action="GA4 report request",
            headers=_bearer(access_token),
            json=dict(body),
        )
        return parse_report_payload(_json_object(response, error_cls=GoogleApiError))

    async def run_realtime_report(
        self,
        *,
        access_token: str,
        property_id: str,
        body: Mapping[str, Any],
    ) -> Ga4Report:
        property_name = normalize_property_name(property_id)
        response = await self._request(
            "POST",
            f"{self._settings.google_analytics_data_url}/{property_name}:runRealtimeReport",
            error_cls=GoogleApiError,
            action="GA4 realtime report request",
            headers=_bearer(access_token),
            json=dict(body),
        )
        return parse_report_payload(_json_object(response, error_cls=GoogleApiError))

    async def query_search_analytics(
        self,
        *,
        access_token: str,
        site_url: str,
        body: Mapping[str, Any],
    ) -> tuple[SearchAnalyticsRow, ...]:
        encoded_site = quote(site_url, safe="")
        response = await self._request(
            "POST",
            f"{self._settings.google_search_console_url}/sites/{encoded_site}/searchAnalytics/query",
            error_cls=GoogleApiError,
            action="Search Console analytics query",
            headers=_bearer(access_token),
            json=dict(body),
        )
        return parse_search_analytics_payload(
            _json_object(response, error_cls=GoogleApiError)
        )

    async def _request(
        self,
        method: str,
        url: str,
        *,
        error_cls: type[GoogleClientError],
        action: str,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            async with self._http_client_factory(
                timeout=self._settings.google_http_timeout_seconds
            ) as client:
                response = await client.request(method, url, **kwargs)
        except httpx.RequestError as exc:
            logger.warning("google %s failed: %s", action, type(exc).__name__)
            raise error_cls(f"{action} failed") from exc

        if response.status_code >= 400:
            logger.warning("google %s failed with status=%s", action, response.status_code)
            raise error_cls(
                f"{action} failed with status={response.status_code}",
                status=response.status_code,
                body=response.text,
            )
        return response


def normalize_property_name(property_id: str) -> str:
    value = property_id.strip()
    return value if value.startswith("properties/") else f"properties/{value}"


def parse_token_payload(
    data: Mapping[str, Any],
    *,
    error_cls: type[GoogleClientError] = GoogleTokenExchangeError,
) -> GoogleTokenResponse:
    access_token = data.get("access_token")
    if not isinstance(access_token, str) or not access_token:
        raise error_cls("token response missing access_token")

    expires_in = data.get("expires_in")
    if isinstance(expires_in, bool) or not isinstance(expires_in, int | float):
        raise error_cls("token response has invalid expires_in")

    refresh_token = data.get("refresh_token")
    if refresh_token is not None and not isinstance(refresh_token, str):
        raise error_cls("token response has invalid refresh_token")

    id_token = data.get("id_token")
    if id_token is not None and not isinstance(id_token, str):
        raise error_cls("token response has invalid id_token")

    return GoogleTokenResponse(
        access_token=access_token,
        expires_in=int(expires_in),
        token_type=_coerce_optional_str(data.get("token_type")) or "Bearer",
        scope=_coerce_optional_str(data.get("scope")) or "",
        refresh_token=refresh_token or None,
        id_token=id_token,
    )


def parse_profile_payload(data: Mapping[str, Any]) -> GoogleUserProfile:
    subject = _coerce_optional_str(data.get("id")) or _coerce_optional_str(data.get("sub"))
    if not subject:
        raise GoogleProfileError("profile response missing id")

    verified = data.get("verified_email")
    return GoogleUserProfile(
        id=subject,
        email=_coerce_optional_str(data.get("email")),
        name=_coerce_optional_str(data.get("name")),
        picture=_coerce_optional_str(data.get("picture")),
        verified_email=verified if isinstance(verified, bool) else None,
    )


def parse_account_summaries_payload(data: Mapping[str, Any]) -> list[Ga4PropertySummary]:
    accounts = _optional_list(data, "accountSummaries")
    properties: list[Ga4PropertySummary] = []

    for account in accounts:
        if not isinstance(account, Mapping):
            raise GoogleApiError("account summary must be an object")
        account_id = _coerce_optional_str(account.get("account"))
        if not account_id:
            raise GoogleApiError("account summary missing account")

        for summary in _optional_list(account, "propertySummaries"):
            if not isinstance(summary, Mapping):
                raise GoogleApiError("property summary must be an object")
            property_id = _coerce_optional_str(summary.get("property"))
            if not property_id:
                raise GoogleApiError("property summary missing property")

            properties.append(
                Ga4PropertySummary(
                    account_id=account_id,
                    account_display_name=_coerce_optional_str(account.get("displayName")),
                    property_id=property_id,
                    display_name=_coerce_optional_str(summary.get("displayName")),
                    property_type=_coerce_optional_str(summary.get("propertyType"))
                    or "PROPERTY_TYPE_UNSPECIFIED",
                    parent=_coerce_optional_str(summary.get("parent")),
                )
            )
    return properties


def parse_sites_payload(data: Mapping[str, Any]) -> tuple[SearchConsoleSite, ...]:
    sites: list[SearchConsoleSite] = []
    for entry in _optional_list(data, "siteEntry"):
        if not isinstance(entry, Mapping):
            raise GoogleApiError("site entry must be an object")
        site_url = _coerce_optional_str(entry.get("siteUrl"))
        permission_level = _coerce_optional_str(entry.get("permissionLevel"))
        if not site_url or not permission_level:
            raise GoogleApiError("site entry missing siteUrl or permissionLevel")
        sites.append(SearchConsoleSite(site_url=site_url, permission_level=permission_level))
    return tuple(sites)


def parse_report_payload(data: Mapping[str, Any]) -> Ga4Report:
    dimension_headers = tuple(_header_names(data, "dimensionHeaders"))
    metric_headers = tuple(_header_names(data, "metricHeaders"))

    rows: list[Ga4ReportRow] = []
    for row in _optional_list(data, "rows"):
        if not isinstance(row, Mapping):
            raise GoogleApiError("report row must be an object")
        dimension_values = _cell_values(row, "dimensionValues")
        metric_values = _cell_values(row, "metricValues")
        if len(dimension_values) != len(dimension_headers) or len(metric_values) != len(
            metric_headers
        ):
            raise GoogleApiError("report row does not match its headers")
        rows.append(
            Ga4ReportRow(
                dimensions=dict(zip(dimension_headers, dimension_values, strict=True)),
                metrics=dict(zip(metric_headers, metric_values, strict=True)),
            )
        )

    row_count = data.get("rowCount", len(rows))
    if isinstance(row_count, bool) or not isinstance(row_count, int):
        raise GoogleApiError("report rowCount must be an integer")

    return Ga4Report(
        dimension_headers=dimension_headers,
        metric_headers=metric_headers,
        rows=tuple(rows),
        row_count=row_count,
        sampling_metadatas=_sampling_metadatas(data),
    )


def parse_search_analytics_payload(data: Mapping[str, Any]) -> tuple[SearchAnalyticsRow, ...]:
    rows: list[SearchAnalyticsRow] = []
    for row in _optional_list(data, "rows"):
        if not isinstance(row, Mapping):
            raise GoogleApiError("search analytics row must be an object")
        keys = row.get("keys", [])
        if not isinstance(keys, list) or not all(isinstance(key, str) for key in keys):
            raise GoogleApiError("search analytics row keys must be strings")
        rows.append(
            SearchAnalyticsRow(
                keys=tuple(keys),
                clicks=_required_number(row, "clicks"),
                impressions=_required_number(row, "impressions"),
                ctr=_required_number(row, "ctr"),
                position=_required_number(row, "position"),
            )
        )
    return tuple(rows)


def _sampling_metadatas(data: Mapping[str, Any]) -> tuple[dict[str, Any], ...]:
    metadata = data.get("metadata")
    if metadata is None:
        return ()
    if not isinstance(metadata, Mapping):
        raise GoogleApiError("report metadata must be an object")

    entries = _optional_list(metadata, "samplingMetadatas")
    if not all(isinstance(entry, Mapping) for entry in entries):
        raise GoogleApiError("report samplingMetadatas entries must be objects")
    return tuple(dict(entry) for entry in entries)


def _bearer(access_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {access_token}"}


def _json_object(
    response: httpx.Response,
    *,
    error_cls: type[GoogleClientError],
) -> Mapping[str, Any]:
    try:
        data = response.json()
    except ValueError as exc:
        raise error_cls("upstream response is not valid JSON") from exc

    if not isinstance(data, Mapping):
        raise error_cls("upstream response root must be a JSON object")
    return data


def _optional_list(data: Mapping[str, Any], key: str) -> list[Any]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise GoogleApiError(f"field '{key}' must be a list")
    return value


def _header_names(data: Mapping[str, Any], key: str) -> list[str]:
    names: list[str] = []
    for header in _optional_list(data, key):
        name = header.get("name") if isinstance(header, Mapping) else None
        if not isinstance(name, str) or not name:
            raise GoogleApiError(f"{key} entries must carry a name")
        names.append(name)
    return names


def _cell_values(row: Mapping[str, Any], key: str) -> list[str]:
    values: list[str] = []
    for cell in _optional_list(row, key):
        value = cell.get("value") if isinstance(cell, Mapping) else None
        if not isinstance(value, str):
            raise GoogleApiError(f"{key} entries must carry a string value")
        values.append(value)
    return values


def _required_number(data: Mapping[str, Any], key: str) -> float:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise GoogleApiError(f"field '{key}' must be a number")
    if not math.isfinite(value):
        raise GoogleApiError(f"field '{key}' must be finite")
    return float(value)


def _coerce_optional_str(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return None
