"""External service integrations."""

from app.integrations.google import (
    Ga4PropertySummary,
    Ga4Report,
    Ga4ReportRow,
    GoogleApiError,
    GoogleClient,
    GoogleClientError,
    GoogleClientProtocol,
    GoogleProfileError,
    GoogleTokenExchangeError,
    GoogleTokenRefreshError,
    GoogleTokenResponse,
    GoogleUserProfile,
    SearchAnalyticsRow,
    SearchConsoleSite,
    parse_account_summaries_payload,
    parse_profile_payload,
    parse_report_payload,
    parse_search_analytics_payload,
    parse_sites_payload,
    parse_token_payload,
)

__all__ = [
    "Ga4PropertySummary",
    "Ga4Report",
    "Ga4ReportRow",
    "GoogleApiError",
    "GoogleClient",
    "GoogleClientError",
    "GoogleClientProtocol",
    "GoogleProfileError",
    "GoogleTokenExchangeError",
    "GoogleTokenRefreshError",
    "GoogleTokenResponse",
    "GoogleUserProfile",
    "SearchAnalyticsRow",
    "SearchConsoleSite",
    "parse_account_summaries_payload",
    "parse_profile_payload",
    "parse_report_payload",
    "parse_search_analytics_payload",
    "parse_sites_payload",
    "parse_token_payload",
]
