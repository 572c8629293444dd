"""Request-scoped GA4 and Search Console report services.

Each service is built for one request from an access token that the refresh
policy has just vouched for; nothing is cached between requests.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any

from app.integrations.google import (
    Ga4Report,
    GoogleApiError,
    GoogleClientProtocol,
    SearchAnalyticsRow,
)

logger = logging.getLogger(__name__)

GA4_REPORT_DIMENSIONS: tuple[str, ...] = ("date", "pagePath", "pageTitle")
GA4_REPORT_METRICS: tuple[str, ...] = (
    "sessions",
    "screenPageViews",
    "totalUsers",
    "bounceRate",
    "averageSessionDuration",
    "conversions",
)
GA4_REPORT_LIMIT = 10_000
GA4_REALTIME_DIMENSIONS: tuple[str, ...] = ("pagePath", "pageTitle")
GA4_REALTIME_METRICS: tuple[str, ...] = ("activeUsers", "screenPageViews")
GA4_REALTIME_LIMIT = 100
GSC_ROW_LIMIT = 25_000
DEFAULT_REPORT_DAYS = 28
INDEX_STATUS_DAYS = 90


@dataclass(frozen=True, slots=True)
class DateWindow:
    start_date: str
    end_date: str

    @classmethod
    def resolve(
        cls,
        start_date: str | None,
        end_date: str | None,
        *,
        today: date | None = None,
    ) -> DateWindow:
        current = today or date.today()
        end = _parse_date(end_date, "endDate") if end_date else current
        start = (
            _parse_date(start_date, "startDate")
            if start_date
            else end - timedelta(days=DEFAULT_REPORT_DAYS)
        )
        if start > end:
            raise ValueError("startDate must not be after endDate")
        return cls(start_date=start.isoformat(), end_date=end.isoformat())

    @classmethod
    def trailing(cls, days: int, *, today: date | None = None) -> DateWindow:
        end = today or date.today()
        start = end - timedelta(days=days)
        return cls(start_date=start.isoformat(), end_date=end.isoformat())


@dataclass(frozen=True, slots=True)
class Ga4PageMetrics:
    date: str
    page_path: str
    page_title: str
    sessions: int
    page_views: int
    users: int
    bounce_rate: float
    avg_session_duration: float
    conversions: int

    def to_payload(self) -> dict[str, Any]:
        return {
            "date": self.date,
            "pagePath": self.page_path,
            "pageTitle": self.page_title,
            "sessions": self.sessions,
            "pageViews": self.page_views,
            "users": self.users,
            "bounceRate": self.bounce_rate,
            "avgSessionDuration": self.avg_session_duration,
            "conversions": self.conversions,
        }


@dataclass(frozen=True, slots=True)
class Ga4BasicReport:
    rows: list[Ga4PageMetrics]
    total_rows: int
    sampling_metadatas: tuple[dict[str, Any], ...] = ()


@dataclass(frozen=True, slots=True)
class Ga4RealtimePage:
    page_path: str
    page_title: str
    active_users: int
    page_views: int

    def to_payload(self) -> dict[str, Any]:
        return {
            "pagePath": self.page_path,
            "pageTitle": self.page_title,
            "activeUsers": self.active_users,
            "pageViews": self.page_views,
        }


@dataclass(frozen=True, slots=True)
class SearchPerformanceRow:
    query: str
    page: str
    clicks: int
    impressions: int
    ctr: float
    position: float

    def to_payload(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "page": self.page,
            "clicks": self.clicks,
            "impressions": self.impressions,
            "ctr": self.ctr,
            "position": self.position,
        }


@dataclass(frozen=True, slots=True)
class IndexStatus:
    """Page-level Search Console totals; pages without impressions never appear."""

    indexed_pages: int
    total_clicks: int
    total_impressions: int
    avg_ctr: float
    avg_position: float

    def to_payload(self) -> dict[str, Any]:
        return {
            "indexedPages": self.indexed_pages,
            "totalClicks": self.total_clicks,
            "totalImpressions": self.total_impressions,
            "avgCTR": self.avg_ctr,
            "avgPosition": self.avg_position,
        }


class AnalyticsReportService:
    def __init__(self, client: GoogleClientProtocol, *, access_token: str) -> None:
        self._client = client
        self._access_token = access_token

    async def get_basic_report(
        self,
        property_id: str,
        window: DateWindow,
    ) -> Ga4BasicReport:
        body = {
            "dateRanges": [{"startDate": window.start_date, "endDate": window.end_date}],
            "dimensions": [{"name": name} for name in GA4_REPORT_DIMENSIONS],
            "metrics": [{"name": name} for name in GA4_REPORT_METRICS],
            "orderBys": [{"desc": True, "metric": {"metricName": "sessions"}}],
            "limit": GA4_REPORT_LIMIT,
        }
        logger.info(
            "fetching GA4 report property=%s window=%s..%s",
            property_id,
            window.start_date,
            window.end_date,
        )
        report = await self._client.run_report(
            access_token=self._access_token,
            property_id=property_id,
            body=body,
        )
        return Ga4BasicReport(
            rows=shape_ga4_report(report),
            total_rows=report.row_count,
            sampling_metadatas=report.sampling_metadatas,
        )

    async def get_realtime_report(self, property_id: str) -> tuple[list[Ga4RealtimePage], int]:
        body = {
            "dimensions": [{"name": name} for name in GA4_REALTIME_DIMENSIONS],
            "metrics": [{"name": name} for name in GA4_REALTIME_METRICS],
            "orderBys": [{"desc": True, "metric": {"metricName": "activeUsers"}}],
            "limit": GA4_REALTIME_LIMIT,
        }
        logger.info("fetching GA4 realtime report property=%s", property_id)
        report = await self._client.run_realtime_report(
            access_token=self._access_token,
            property_id=property_id,
            body=body,
        )
        return shape_ga4_realtime(report), report.row_count


class SearchConsoleReportService:
    def __init__(self, client: GoogleClientProtocol, *, access_token: str) -> None:
        self._client = client
        self._access_token = access_token

    async def get_search_performance(
        self,
        site_url: str,
        window: DateWindow,
    ) -> list[SearchPerformanceRow]:
        body = {
            "startDate": window.start_date,
            "endDate": window.end_date,
            "dimensions": ["query", "page"],
            "rowLimit": GSC_ROW_LIMIT,
            "startRow": 0,
        }
        logger.info(
            "fetching Search Console performance site=%s window=%s..%s",
            site_url,
            window.start_date,
            window.end_date,
        )
        rows = await self._client.query_search_analytics(
            access_token=self._access_token,
            site_url=site_url,
            body=body,
        )
        return shape_search_performance(rows)

    async def get_index_status(self, site_url: str, window: DateWindow) -> IndexStatus:
        body = {
            "startDate": window.start_date,
            "endDate": window.end_date,
            "dimensions": ["page"],
            "rowLimit": GSC_ROW_LIMIT,
            "startRow": 0,
        }
        logger.info(
            "fetching Search Console index status site=%s window=%s..%s",
            site_url,
            window.start_date,
            window.end_date,
        )
        rows = await self._client.query_search_analytics(
            access_token=self._access_token,
            site_url=site_url,
            body=body,
        )
        return summarize_index_status(rows)


def shape_ga4_report(report: Ga4Report) -> list[Ga4PageMetrics]:
    _require_columns(report, (*GA4_REPORT_DIMENSIONS, *GA4_REPORT_METRICS))
    return [
        Ga4PageMetrics(
            date=row.dimensions["date"],
            page_path=row.dimensions["pagePath"],
            page_title=row.dimensions["pageTitle"],
            sessions=_int_metric(row.metrics, "sessions"),
            page_views=_int_metric(row.metrics, "screenPageViews"),
            users=_int_metric(row.metrics, "totalUsers"),
            bounce_rate=_float_metric(row.metrics, "bounceRate"),
            avg_session_duration=_float_metric(row.metrics, "averageSessionDuration"),
            conversions=_int_metric(row.metrics, "conversions"),
        )
        for row in report.rows
    ]


def shape_ga4_realtime(report: Ga4Report) -> list[Ga4RealtimePage]:
    _require_columns(report, (*GA4_REALTIME_DIMENSIONS, *GA4_REALTIME_METRICS))
    return [
        Ga4RealtimePage(
            page_path=row.dimensions["pagePath"],
            page_title=row.dimensions["pageTitle"],
            active_users=_int_metric(row.metrics, "activeUsers"),
            page_views=_int_metric(row.metrics, "screenPageViews"),
        )
        for row in report.rows
    ]


def shape_search_performance(rows: tuple[SearchAnalyticsRow, ...]) -> list[SearchPerformanceRow]:
    shaped: list[SearchPerformanceRow] = []
    for row in rows:
        if len(row.keys) != 2:
            raise GoogleApiError("search analytics row must carry query and page keys")
        query, page = row.keys
        shaped.append(
            SearchPerformanceRow(
                query=query,
                page=page,
                clicks=_whole_number(row.clicks, "clicks"),
                impressions=_whole_number(row.impressions, "impressions"),
                ctr=row.ctr,
                position=row.position,
            )
        )
    return shaped


def summarize_index_status(rows: tuple[SearchAnalyticsRow, ...]) -> IndexStatus:
    if not rows:
        return IndexStatus(
            indexed_pages=0,
            total_clicks=0,
            total_impressions=0,
            avg_ctr=0.0,
            avg_position=0.0,
        )

    return IndexStatus(
        indexed_pages=len(rows),
        total_clicks=_whole_number(sum(row.clicks for row in rows), "clicks"),
        total_impressions=_whole_number(sum(row.impressions for row in rows), "impressions"),
        avg_ctr=sum(row.ctr for row in rows) / len(rows),
        avg_position=sum(row.position for row in rows) / len(rows),
    )


def _require_columns(report: Ga4Report, names: tuple[str, ...]) -> None:
    missing = [
        name
        for name in names
        if name not in report.dimension_headers and name not in report.metric_headers
    ]
    if report.rows and missing:
        raise GoogleApiError(f"GA4 report is missing columns: {', '.join(missing)}")


def _int_metric(metrics: dict[str, str], name: str) -> int:
    try:
        return int(float(metrics[name]))
    except (KeyError, ValueError, OverflowError) as exc:
        raise GoogleApiError(f"GA4 metric '{name}' is not numeric") from exc


def _float_metric(metrics: dict[str, str], name: str) -> float:
    try:
        value = float(metrics[name])
    except (KeyError, ValueError) as exc:
        raise GoogleApiError(f"GA4 metric '{name}' is not numeric") from exc
    if not math.isfinite(value):
        raise GoogleApiError(f"GA4 metric '{name}' is not finite")
    return value


def _whole_number(value: float, name: str) -> int:
    try:
        return int(value)
    except (ValueError, OverflowError) as exc:
        raise GoogleApiError(f"search analytics '{name}' is not a finite number") from exc


def _parse_date(value: str, field_name: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise ValueError(f"{field_name} must be formatted as YYYY-MM-DD") from exc
