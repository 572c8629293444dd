"""GA4 and Search Console report routes for a configured site."""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.auth.encryption import TokenCipher
from app.auth.errors import ValidationError
from app.auth.sessions import OAuthSession
from app.auth.token_refresh import DatabaseTokenStore, TokenRefreshPolicy
from app.db.models import Site
from app.dependencies import (
    get_cipher,
    get_db_session,
    get_google_client,
    get_oauth_session,
    require_session_user_id,
)
from app.integrations.google import GoogleClientProtocol
from app.repositories.sites import SiteRepository
from app.services.reports import (
    INDEX_STATUS_DAYS,
    AnalyticsReportService,
    DateWindow,
    SearchConsoleReportService,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reports", tags=["reports"])
OAuthSessionDep = Annotated[OAuthSession, Depends(get_oauth_session)]
GoogleClientDep = Annotated[GoogleClientProtocol, Depends(get_google_client)]
CipherDep = Annotated[TokenCipher, Depends(get_cipher)]
DbSessionDep = Annotated[Session, Depends(get_db_session)]
StartDateQuery = Annotated[str | None, Query(alias="startDate")]
EndDateQuery = Annotated[str | None, Query(alias="endDate")]


@router.get("/ga4")
async def ga4_report(
    oauth_session: OAuthSessionDep,
    google_client: GoogleClientDep,
    cipher: CipherDep,
    db_session: DbSessionDep,
    start_date: StartDateQuery = None,
    end_date: EndDateQuery = None,
) -> JSONResponse:
    window = _resolve_window(start_date, end_date)
    user_id = require_session_user_id(oauth_session)
    site = _load_site(db_session, oauth_session)
    if not site.ga4_property_id:
        raise ValidationError("site has no GA4 property", code="site_setup_required")

    access_token = await _access_token(google_client, cipher, db_session, user_id)
    service = AnalyticsReportService(google_client, access_token=access_token)
    report = await service.get_basic_report(site.ga4_property_id, window)

    return JSONResponse(
        content={
            "success": True,
            "propertyId": site.ga4_property_id,
            "startDate": window.start_date,
            "endDate": window.end_date,
            "data": [row.to_payload() for row in report.rows],
            "totalRows": report.total_rows,
            "samplingMetadatas": list(report.sampling_metadatas),
        }
    )


@router.get("/ga4/realtime")
async def ga4_realtime_report(
    oauth_session: OAuthSessionDep,
    google_client: GoogleClientDep,
    cipher: CipherDep,
    db_session: DbSessionDep,
) -> JSONResponse:
    user_id = require_session_user_id(oauth_session)
    site = _load_site(db_session, oauth_session)
    if not site.ga4_property_id:
        raise ValidationError("site has no GA4 property", code="site_setup_required")

    access_token = await _access_token(google_client, cipher, db_session, user_id)
    service = AnalyticsReportService(google_client, access_token=access_token)
    rows, total_rows = await service.get_realtime_report(site.ga4_property_id)

    return JSONResponse(
        content={
            "success": True,
            "propertyId": site.ga4_property_id,
            "data": [row.to_payload() for row in rows],
            "totalRows": total_rows,
            "timestamp": datetime.now(UTC).isoformat(),
        }
    )


@router.get("/gsc")
async def gsc_report(
    oauth_session: OAuthSessionDep,
    google_client: GoogleClientDep,
    cipher: CipherDep,
    db_session: DbSessionDep,
    start_date: StartDateQuery = None,
    end_date: EndDateQuery = None,
) -> JSONResponse:
    window = _resolve_window(start_date, end_date)
    user_id = require_session_user_id(oauth_session)
    site = _load_site(db_session, oauth_session)
    if not site.gsc_property_url:
        raise ValidationError("site has no Search Console property", code="site_setup_required")

    access_token = await _access_token(google_client, cipher, db_session, user_id)
    service = SearchConsoleReportService(google_client, access_token=access_token)
    rows = await service.get_search_performance(site.gsc_property_url, window)

    return JSONResponse(
        content={
            "success": True,
            "siteUrl": site.gsc_property_url,
            "startDate": window.start_date,
            "endDate": window.end_date,
            "data": [row.to_payload() for row in rows],
            "totalRows": len(rows),
        }
    )


@router.get("/gsc/index-status")
async def gsc_index_status(
    oauth_session: OAuthSessionDep,
    google_client: GoogleClientDep,
    cipher: CipherDep,
    db_session: DbSessionDep,
) -> JSONResponse:
    user_id = require_session_user_id(oauth_session)
    site = _load_site(db_session, oauth_session)
    if not site.gsc_property_url:
        raise ValidationError("site has no Search Console property", code="site_setup_required")

    window = DateWindow.trailing(INDEX_STATUS_DAYS)
    access_token = await _access_token(google_client, cipher, db_session, user_id)
    service = SearchConsoleReportService(google_client, access_token=access_token)
    status = await service.get_index_status(site.gsc_property_url, window)

    return JSONResponse(
        content={
            "success": True,
            "siteUrl": site.gsc_property_url,
            "startDate": window.start_date,
            "endDate": window.end_date,
            **status.to_payload(),
        }
    )


def _resolve_window(start_date: str | None, end_date: str | None) -> DateWindow:
    try:
        return DateWindow.resolve(start_date, end_date)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


def _load_site(db_session: Session, oauth_session: OAuthSession) -> Site:
    try:
        site_id = uuid.UUID(oauth_session.site_id or "")
    except ValueError as exc:
        raise ValidationError("session site is invalid", code="site_setup_required") from exc

    site = SiteRepository(db_session).get_by_id(site_id)
    if site is None or site.tenant_id != oauth_session.tenant_id:
        raise ValidationError("session site no longer exists", code="site_setup_required")
    return site


async def _access_token(
    google_client: GoogleClientProtocol,
    cipher: TokenCipher,
    db_session: Session,
    user_id: uuid.UUID,
) -> str:
    policy = TokenRefreshPolicy(
        google_client=google_client,
        cipher=cipher,
        token_store=DatabaseTokenStore(db_session),
    )
    return await policy.get_valid_access_token(user_id)
