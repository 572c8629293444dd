"""Site selection routes."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Annotated, Any
from urllib.parse import urlparse

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy.orm import Session

from app.auth.encryption import TokenCipher
from app.auth.errors import SessionError, ValidationError
from app.auth.sessions import OAuthSession, SessionCookieManager
from app.dependencies import get_cipher, get_cookie_manager, get_db_session, get_oauth_session
from app.repositories.oauth_tokens import OauthTokenRepository
from app.repositories.sites import SiteRepository
from app.repositories.tenants import TenantRepository
from app.repositories.users import UserRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sites", tags=["sites"])
OAuthSessionDep = Annotated[OAuthSession, Depends(get_oauth_session)]
CookieManagerDep = Annotated[SessionCookieManager, Depends(get_cookie_manager)]
CipherDep = Annotated[TokenCipher, Depends(get_cipher)]
DbSessionDep = Annotated[Session, Depends(get_db_session)]


class Ga4PropertySelection(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    property_id: str = Field(alias="propertyId")
    display_name: str | None = Field(default=None, alias="displayName")
    website_url: str | None = Field(default=None, alias="websiteUrl")
    time_zone: str | None = Field(default=None, alias="timeZone")
    currency_code: str | None = Field(default=None, alias="currencyCode")

    @field_validator("property_id")
    @classmethod
    def _require_property_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("propertyId is required")
        return normalized


class GscSiteSelection(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    site_url: str = Field(alias="siteUrl")
    permission_level: str | None = Field(default=None, alias="permissionLevel")
    verified: bool | None = None

    @field_validator("site_url")
    @classmethod
    def _require_site_url(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("siteUrl is required")
        return normalized


class SiteSetupPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ga4_property: Ga4PropertySelection | None = Field(default=None, alias="ga4Property")
    gsc_site: GscSiteSelection | None = Field(default=None, alias="gscSite")


@router.post("/setup")
async def setup_sites(
    payload: SiteSetupPayload,
    oauth_session: OAuthSessionDep,
    cookie_manager: CookieManagerDep,
    cipher: CipherDep,
    db_session: DbSessionDep,
) -> JSONResponse:
    if payload.ga4_property is None or payload.gsc_site is None:
        raise ValidationError("both ga4Property and gscSite are required")

    google_user_id = oauth_session.profile.get("id")
    if not isinstance(google_user_id, str) or not google_user_id:
        raise SessionError("session profile has no Google user id", code="invalid_session")

    ga4_property = payload.ga4_property
    gsc_site = payload.gsc_site

    TenantRepository(db_session).get_or_create(oauth_session.tenant_id)
    user = UserRepository(db_session).upsert_google_user(
        tenant_id=oauth_session.tenant_id,
        google_user_id=google_user_id,
        email=_optional_profile_str(oauth_session.profile, "email"),
        name=_optional_profile_str(oauth_session.profile, "name"),
    )
    domain = site_domain(gsc_site.site_url, fallback=ga4_property.website_url)
    site = SiteRepository(db_session).upsert_selection(
        tenant_id=oauth_session.tenant_id,
        domain=domain,
        name=ga4_property.display_name or domain,
        ga4_property_id=ga4_property.property_id,
        gsc_property_url=gsc_site.site_url,
        settings={
            "timeZone": ga4_property.time_zone,
            "currencyCode": ga4_property.currency_code,
        },
    )

    token_repo = OauthTokenRepository(db_session)
    stored_token = token_repo.get_for_user(user.id)
    if oauth_session.tokens is not None:
        tokens = oauth_session.oauth_tokens()
        if not tokens.refresh_token and stored_token is None:
            raise SessionError(
                "Google did not issue a refresh token",
                code="missing_refresh_token",
            )
        # Without a new refresh token the stored one stays in place.
        token_repo.upsert_for_user(
            user.id,
            encrypted_access_token=cipher.encrypt(tokens.access_token),
            encrypted_refresh_token=(
                cipher.encrypt(tokens.refresh_token) if tokens.refresh_token else None
            ),
            expires_at=tokens.expires_at or datetime.now(UTC),
            scopes=tokens.scope.split(),
        )
    elif stored_token is None:
        raise SessionError("session carries no access token", code="missing_access_token")

    db_session.commit()

    selected_sites: dict[str, Any] = {
        "ga4Property": ga4_property.model_dump(by_alias=True),
        "gscSite": {
            **gsc_site.model_dump(by_alias=True),
            "verified": (
                gsc_site.verified
                if gsc_site.verified is not None
                else gsc_site.permission_level != "siteUnverifiedUser"
            ),
        },
        "selectedAt": datetime.now(UTC).isoformat(),
    }
    reduced_session = OAuthSession(
        profile=oauth_session.profile,
        tenant_id=oauth_session.tenant_id,
        timestamp=oauth_session.timestamp,
        selected_sites=selected_sites,
        site_id=str(site.id),
        user_id=str(user.id),
    )

    response = JSONResponse(
        content={
            "success": True,
            "message": "Site selection saved.",
            "selectedSites": selected_sites,
            "siteId": str(site.id),
        }
    )
    cookie_manager.issue_oauth_session(response, reduced_session)
    logger.info(
        "saved site selection tenant=%s site=%s ga4_property=%s",
        oauth_session.tenant_id,
        site.id,
        ga4_property.property_id,
    )
    return response


def site_domain(site_url: str, *, fallback: str | None = None) -> str:
    if site_url.startswith("sc-domain:"):
        return site_url.removeprefix("sc-domain:")

    parsed = urlparse(site_url if "://" in site_url else f"https://{site_url}")
    if parsed.hostname:
        return parsed.hostname

    if fallback:
        return site_domain(fallback)
    return site_url


def _optional_profile_str(profile: dict[str, Any], key: str) -> str | None:
    value = profile.get(key)
    return value if isinstance(value, str) and value else None
