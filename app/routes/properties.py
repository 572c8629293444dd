"""GA4 property and Search Console site listing routes."""

from __future__ import annotations

import logging
import uuid
from typing import Annotated, Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.auth.encryption import TokenCipher
from app.auth.errors import SessionError
from app.auth.sessions import OAuthSession, SessionCookieManager
from app.auth.token_refresh import DatabaseTokenStore, TokenRefreshPolicy
from app.dependencies import (
    get_cipher,
    get_cookie_manager,
    get_db_session,
    get_google_client,
    get_oauth_session,
)
from app.integrations.google import GoogleClientProtocol

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/properties", tags=["properties"])
OAuthSessionDep = Annotated[OAuthSession, Depends(get_oauth_session)]
CookieManagerDep = Annotated[SessionCookieManager, Depends(get_cookie_manager)]
GoogleClientDep = Annotated[GoogleClientProtocol, Depends(get_google_client)]
CipherDep = Annotated[TokenCipher, Depends(get_cipher)]
DbSessionDep = Annotated[Session, Depends(get_db_session)]


@router.get("/ga4")
async def list_ga4_properties(
    oauth_session: OAuthSessionDep,
    cookie_manager: CookieManagerDep,
    google_client: GoogleClientDep,
    cipher: CipherDep,
    db_session: DbSessionDep,
) -> JSONResponse:
    access_token, refreshed_session = await resolve_access_token(
        oauth_session,
        google_client=google_client,
        cipher=cipher,
        db_session=db_session,
    )
    properties = await google_client.list_account_summaries(access_token=access_token)
    logger.info("listed %d GA4 properties tenant=%s", len(properties), oauth_session.tenant_id)

    return _with_session(
        cookie_manager,
        refreshed_session,
        {
            "success": True,
            "message": f"Fetched {len(properties)} GA4 properties.",
            "properties": [item.to_payload() for item in properties],
        },
    )


@router.get("/gsc")
async def list_gsc_sites(
    oauth_session: OAuthSessionDep,
    cookie_manager: CookieManagerDep,
    google_client: GoogleClientDep,
    cipher: CipherDep,
    db_session: DbSessionDep,
) -> JSONResponse:
    access_token, refreshed_session = await resolve_access_token(
        oauth_session,
        google_client=google_client,
        cipher=cipher,
        db_session=db_session,
    )
    sites = await google_client.list_sites(access_token=access_token)
    domain_sites = [site.to_payload() for site in sites if site.is_domain_property]
    url_sites = [site.to_payload() for site in sites if not site.is_domain_property]
    logger.info(
        "listed %d Search Console sites tenant=%s domain=%d url=%d",
        len(sites),
        oauth_session.tenant_id,
        len(domain_sites),
        len(url_sites),
    )

    return _with_session(
        cookie_manager,
        refreshed_session,
        {
            "success": True,
            "message": f"Fetched {len(sites)} Search Console sites.",
            "sites": {
                "all": [site.to_payload() for site in sites],
                "domain": domain_sites,
                "url": url_sites,
            },
        },
    )


async def resolve_access_token(
    oauth_session: OAuthSession,
    *,
    google_client: GoogleClientProtocol,
    cipher: TokenCipher,
    db_session: Session,
) -> tuple[str, OAuthSession | None]:
    """Return a usable access token and, when the cookie tokens were refreshed, the new session.

    Before site setup the tokens live in the cookie; afterwards only the stored
    row holds them.
    """
    if oauth_session.tokens is None and oauth_session.user_id is not None:
        policy = TokenRefreshPolicy(
            google_client=google_client,
            cipher=cipher,
            token_store=DatabaseTokenStore(db_session),
        )
        try:
            user_id = uuid.UUID(oauth_session.user_id)
        except ValueError as exc:
            raise SessionError("invalid session user", code="invalid_session") from exc
        return await policy.get_valid_access_token(user_id), None

    policy = TokenRefreshPolicy(google_client=google_client, cipher=cipher)
    tokens, refreshed = await policy.ensure_fresh(oauth_session.oauth_tokens())
    if refreshed:
        return tokens.access_token, oauth_session.with_tokens(tokens)
    return tokens.access_token, None


def _with_session(
    cookie_manager: SessionCookieManager,
    refreshed_session: OAuthSession | None,
    content: dict[str, Any],
) -> JSONResponse:
    response = JSONResponse(content=content)
    if refreshed_session is not None:
        cookie_manager.issue_oauth_session(response, refreshed_session)
    return response
