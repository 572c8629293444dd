"""Google OAuth authorization routes."""

from __future__ import annotations

import hmac
import logging
from datetime import UTC, datetime
from typing import Annotated
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse

from app.auth import (
    ConfigurationError,
    SessionError,
    UpstreamError,
    ValidationError,
    build_authorization_url,
    generate_code_challenge,
    generate_code_verifier,
    generate_state,
)
from app.auth.sessions import OAuthSession, OAuthTokens, PkceSession, SessionCookieManager
from app.config import AppSettings
from app.dependencies import get_app_settings, get_cookie_manager, get_google_client
from app.integrations.google import GoogleClientProtocol

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])
SettingsDep = Annotated[AppSettings, Depends(get_app_settings)]
CookieManagerDep = Annotated[SessionCookieManager, Depends(get_cookie_manager)]
GoogleClientDep = Annotated[GoogleClientProtocol, Depends(get_google_client)]


@router.get("/auth/start", name="auth_start")
async def auth_start(
    request: Request,
    settings: SettingsDep,
    cookie_manager: CookieManagerDep,
    tenant_id: Annotated[str | None, Query(alias="tenantId")] = None,
) -> JSONResponse:
    tenant_id = (tenant_id or "").strip() or None
    if tenant_id is None:
        raise ValidationError("tenantId is required")

    if not settings.google_client_id:
        logger.error("Google OAuth client id is not configured")
        raise ConfigurationError("OAuth client is not configured")

    redirect_uri = f"{resolve_base_url(request, settings)}{settings.callback_path}"
    code_verifier = generate_code_verifier()
    state = generate_state()
    authorization_url = build_authorization_url(
        authorization_url=settings.google_authorization_url,
        client_id=settings.google_client_id,
        redirect_uri=redirect_uri,
        scope=settings.google_scope_param,
        state=state,
        code_challenge=generate_code_challenge(code_verifier),
    )

    response = JSONResponse(
        content={
            "authUrl": authorization_url,
            "redirectUri": redirect_uri,
            "message": "Google authorization URL generated; redirect the browser to authUrl.",
        }
    )
    cookie_manager.issue_pkce_session(
        response,
        PkceSession(
            tenant_id=tenant_id,
            redirect_uri=redirect_uri,
            code_verifier=code_verifier,
            state=state,
        ),
    )
    logger.info("started Google OAuth flow tenant=%s redirect_uri=%s", tenant_id, redirect_uri)
    return response


@router.get("/auth/callback", name="auth_callback")
async def auth_callback(
    request: Request,
    settings: SettingsDep,
    cookie_manager: CookieManagerDep,
    google_client: GoogleClientDep,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
) -> RedirectResponse:
    if error:
        logger.warning("Google OAuth returned error=%s", error)
        return _error_redirect(request, settings, cookie_manager, error_code=error)

    if not code or not state:
        return _error_redirect(
            request, settings, cookie_manager, error_code="missing_parameters"
        )

    try:
        pkce_session = cookie_manager.load_pkce_session(request)
    except SessionError as exc:
        logger.warning("rejecting OAuth callback: %s", exc.code)
        return _error_redirect(request, settings, cookie_manager, error_code=exc.code)

    if not hmac.compare_digest(state.encode("utf-8"), pkce_session.state.encode("utf-8")):
        logger.warning("rejecting OAuth callback: state mismatch tenant=%s", pkce_session.tenant_id)
        return _error_redirect(request, settings, cookie_manager, error_code="invalid_state")

    if not settings.google_client_id or not settings.google_client_secret:
        logger.error("Google OAuth client credentials are not configured")
        return _error_redirect(
            request, settings, cookie_manager, error_code="oauth_config_error"
        )

    try:
        token_response = await google_client.exchange_code_for_tokens(
            code=code,
            code_verifier=pkce_session.code_verifier,
            redirect_uri=pkce_session.redirect_uri,
        )
    except UpstreamError as exc:
        return _error_redirect(
            request,
            settings,
            cookie_manager,
            error_code="callback_failed",
            details=exc.body or str(exc),
        )
    except Exception as exc:
        logger.error("Google token exchange raised %s", type(exc).__name__)
        return _error_redirect(
            request, settings, cookie_manager, error_code="callback_failed"
        )

    try:
        profile = await google_client.fetch_profile(access_token=token_response.access_token)
    except UpstreamError as exc:
        return _error_redirect(
            request,
            settings,
            cookie_manager,
            error_code="profile_fetch_failed",
            details=exc.body or str(exc),
        )
    except Exception as exc:
        logger.error("Google profile request raised %s", type(exc).__name__)
        return _error_redirect(
            request, settings, cookie_manager, error_code="callback_failed"
        )

    oauth_session = OAuthSession(
        profile=profile.to_payload(),
        tenant_id=pkce_session.tenant_id,
        timestamp=datetime.now(UTC).isoformat(),
        tokens=OAuthTokens.issued(
            access_token=token_response.access_token,
            refresh_token=token_response.refresh_token,
            token_type=token_response.token_type,
            scope=token_response.scope,
            expires_in=token_response.expires_in,
        ).to_payload(),
    )

    location = _absolute_url(
        request,
        settings.setup_page_path,
        {"oauth_success": "true", "tenant": pkce_session.tenant_id},
    )
    response = RedirectResponse(url=location, status_code=302)
    cookie_manager.issue_oauth_session(response, oauth_session)
    cookie_manager.clear_pkce_session(response)
    logger.info(
        "completed Google OAuth flow tenant=%s google_user=%s",
        pkce_session.tenant_id,
        profile.id,
    )
    return response


@router.post("/auth/clear", name="auth_clear")
async def auth_clear(cookie_manager: CookieManagerDep) -> JSONResponse:
    response = JSONResponse(
        content={"success": True, "message": "Authentication data cleared."}
    )
    cookie_manager.clear_oauth_session(response)
    cookie_manager.clear_pkce_session(response)
    logger.info("cleared OAuth session cookies")
    return response


def resolve_base_url(request: Request, settings: AppSettings) -> str:
    if settings.base_url:
        return settings.base_url

    host = request.headers.get("host")
    if host:
        scheme = request.headers.get("x-forwarded-proto") or request.url.scheme or "http"
        return f"{scheme.split(',')[0].strip()}://{host}"

    return settings.default_base_url


def _error_redirect(
    request: Request,
    settings: AppSettings,
    cookie_manager: SessionCookieManager,
    *,
    error_code: str,
    details: str | None = None,
) -> RedirectResponse:
    params = {"error": error_code}
    if details:
        params["details"] = details

    response = RedirectResponse(
        url=_absolute_url(request, settings.error_page_path, params),
        status_code=302,
    )
    cookie_manager.clear_pkce_session(response)
    return response


def _absolute_url(request: Request, path: str, params: dict[str, str]) -> str:
    base = str(request.base_url).rstrip("/")
    return f"{base}{path}?{urlencode(params)}"
