from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.auth.encryption import TokenCipher
from app.auth.errors import AuthError, SessionError, UpstreamError
from app.auth.sessions import SessionCookieManager
from app.config import AppSettings, get_settings
from app.db.session import create_session_factory
from app.integrations.google import GoogleClient
from app.routes.auth import router as auth_router
from app.routes.properties import router as properties_router
from app.routes.reports import router as reports_router
from app.routes.sites import router as sites_router

logger = logging.getLogger(__name__)

ERROR_MESSAGES: dict[str, str] = {
    "access_denied": "Google sign-in was canceled or access was denied.",
    "missing_parameters": "Callback is missing required OAuth parameters.",
    "session_expired": "Sign-in session expired before the callback completed. Please try again.",
    "invalid_session": "Sign-in session is invalid or was tampered with. Please try again.",
    "invalid_state": "Sign-in state did not match. Please restart the sign-in flow.",
    "oauth_config_error": "Google OAuth is not configured for this deployment.",
    "callback_failed": "Exchanging the authorization code with Google failed.",
    "profile_fetch_failed": "Fetching the Google account profile failed.",
    "missing_refresh_token": "Google did not grant offline access. Please reconnect.",
    "token_refresh_failed": "Google access has expired. Please reconnect your Google account.",
    "authentication_required": "Please connect your Google account first.",
    "site_setup_required": "Please select a GA4 property and Search Console site first.",
}


def create_app(settings: AppSettings | None = None) -> FastAPI:
    app_settings = settings or get_settings()
    logging.basicConfig(level=app_settings.log_level)

    app = FastAPI(title="SEO Dashboard", version="0.1.0")
    app.state.settings = app_settings
    app.state.cipher = TokenCipher(app_settings.encryption_key)
    app.state.session_maker = create_session_factory()
    app.state.google_client = GoogleClient(app_settings)

    app.add_exception_handler(AuthError, _auth_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)

    app.include_router(auth_router)
    app.include_router(properties_router)
    app.include_router(sites_router)
    app.include_router(reports_router)

    @app.get("/", tags=["system"], name="root")
    async def root() -> dict[str, str]:
        return {"service": "seo-dashboard", "status": "ok"}

    @app.get("/healthz", tags=["system"])
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/auth/error", tags=["system"], name="error_page")
    async def error_page(
        error: str = "unknown",
        details: str | None = None,
    ) -> dict[str, str | None]:
        return {
            "status": "error",
            "error": error,
            "message": ERROR_MESSAGES.get(error, "Unknown error"),
            "details": details,
        }

    @app.get("/dashboard", tags=["dashboard"], name="dashboard")
    async def dashboard(request: Request) -> dict[str, Any]:
        current_settings: AppSettings = request.app.state.settings
        cookie_manager = SessionCookieManager(current_settings, request.app.state.cipher)
        try:
            oauth_session = cookie_manager.load_oauth_session(request)
        except SessionError:
            if not current_settings.auth_bypass_enabled:
                raise
            logger.warning("serving development dashboard placeholder without authentication")
            return {
                "authenticated": False,
                "development": True,
                "profile": {"id": "dev-user", "email": "dev@example.com", "name": "Developer"},
                "tenantId": "development",
                "selectedSites": None,
                "siteId": None,
            }

        return {
            "authenticated": True,
            "development": False,
            "profile": oauth_session.profile,
            "tenantId": oauth_session.tenant_id,
            "selectedSites": oauth_session.selected_sites,
            "siteId": oauth_session.site_id,
        }

    return app


async def _auth_error_handler(request: Request, exc: Exception) -> JSONResponse:
    if not isinstance(exc, AuthError):
        raise exc

    status_code = exc.status_code
    details: Any = str(exc)
    if isinstance(exc, UpstreamError):
        if exc.status is not None and exc.status >= 400:
            status_code = exc.status
        details = exc.body or str(exc)

    if status_code >= 500:
        logger.error("request failed path=%s code=%s", request.url.path, exc.code)
    else:
        logger.info("request rejected path=%s code=%s", request.url.path, exc.code)
    return JSONResponse(status_code=status_code, content={"error": exc.code, "details": details})


async def _request_validation_handler(request: Request, exc: Exception) -> JSONResponse:
    errors = exc.errors() if isinstance(exc, RequestValidationError) else []
    return JSONResponse(
        status_code=400,
        content={
            "error": "invalid_request",
            "details": [
                {"loc": list(error.get("loc", ())), "msg": error.get("msg", "")}
                for error in errors
            ],
        },
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("unhandled error path=%s type=%s", request.url.path, type(exc).__name__)
    return JSONResponse(
        status_code=500,
        content={"error": "internal_error", "details": "An unexpected error occurred."},
    )
