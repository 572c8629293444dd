"""Application configuration loading."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, cast

import yaml

DEFAULT_GOOGLE_SCOPES: tuple[str, ...] = (
    "openid",
    "profile",
    "email",
    "https://www.googleapis.com/auth/analytics.readonly",
    "https://www.googleapis.com/auth/analytics.manage.users.readonly",
    "https://www.googleapis.com/auth/webmasters.readonly",
)


@dataclass(frozen=True, slots=True)
class AppSettings:
    app_env: str
    encryption_key: str
    google_client_id: str
    google_client_secret: str
    google_authorization_url: str = "https://accounts.google.com/o/oauth2/v2/auth"
    google_token_url: str = "https://oauth2.googleapis.com/token"
    google_userinfo_url: str = "https://www.googleapis.com/oauth2/v2/userinfo"
    google_analytics_admin_url: str = "https://analyticsadmin.googleapis.com/v1beta"
    google_analytics_data_url: str = "https://analyticsdata.googleapis.com/v1beta"
    google_search_console_url: str = "https://www.googleapis.com/webmasters/v3"
    google_scopes: tuple[str, ...] = DEFAULT_GOOGLE_SCOPES
    google_http_timeout_seconds: float = 10.0
    base_url: str = ""
    default_base_url: str = "http://localhost:3001"
    callback_path: str = "/auth/callback"
    pkce_cookie_name: str = "oauth-session"
    pkce_cookie_max_age_seconds: int = 30 * 60
    oauth_cookie_name: str = "google_oauth_data"
    oauth_cookie_max_age_seconds: int = 24 * 60 * 60
    cookie_secure: bool = False
    skip_auth: bool = False
    error_page_path: str = "/auth/error"
    setup_page_path: str = "/setup-sites"
    log_level: str = "INFO"
    runtime_config_path: str = "runtime-config.yaml"

    @property
    def google_scope_param(self) -> str:
        return " ".join(self.google_scopes)

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def auth_bypass_enabled(self) -> bool:
        return self.skip_auth and self.app_env == "development"

    @classmethod
    def from_yaml(cls, runtime_config_path: str = "runtime-config.yaml") -> AppSettings:
        normalized_path = runtime_config_path.strip() or "runtime-config.yaml"
        config = _load_runtime_config(normalized_path)

        app_cfg = cast(dict[str, Any], config.get("app", {}))
        cookies_cfg = cast(dict[str, Any], config.get("cookies", {}))
        pkce_cookie_cfg = cast(dict[str, Any], cookies_cfg.get("pkce", {}))
        oauth_cookie_cfg = cast(dict[str, Any], cookies_cfg.get("oauth", {}))
        google_cfg = cast(dict[str, Any], config.get("google", {}))
        pages_cfg = cast(dict[str, Any], config.get("pages", {}))

        app_env = str(app_cfg.get("env", "development")).lower()
        google_scopes = _normalize_google_scopes(
            tuple(cast(list[str], google_cfg.get("scopes", list(DEFAULT_GOOGLE_SCOPES))))
        )

        return cls(
            app_env=app_env,
            encryption_key=os.environ.get(
                "ENCRYPTION_KEY", str(app_cfg.get("encryption_key", ""))
            ),
            google_client_id=os.environ.get(
                "GOOGLE_CLIENT_ID", str(google_cfg.get("client_id", ""))
            ),
            google_client_secret=os.environ.get(
                "GOOGLE_CLIENT_SECRET", str(google_cfg.get("client_secret", ""))
            ),
            google_authorization_url=str(
                google_cfg.get(
                    "authorization_url", "https://accounts.google.com/o/oauth2/v2/auth"
                )
            ),
            google_token_url=str(
                google_cfg.get("token_url", "https://oauth2.googleapis.com/token")
            ),
            google_userinfo_url=str(
                google_cfg.get(
                    "userinfo_url", "https://www.googleapis.com/oauth2/v2/userinfo"
                )
            ),
            google_analytics_admin_url=str(
                google_cfg.get(
                    "analytics_admin_url", "https://analyticsadmin.googleapis.com/v1beta"
                )
            ),
            google_analytics_data_url=str(
                google_cfg.get(
                    "analytics_data_url", "https://analyticsdata.googleapis.com/v1beta"
                )
            ),
            google_search_console_url=str(
                google_cfg.get(
                    "search_console_url", "https://www.googleapis.com/webmasters/v3"
                )
            ),
            google_scopes=google_scopes,
            google_http_timeout_seconds=max(
                1.0,
                float(google_cfg.get("http_timeout_seconds", 10.0)),
            ),
            base_url=os.environ.get("APP_BASE_URL", str(app_cfg.get("base_url", ""))).rstrip(
                "/"
            ),
            default_base_url=str(
                app_cfg.get("default_base_url", "http://localhost:3001")
            ).rstrip("/"),
            callback_path=str(app_cfg.get("callback_path", "/auth/callback")),
            pkce_cookie_name=str(pkce_cookie_cfg.get("name", "oauth-session")),
            pkce_cookie_max_age_seconds=max(
                60,
                int(pkce_cookie_cfg.get("max_age_seconds", 30 * 60)),
            ),
            oauth_cookie_name=str(oauth_cookie_cfg.get("name", "google_oauth_data")),
            oauth_cookie_max_age_seconds=max(
                60,
                int(oauth_cookie_cfg.get("max_age_seconds", 24 * 60 * 60)),
            ),
            cookie_secure=bool(cookies_cfg.get("secure", app_env == "production")),
            skip_auth=_env_flag("SKIP_AUTH", bool(app_cfg.get("skip_auth", False))),
            error_page_path=str(pages_cfg.get("error", "/auth/error")),
            setup_page_path=str(pages_cfg.get("setup", "/setup-sites")),
            log_level=str(app_cfg.get("log_level", "INFO")).upper(),
            runtime_config_path=normalized_path,
        )

    @classmethod
    def from_env(cls) -> AppSettings:
        return cls.from_yaml(
            runtime_config_path=os.environ.get("APP_RUNTIME_CONFIG", "runtime-config.yaml")
        )


def _load_runtime_config(runtime_config_path: str) -> dict[str, Any]:
    path = Path(runtime_config_path)
    if not path.exists() or not path.is_file():
        return {}

    parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
    if isinstance(parsed, dict):
        return parsed
    return {}


def _normalize_google_scopes(scopes: tuple[str, ...]) -> tuple[str, ...]:
    normalized: list[str] = []
    seen: set[str] = set()

    if "openid" not in scopes:
        normalized.append("openid")
        seen.add("openid")

    for scope in scopes:
        normalized_scope = scope.strip()
        if not normalized_scope or normalized_scope in seen:
            continue
        seen.add(normalized_scope)
        normalized.append(normalized_scope)
    return tuple(normalized)


def _env_flag(name: str, default: bool) -> bool:
    raw_value = os.environ.get(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return AppSettings.from_env()
