"""Repository layer exports."""

from app.repositories.oauth_tokens import OauthTokenRepository
from app.repositories.sites import SiteRepository
from app.repositories.tenants import TenantRepository
from app.repositories.users import UserRepository

__all__ = [
    "OauthTokenRepository",
    "SiteRepository",
    "TenantRepository",
    "UserRepository",
]
