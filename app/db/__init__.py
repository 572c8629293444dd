"""Database layer exports."""

from app.db.base import Base
from app.db.enums import OAuthProvider, TenantPlan, UserRole
from app.db.models import AppUser, OauthToken, Site, Tenant

__all__ = [
    "AppUser",
    "Base",
    "OAuthProvider",
    "OauthToken",
    "Site",
    "Tenant",
    "TenantPlan",
    "UserRole",
]
