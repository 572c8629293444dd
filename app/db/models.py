"""SQLAlchemy ORM models for tenants, users, sites and stored OAuth tokens."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Text,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.db.enums import OAuthProvider, TenantPlan, UserRole

TENANT_PLAN_ENUM = Enum(
    TenantPlan,
    name="tenant_plan",
    values_callable=lambda enum_cls: [plan.value for plan in enum_cls],
)
USER_ROLE_ENUM = Enum(
    UserRole,
    name="user_role",
    values_callable=lambda enum_cls: [role.value for role in enum_cls],
)
OAUTH_PROVIDER_ENUM = Enum(
    OAuthProvider,
    name="oauth_provider",
    values_callable=lambda enum_cls: [provider.value for provider in enum_cls],
)
SETTINGS_TYPE = JSONB().with_variant(JSON(), "sqlite")  # type: ignore[no-untyped-call]


class Tenant(Base):
    __tablename__ = "tenant"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    plan: Mapped[TenantPlan] = mapped_column(
        TENANT_PLAN_ENUM,
        nullable=False,
        default=TenantPlan.FREE,
        server_default=text("'free'"),
    )
    settings: Mapped[dict[str, Any]] = mapped_column(SETTINGS_TYPE, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    users: Mapped[list[AppUser]] = relationship(back_populates="tenant")
    sites: Mapped[list[Site]] = relationship(back_populates="tenant")


class AppUser(Base):
    __tablename__ = "app_user"
    __table_args__ = (Index("idx_app_user_tenant_id", "tenant_id"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(
        Text,
        ForeignKey("tenant.id", ondelete="CASCADE"),
        nullable=False,
    )
    google_user_id: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    email: Mapped[str | None] = mapped_column(Text)
    name: Mapped[str | None] = mapped_column(Text)
    role: Mapped[UserRole] = mapped_column(
        USER_ROLE_ENUM,
        nullable=False,
        default=UserRole.MEMBER,
        server_default=text("'member'"),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    tenant: Mapped[Tenant] = relationship(back_populates="users")
    oauth_tokens: Mapped[list[OauthToken]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
    )


class Site(Base):
    __tablename__ = "site"
    __table_args__ = (
        UniqueConstraint("tenant_id", "ga4_property_id"),
        Index("idx_site_tenant_id", "tenant_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(
        Text,
        ForeignKey("tenant.id", ondelete="CASCADE"),
        nullable=False,
    )
    domain: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    ga4_property_id: Mapped[str | None] = mapped_column(Text)
    gsc_property_url: Mapped[str | None] = mapped_column(Text)
    settings: Mapped[dict[str, Any]] = mapped_column(SETTINGS_TYPE, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    tenant: Mapped[Tenant] = relationship(back_populates="sites")


class OauthToken(Base):
    __tablename__ = "oauth_token"
    __table_args__ = (UniqueConstraint("user_id", "provider"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("app_user.id", ondelete="CASCADE"),
        nullable=False,
    )
    provider: Mapped[OAuthProvider] = mapped_column(
        OAUTH_PROVIDER_ENUM,
        nullable=False,
        default=OAuthProvider.GOOGLE,
    )
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[str] = mapped_column(Text, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    scopes: Mapped[list[str]] = mapped_column(SETTINGS_TYPE, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    user: Mapped[AppUser] = relationship(back_populates="oauth_tokens")
