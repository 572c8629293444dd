"""dashboard schema: tenants, users, sites and stored google tokens

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 00:00:01

"""

from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "20261019_0001"
down_revision: str | None = None
branch_labels: str | None = None
depends_on: str | None = None

TENANT_PLANS = ("free", "starter", "pro", "enterprise")
USER_ROLES = ("admin", "member", "viewer")
OAUTH_PROVIDERS = ("google",)


def _uuid_column(name: str, dialect_name: str) -> sa.Column[sa.Uuid]:
    kwargs: dict[str, object] = {"nullable": False, "primary_key": True}
    if dialect_name == "postgresql":
        kwargs["server_default"] = sa.text("gen_random_uuid()")
    return sa.Column(name, sa.Uuid(), **kwargs)


def _timestamp_column(name: str) -> sa.Column[sa.DateTime]:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def upgrade() -> None:
    bind = op.get_bind()
    dialect_name = bind.dialect.name

    if dialect_name == "postgresql":
        op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    json_type: sa.TypeEngine[object]
    json_object_default: sa.TextClause
    json_array_default: sa.TextClause
    if dialect_name == "postgresql":
        json_type = postgresql.JSONB()
        json_object_default = sa.text("'{}'::jsonb")
        json_array_default = sa.text("'[]'::jsonb")
    else:
        json_type = sa.JSON()
        json_object_default = sa.text("'{}'")
        json_array_default = sa.text("'[]'")

    op.create_table(
        "tenant",
        sa.Column("id", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column(
            "plan",
            sa.Enum(*TENANT_PLANS, name="tenant_plan"),
            nullable=False,
            server_default=sa.text("'free'"),
        ),
        sa.Column("settings", json_type, nullable=False, server_default=json_object_default),
        _timestamp_column("created_at"),
        sa.PrimaryKeyConstraint("id", name="pk_tenant"),
    )

    op.create_table(
        "app_user",
        _uuid_column("id", dialect_name),
        sa.Column("tenant_id", sa.Text(), nullable=False),
        sa.Column("google_user_id", sa.Text(), nullable=False),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column(
            "role",
            sa.Enum(*USER_ROLES, name="user_role"),
            nullable=False,
            server_default=sa.text("'member'"),
        ),
        _timestamp_column("created_at"),
        _timestamp_column("updated_at"),
        sa.ForeignKeyConstraint(
            ["tenant_id"],
            ["tenant.id"],
            name="fk_app_user_tenant_id_tenant",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_app_user"),
        sa.UniqueConstraint("google_user_id", name="uq_app_user_google_user_id"),
    )
    op.create_index("idx_app_user_tenant_id", "app_user", ["tenant_id"], unique=False)

    op.create_table(
        "site",
        _uuid_column("id", dialect_name),
        sa.Column("tenant_id", sa.Text(), nullable=False),
        sa.Column("domain", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("ga4_property_id", sa.Text(), nullable=True),
        sa.Column("gsc_property_url", sa.Text(), nullable=True),
        sa.Column("settings", json_type, nullable=False, server_default=json_object_default),
        _timestamp_column("created_at"),
        sa.ForeignKeyConstraint(
            ["tenant_id"],
            ["tenant.id"],
            name="fk_site_tenant_id_tenant",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_site"),
        sa.UniqueConstraint("tenant_id", "ga4_property_id", name="uq_site_tenant_ga4_property"),
    )
    op.create_index("idx_site_tenant_id", "site", ["tenant_id"], unique=False)

    op.create_table(
        "oauth_token",
        _uuid_column("id", dialect_name),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column(
            "provider",
            sa.Enum(*OAUTH_PROVIDERS, name="oauth_provider"),
            nullable=False,
            server_default=sa.text("'google'"),
        ),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("refresh_token", sa.Text(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("scopes", json_type, nullable=False, server_default=json_array_default),
        _timestamp_column("created_at"),
        _timestamp_column("updated_at"),
        sa.ForeignKeyConstraint(
            ["user_id"],
            ["app_user.id"],
            name="fk_oauth_token_user_id_app_user",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_oauth_token"),
        sa.UniqueConstraint("user_id", "provider", name="uq_oauth_token_user_provider"),
    )


def downgrade() -> None:
    bind = op.get_bind()
    dialect_name = bind.dialect.name

    op.drop_table("oauth_token")
    op.drop_index("idx_site_tenant_id", table_name="site")
    op.drop_table("site")
    op.drop_index("idx_app_user_tenant_id", table_name="app_user")
    op.drop_table("app_user")
    op.drop_table("tenant")

    if dialect_name == "postgresql":
        for enum_name, values in (
            ("oauth_provider", OAUTH_PROVIDERS),
            ("user_role", USER_ROLES),
            ("tenant_plan", TENANT_PLANS),
        ):
            sa.Enum(*values, name=enum_name).drop(bind, checkfirst=True)
