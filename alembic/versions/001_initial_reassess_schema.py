"""Initial re-estimation schema.

Revision ID: 001
Revises:
Create Date: 2025-07-02

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _uuid_pk() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        nullable=False,
        server_default=sa.text("gen_random_uuid()"),
    )


def _timestamp(name: str) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def upgrade() -> None:
    """Create configuration, secrets, quotes, versions and notes tables."""
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    # Platform LLM configuration (latest version wins)
    op.create_table(
        "platform_llm_config",
        _uuid_pk(),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column(
            "models",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default="{}",
        ),
        sa.Column(
            "prompts",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default="{}",
        ),
        sa.Column(
            "guardrails",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default="{}",
        ),
        sa.Column("updated_by", sa.String(200), nullable=True),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_platform_llm_config")),
        sa.UniqueConstraint("version", name=op.f("uq_platform_llm_config_version")),
        sa.CheckConstraint("version >= 1", name=op.f("ck_platform_llm_config_version_positive")),
    )

    # Industry prompt packs (latest enabled version per key)
    op.create_table(
        "industry_llm_packs",
        _uuid_pk(),
        sa.Column("industry_key", sa.String(100), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "pack",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default="{}",
        ),
        sa.Column("source", sa.String(50), nullable=True),
        sa.Column("updated_by", sa.String(200), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_industry_llm_packs")),
        sa.UniqueConstraint(
            "industry_key",
            "version",
            name=op.f("uq_industry_llm_packs_industry_key_version"),
        ),
        sa.CheckConstraint(
            "industry_key = lower(industry_key)",
            name=op.f("ck_industry_llm_packs_industry_key_lower"),
        ),
    )
    op.create_index(
        "ix_industry_llm_packs_key_enabled_version",
        "industry_llm_packs",
        ["industry_key", "enabled", sa.text("version DESC")],
        unique=False,
    )

    # Tenant presentation and pricing gates
    op.create_table(
        "tenant_settings",
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("industry_key", sa.String(100), nullable=True),
        sa.Column("rendering_style", sa.String(100), nullable=True),
        sa.Column("rendering_notes", sa.Text(), nullable=True),
        sa.Column("pricing_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("ai_mode", sa.String(20), nullable=True),
        sa.Column("plan_tier", sa.String(50), nullable=True),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("tenant_id", name=op.f("pk_tenant_settings")),
        sa.CheckConstraint(
            "ai_mode IS NULL OR ai_mode IN ('assessment_only', 'range', 'fixed')",
            name=op.f("ck_tenant_settings_ai_mode"),
        ),
    )

    # Tenant model and prompt overrides
    op.create_table(
        "tenant_llm_overrides",
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "models",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default="{}",
        ),
        sa.Column(
            "prompts",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default="{}",
        ),
        sa.Column(
            "guardrails",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default="{}",
        ),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("tenant_id", name=op.f("pk_tenant_llm_overrides")),
    )

    # Tenant-owned provider keys (Fernet-encrypted)
    op.create_table(
        "tenant_secrets",
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("openai_key_enc", sa.Text(), nullable=True),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("tenant_id", name=op.f("pk_tenant_secrets")),
    )

    # Quotes with the current-output projection
    op.create_table(
        "quotes",
        _uuid_pk(),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "input",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default="{}",
        ),
        sa.Column(
            "qa",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default="{}",
        ),
        sa.Column(
            "output",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default="{}",
        ),
        sa.Column("current_version", sa.Integer(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_quotes")),
        sa.CheckConstraint(
            "current_version IS NULL OR current_version >= 1",
            name=op.f("ck_quotes_current_version_positive"),
        ),
    )
    op.create_index(
        op.f("ix_quotes_tenant_id"),
        "quotes",
        ["tenant_id"],
        unique=False,
    )

    # Append-only quote versions
    op.create_table(
        "quote_versions",
        _uuid_pk(),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("quote_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("ai_mode", sa.String(20), nullable=False),
        sa.Column("source", sa.String(100), nullable=False),
        sa.Column("created_by", sa.String(200), nullable=False),
        sa.Column("reason", sa.String(200), nullable=True),
        sa.Column(
            "output",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default="{}",
        ),
        sa.Column(
            "meta",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default="{}",
        ),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(
            ["quote_id"],
            ["quotes.id"],
            name=op.f("fk_quote_versions_quote_id_quotes"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_quote_versions")),
        sa.UniqueConstraint(
            "quote_id", "version", name=op.f("uq_quote_versions_quote_id_version")
        ),
        sa.CheckConstraint("version >= 1", name=op.f("ck_quote_versions_version_positive")),
    )
    op.create_index(
        "ix_quote_versions_tenant_quote",
        "quote_versions",
        ["tenant_id", "quote_id"],
        unique=False,
    )

    # Internal notes, optionally attached to a version
    op.create_table(
        "quote_notes",
        _uuid_pk(),
        sa.Column("quote_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("quote_version_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("created_by", sa.String(200), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(
            ["quote_id"],
            ["quotes.id"],
            name=op.f("fk_quote_notes_quote_id_quotes"),
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["quote_version_id"],
            ["quote_versions.id"],
            name=op.f("fk_quote_notes_quote_version_id_quote_versions"),
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_quote_notes")),
    )
    op.create_index(
        "ix_quote_notes_recent",
        "quote_notes",
        ["tenant_id", "quote_id", sa.text("created_at DESC"), sa.text("id DESC")],
        unique=False,
    )


def downgrade() -> None:
    """Drop the re-estimation schema."""
    op.drop_index("ix_quote_notes_recent", table_name="quote_notes")
    op.drop_table("quote_notes")
    op.drop_index("ix_quote_versions_tenant_quote", table_name="quote_versions")
    op.drop_table("quote_versions")
    op.drop_index(op.f("ix_quotes_tenant_id"), table_name="quotes")
    op.drop_table("quotes")
    op.drop_table("tenant_secrets")
    op.drop_table("tenant_llm_overrides")
    op.drop_table("tenant_settings")
    op.drop_index("ix_industry_llm_packs_key_enabled_version", table_name="industry_llm_packs")
    op.drop_table("industry_llm_packs")
    op.drop_table("platform_llm_config")
