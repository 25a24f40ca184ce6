"""initial schema: businesses, platforms, prompts, executions, accounting

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

revision: str = "0001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())


def upgrade() -> None:
    # =========================================================
    # 1. Tenants and their configuration
    # =========================================================
    op.create_table(
        "businesses",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("website", sa.String(500), nullable=True),
        sa.Column("refresh_period_days", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("next_execution_time", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.CheckConstraint("refresh_period_days >= 1", name="ck_business_refresh_period"),
    )
    op.create_index("ix_businesses_next_execution_time", "businesses", ["next_execution_time"])

    op.create_table(
        "business_platforms",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "business_id", sa.Integer(), sa.ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True
        ),
        sa.Column("platform_key", sa.String(50), nullable=False),
        sa.Column("model", sa.String(100), nullable=True),
        sa.Column("api_key", sa.LargeBinary(), nullable=True),
        sa.Column("is_primary", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        _created_at(),
        sa.UniqueConstraint("business_id", "platform_key", name="uq_business_platform"),
    )

    op.create_table(
        "topics",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "business_id", sa.Integer(), sa.ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True
        ),
        sa.Column("name", sa.String(255), nullable=False),
        _created_at(),
    )

    op.create_table(
        "prompts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "business_id", sa.Integer(), sa.ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True
        ),
        sa.Column("topic_id", sa.Integer(), sa.ForeignKey("topics.id", ondelete="CASCADE"), nullable=True, index=True),
        sa.Column("text", sa.Text(), nullable=False),
        _created_at(),
    )

    op.create_table(
        "competitors",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "business_id", sa.Integer(), sa.ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True
        ),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("website", sa.String(500), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True, server_default="true"),
        _created_at(),
    )

    # =========================================================
    # 2. Executions and their sources
    # =========================================================
    op.create_table(
        "prompt_executions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "business_id", sa.Integer(), sa.ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True
        ),
        sa.Column(
            "prompt_id", sa.Integer(), sa.ForeignKey("prompts.id", ondelete="CASCADE"), nullable=False, index=True
        ),
        sa.Column(
            "platform_id",
            sa.Integer(),
            sa.ForeignKey("business_platforms.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("execution_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("result", sa.Text(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("brand_mentions", sa.Integer(), nullable=True),
        sa.Column("competitors_mentioned", JSONB(), nullable=True),
        sa.Column("mention_analysis", JSONB(), nullable=True),
        sa.Column("analysis_confidence", sa.Float(), nullable=True),
        sa.Column("business_visibility", sa.Integer(), nullable=True),
        sa.Column("competitor_visibilities", JSONB(), nullable=True),
        sa.Column("share_of_voice", sa.Float(), nullable=True),
        sa.Column("competitor_share_of_voice", JSONB(), nullable=True),
        sa.Column("prompt_tokens", sa.Integer(), nullable=True),
        sa.Column("completion_tokens", sa.Integer(), nullable=True),
        sa.Column("total_tokens", sa.Integer(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.UniqueConstraint("business_id", "prompt_id", "platform_id", "execution_date", name="uq_execution_day"),
    )
    op.create_index("ix_prompt_executions_business_date", "prompt_executions", ["business_id", "execution_date"])

    op.create_table(
        "execution_sources",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "execution_id",
            sa.Integer(),
            sa.ForeignKey("prompt_executions.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("domain", sa.String(255), nullable=False),
        sa.Column("url", sa.String(2048), nullable=False),
        sa.Column("category", sa.String(20), nullable=False, server_default="Other"),
        sa.Column("page_type", sa.String(30), nullable=False, server_default="Other"),
        sa.Column("citations", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("associated_brands", JSONB(), nullable=True),
    )

    # =========================================================
    # 3. Accounting
    # =========================================================
    op.create_table(
        "platform_usage",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "business_id", sa.Integer(), sa.ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True
        ),
        sa.Column(
            "platform_id", sa.Integer(), sa.ForeignKey("business_platforms.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("usage_date", sa.Date(), nullable=False),
        sa.Column("prompt_tokens", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("completion_tokens", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("total_tokens", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("request_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("estimated_cost_usd", sa.Float(), nullable=False, server_default="0"),
        sa.UniqueConstraint("business_id", "platform_id", "usage_date", name="uq_platform_usage_day"),
    )

    op.create_table(
        "api_call_logs",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "business_id", sa.Integer(), sa.ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True
        ),
        sa.Column(
            "platform_id", sa.Integer(), sa.ForeignKey("business_platforms.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column(
            "execution_id",
            sa.Integer(),
            sa.ForeignKey("prompt_executions.id", ondelete="SET NULL"),
            nullable=True,
            index=True,
        ),
        sa.Column("call_type", sa.String(30), nullable=False),
        sa.Column("provider", sa.String(30), nullable=True),
        sa.Column("model", sa.String(100), nullable=True),
        sa.Column("prompt_tokens", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completion_tokens", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_tokens", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("estimated_cost_usd", sa.Float(), nullable=False, server_default="0"),
        sa.Column("duration_ms", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("success", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("error_message", sa.Text(), nullable=True),
        _created_at(),
    )


def downgrade() -> None:
    op.drop_table("api_call_logs")
    op.drop_table("platform_usage")
    op.drop_table("execution_sources")
    op.drop_index("ix_prompt_executions_business_date", table_name="prompt_executions")
    op.drop_table("prompt_executions")
    op.drop_table("competitors")
    op.drop_table("prompts")
    op.drop_table("topics")
    op.drop_table("business_platforms")
    op.drop_index("ix_businesses_next_execution_time", table_name="businesses")
    op.drop_table("businesses")
