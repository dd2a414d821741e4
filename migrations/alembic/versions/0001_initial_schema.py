"""Initial schema - users, explanations, tags, messages, usage logs

Revision ID: 0001
Revises:
Create Date: 2026-10-18

Creates the explanation store, the per-explanation chat log and the usage
accounting table. Live explanations are unique per (user_id, image_hash).
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


subscription_tier = postgresql.ENUM(
    "free", "pro", "developer", name="subscription_tier", create_type=False
)
message_role = postgresql.ENUM("user", "assistant", name="message_role", create_type=False)
usage_action = postgresql.ENUM(
    "explanation", "chat_message", name="usage_action", create_type=False
)


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    subscription_tier.create(op.get_bind(), checkfirst=True)
    message_role.create(op.get_bind(), checkfirst=True)
    usage_action.create(op.get_bind(), checkfirst=True)

    # ==========================================================================
    # users table
    # ==========================================================================
    op.create_table(
        "users",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column(
            "subscription_tier", subscription_tier, server_default="free", nullable=False
        ),
        sa.Column("daily_usage_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("daily_usage_reset_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("total_explanations", sa.Integer(), server_default="0", nullable=False),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("daily_usage_count >= 0", name="ck_users_daily_usage_nonneg"),
        sa.CheckConstraint("total_explanations >= 0", name="ck_users_total_nonneg"),
    )

    # ==========================================================================
    # explanations table
    # ==========================================================================
    op.create_table(
        "explanations",
        sa.Column(
            "id",
            sa.UUID(),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("image_url", sa.Text(), nullable=False),
        sa.Column("thumbnail_url", sa.Text(), nullable=False),
        sa.Column("image_hash", sa.String(64), nullable=False),
        sa.Column("prompt", sa.Text(), nullable=True),
        sa.Column("explanation_text", sa.Text(), nullable=False),
        sa.Column("model_used", sa.Text(), nullable=False),
        sa.Column("processing_time_ms", sa.Integer(), server_default="0", nullable=False),
        sa.Column("confidence_score", sa.Float(), nullable=False),
        sa.Column("category", sa.String(32), server_default="other", nullable=False),
        sa.Column("language", sa.String(8), server_default="en", nullable=False),
        sa.Column("is_developer_mode", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("is_favorite", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("view_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("next_message_seq", sa.Integer(), server_default="1", nullable=False),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("deleted_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "confidence_score >= 0 AND confidence_score <= 1",
            name="ck_explanations_confidence_range",
        ),
        sa.CheckConstraint("view_count >= 0", name="ck_explanations_view_count_nonneg"),
        sa.CheckConstraint("processing_time_ms >= 0", name="ck_explanations_processing_nonneg"),
    )

    # Dedup key among live rows
    op.create_index(
        "uq_explanations_live_user_hash",
        "explanations",
        ["user_id", "image_hash"],
        unique=True,
        postgresql_where=sa.text("deleted_at IS NULL"),
    )
    op.create_index("ix_explanations_user_created", "explanations", ["user_id", "created_at"])

    # ==========================================================================
    # explanation_tags table
    # ==========================================================================
    op.create_table(
        "explanation_tags",
        sa.Column("explanation_id", sa.UUID(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("tag", sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint("explanation_id", "position"),
        sa.ForeignKeyConstraint(["explanation_id"], ["explanations.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_explanation_tags_tag", "explanation_tags", ["tag"])

    # ==========================================================================
    # explanation_messages table
    # ==========================================================================
    op.create_table(
        "explanation_messages",
        sa.Column(
            "id",
            sa.UUID(),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("explanation_id", sa.UUID(), nullable=False),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("role", message_role, nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("model", sa.Text(), nullable=True),
        sa.Column("tokens_used", sa.Integer(), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["explanation_id"], ["explanations.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("explanation_id", "seq", name="uq_explanation_messages_seq"),
        sa.CheckConstraint("seq >= 1", name="ck_explanation_messages_seq_positive"),
        sa.CheckConstraint(
            "length(content) > 0", name="ck_explanation_messages_content_nonempty"
        ),
    )

    # ==========================================================================
    # usage_logs table
    # ==========================================================================
    op.create_table(
        "usage_logs",
        sa.Column(
            "id",
            sa.UUID(),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("action", usage_action, nullable=False),
        sa.Column("resource_id", sa.UUID(), nullable=True),
        sa.Column("tokens_used", sa.Integer(), server_default="0", nullable=False),
        sa.Column("cost_usd", sa.Numeric(12, 6), server_default="0", nullable=False),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("action", "resource_id", name="uq_usage_logs_action_resource"),
    )
    op.create_index("ix_usage_logs_user_created", "usage_logs", ["user_id", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_usage_logs_user_created", table_name="usage_logs")
    op.drop_table("usage_logs")
    op.drop_table("explanation_messages")
    op.drop_index("ix_explanation_tags_tag", table_name="explanation_tags")
    op.drop_table("explanation_tags")
    op.drop_index("ix_explanations_user_created", table_name="explanations")
    op.drop_index("uq_explanations_live_user_hash", table_name="explanations")
    op.drop_table("explanations")
    op.drop_table("users")

    usage_action.drop(op.get_bind(), checkfirst=True)
    message_role.drop(op.get_bind(), checkfirst=True)
    subscription_tier.drop(op.get_bind(), checkfirst=True)
