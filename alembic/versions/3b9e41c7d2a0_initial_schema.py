"""initial schema

Revision ID: 3b9e41c7d2a0
Revises:
Create Date: 2026-10-17 00:00:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "3b9e41c7d2a0"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def _user_fk() -> sa.Column:
    return sa.Column(
        "user_id",
        sa.String(36),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False, unique=True, index=True),
        sa.Column("name", sa.String(200), nullable=True),
        sa.Column("is_admin", sa.Boolean, server_default=sa.false(), nullable=False),
        sa.Column("onboarding_completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "user_id",
            sa.String(36),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
            index=True,
        ),
        sa.Column("stripe_customer_id", sa.String(64), nullable=True, index=True),
        sa.Column("stripe_subscription_id", sa.String(64), nullable=True, index=True),
        sa.Column("plan_type", sa.String(16), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("last_payment_date", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "feature_flags",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False, unique=True, index=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("enabled_globally", sa.Boolean, server_default=sa.false(), nullable=False),
        sa.CheckConstraint("name ~ '^[a-z0-9_-]+$'", name="ck_feature_flags_name_format"),
        *_timestamps(),
    )

    op.create_table(
        "user_feature_overrides",
        sa.Column("id", sa.String(36), primary_key=True),
        _user_fk(),
        sa.Column(
            "feature_flag_id",
            sa.String(36),
            sa.ForeignKey("feature_flags.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("enabled", sa.Boolean, nullable=False),
        sa.UniqueConstraint("user_id", "feature_flag_id", name="uq_user_feature_overrides_user_flag"),
        *_timestamps(),
    )

    # admin_user_id is not a foreign key: the trail outlives the admin account
    op.create_table(
        "admin_audit_log",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("admin_user_id", sa.String(36), nullable=False, index=True),
        sa.Column("action", sa.String(64), nullable=False, index=True),
        sa.Column("resource_type", sa.String(64), nullable=False, index=True),
        sa.Column("resource_id", sa.String(64), nullable=True),
        sa.Column("details", postgresql.JSONB, nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False, index=True),
    )

    op.create_table(
        "onboarding_state",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "user_id",
            sa.String(36),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
            index=True,
        ),
        sa.Column("current_screen", sa.Integer, server_default="1", nullable=False),
        sa.Column("completed_screens", postgresql.JSONB, server_default="[]", nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("challenge_voice_memo_id", sa.String(36), nullable=True),
        sa.Column("goal_voice_memo_id", sa.String(36), nullable=True),
        sa.Column("profile_enhancement_voice_memo_id", sa.String(36), nullable=True),
        sa.Column("goal_id", sa.String(36), nullable=True),
        sa.Column("goal_contact_urls", postgresql.JSONB, server_default="[]", nullable=False),
        sa.Column("imported_goal_contacts", postgresql.JSONB, nullable=True),
        sa.Column("linkedin_contacts_added", sa.Integer, nullable=True),
        sa.Column("linkedin_connected", sa.Boolean, server_default=sa.false(), nullable=False),
        sa.Column("gmail_connected", sa.Boolean, server_default=sa.false(), nullable=False),
        sa.Column("calendar_connected", sa.Boolean, server_default=sa.false(), nullable=False),
        sa.CheckConstraint("current_screen BETWEEN 1 AND 12", name="ck_onboarding_state_current_screen"),
        *_timestamps(),
    )

    op.create_table(
        "user_integrations",
        sa.Column("id", sa.String(36), primary_key=True),
        _user_fk(),
        sa.Column("integration_type", sa.String(32), nullable=False),
        sa.Column("access_token", sa.Text, nullable=True),
        sa.Column("refresh_token", sa.Text, nullable=True),
        sa.Column("token_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scopes", postgresql.JSONB, server_default="[]", nullable=False),
        sa.Column("integration_data", postgresql.JSONB, nullable=True),
        sa.UniqueConstraint("user_id", "integration_type", name="uq_user_integrations_user_type"),
        *_timestamps(),
    )

    op.create_table(
        "artifacts",
        sa.Column("id", sa.String(36), primary_key=True),
        _user_fk(),
        sa.Column("contact_id", sa.String(36), nullable=True, index=True),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("content", sa.Text, server_default="", nullable=False),
        sa.Column("metadata", postgresql.JSONB, nullable=True),
        sa.Column("ai_parsing_status", sa.String(32), nullable=True),
        *_timestamps(),
    )


def downgrade() -> None:
    op.drop_table("artifacts")
    op.drop_table("user_integrations")
    op.drop_table("onboarding_state")
    op.drop_table("admin_audit_log")
    op.drop_table("user_feature_overrides")
    op.drop_table("feature_flags")
    op.drop_table("subscriptions")
    op.drop_table("users")
