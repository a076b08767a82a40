"""enable rls on all tables

Revision ID: 7c1d5a9e4f20
Revises: 3b9e41c7d2a0
Create Date: 2026-10-17

The API connects with the service role and enforces access itself; the
anon/authenticated roles that reach Postgres through PostgREST get nothing.
"""
from typing import Sequence, Union
from alembic import op

revision: str = "7c1d5a9e4f20"
down_revision: Union[str, Sequence[str], None] = "3b9e41c7d2a0"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ALL_TABLES = [
    "users",
    "subscriptions",
    "feature_flags",
    "user_feature_overrides",
    "admin_audit_log",
    "onboarding_state",
    "user_integrations",
    "artifacts",
]


def upgrade() -> None:
    for table in ALL_TABLES:
        op.execute(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY")
        op.execute(f"ALTER TABLE {table} FORCE ROW LEVEL SECURITY")
        op.execute(
            f'CREATE POLICY "deny_all_{table}" ON {table} '
            f"FOR ALL TO anon, authenticated USING (false)"
        )
    # audit trail is append-only
    op.execute("REVOKE UPDATE, DELETE ON admin_audit_log FROM PUBLIC")


def downgrade() -> None:
    for table in ALL_TABLES:
        op.execute(f'DROP POLICY IF EXISTS "deny_all_{table}" ON {table}')
        op.execute(f"ALTER TABLE {table} NO FORCE ROW LEVEL SECURITY")
        op.execute(f"ALTER TABLE {table} DISABLE ROW LEVEL SECURITY")
