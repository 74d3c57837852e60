"""users, devices, refresh sessions, audit log

Revision ID: 0001_auth_core
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_auth_core"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid, primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("phone_e164", sa.Text, nullable=False),
        sa.Column("full_name", sa.Text, nullable=False, server_default="Unknown"),
        sa.Column("email", sa.Text, nullable=True),
        sa.Column("roles", sa.JSON, nullable=False, server_default=sa.text("'[\"user\"]'::json")),
        sa.Column("status", sa.Text, nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("verification_status", sa.Text, nullable=False, server_default="pending"),
        sa.Column("verification_correlation_token", sa.Text, nullable=True),
        sa.Column("verification_attempts", sa.Integer, nullable=False, server_default=sa.text("0")),
        sa.Column("verification_subject_phone", sa.Text, nullable=True),
        sa.Column("verification_check_url", sa.Text, nullable=True),
        sa.Column("verification_method", sa.Text, nullable=True),
        sa.Column("verification_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("verification_verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("verification_raw_response", sa.JSON, nullable=True),
        sa.CheckConstraint("status in ('active','suspended','deleted')", name="ck_user_status"),
        sa.CheckConstraint(
            "verification_status in ('pending','verified','failed','expired')",
            name="ck_user_verification_status",
        ),
        sa.UniqueConstraint("phone_e164", name="uq_users_phone_e164"),
        sa.UniqueConstraint("verification_correlation_token", name="uq_users_verification_correlation_token"),
    )
    op.create_index("ix_users_verification_pending", "users", ["verification_status", "verification_started_at"])

    op.create_table(
        "user_devices",
        sa.Column("id", sa.Uuid, primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("user_id", sa.Uuid, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("device_id", sa.Text, nullable=False),
        sa.Column("platform", sa.Text, nullable=False, server_default="android"),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("platform in ('android','ios','web')", name="ck_user_device_platform"),
        sa.UniqueConstraint("user_id", "device_id", name="uq_user_devices_user_device"),
    )

    op.create_table(
        "auth_sessions",
        sa.Column("id", sa.Uuid, primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("user_id", sa.Uuid, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("device_id", sa.Text, nullable=True),
        sa.Column("token_id", sa.Text, nullable=False),
        sa.Column("refresh_hash", sa.Text, nullable=False),
        sa.Column("previous_token_id", sa.Text, nullable=True),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_reason", sa.Text, nullable=True),
        sa.Column("ip", sa.Text, nullable=True),
        sa.Column("user_agent", sa.Text, nullable=True),
        sa.UniqueConstraint("token_id", name="uq_auth_sessions_token_id"),
    )
    op.create_index("ix_auth_sessions_user_active", "auth_sessions", ["user_id", "revoked_at"])
    op.create_index("ix_auth_sessions_previous_token_id", "auth_sessions", ["previous_token_id"])

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Uuid, primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("actor_user_id", sa.Uuid, sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("entity_type", sa.Text, nullable=False),
        sa.Column("entity_id", sa.Text, nullable=False),
        sa.Column("action", sa.Text, nullable=False),
        sa.Column("data", sa.JSON, nullable=False, server_default=sa.text("'{}'::json")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_audit_entity", "audit_log", ["entity_type", "entity_id"])
    op.create_index("ix_audit_actor_created", "audit_log", ["actor_user_id", sa.text("created_at DESC")])


def downgrade():
    op.drop_index("ix_audit_actor_created", table_name="audit_log")
    op.drop_index("ix_audit_entity", table_name="audit_log")
    op.drop_table("audit_log")

    op.drop_index("ix_auth_sessions_previous_token_id", table_name="auth_sessions")
    op.drop_index("ix_auth_sessions_user_active", table_name="auth_sessions")
    op.drop_table("auth_sessions")

    op.drop_table("user_devices")

    op.drop_index("ix_users_verification_pending", table_name="users")
    op.drop_table("users")
