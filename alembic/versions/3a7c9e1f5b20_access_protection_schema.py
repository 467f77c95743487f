"""access protection schema

Revision ID: 3a7c9e1f5b20
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "3a7c9e1f5b20"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    _ = op.create_table(
        "login_attempts",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("ip", sa.String(length=64), nullable=False),
        sa.Column("username", sa.String(length=255), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("user_agent", sa.String(length=512), nullable=False),
        sa.Column("attempted_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_login_attempts_attempted_at", "login_attempts", ["attempted_at"], unique=False
    )
    op.create_index(
        "ix_login_attempts_ip_success_attempted_at",
        "login_attempts",
        ["ip", "success", "attempted_at"],
        unique=False,
    )
    op.create_index(
        "ix_login_attempts_username_success_attempted_at",
        "login_attempts",
        ["username", "success", "attempted_at"],
        unique=False,
    )

    _ = op.create_table(
        "lockouts",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("subject_ip", sa.String(length=64), nullable=True),
        sa.Column("subject_username", sa.String(length=255), nullable=True),
        sa.Column("reason", sa.String(length=255), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("unlock_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "subject_ip IS NOT NULL OR subject_username IS NOT NULL",
            name="ck_lockouts_has_subject",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_lockouts_subject_ip", "lockouts", ["subject_ip"], unique=False)
    op.create_index("ix_lockouts_subject_username", "lockouts", ["subject_username"], unique=False)
    op.create_index("ix_lockouts_unlock_at", "lockouts", ["unlock_at"], unique=False)

    _ = op.create_table(
        "access_list_entries",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("subject", sa.String(length=255), nullable=False),
        sa.Column("list_type", sa.String(length=10), nullable=False),
        sa.Column("scope", sa.String(length=10), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("added_by", sa.String(length=255), nullable=True),
        sa.Column("added_at", sa.DateTime(), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.CheckConstraint("list_type IN ('allow','deny')", name="ck_access_list_entries_list_type"),
        sa.CheckConstraint("scope IN ('ip','username')", name="ck_access_list_entries_scope"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "subject", "list_type", "scope", name="uq_access_list_entries_subject_type_scope"
        ),
    )

    _ = op.create_table(
        "api_credentials",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("owner_id", sa.String(length=64), nullable=False),
        sa.Column("secret_hash", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("permissions_json", sa.Text(), nullable=False),
        sa.Column("ip_allowlist_json", sa.Text(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("last_used_at", sa.DateTime(), nullable=True),
        sa.Column("usage_count", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("usage_count >= 0", name="ck_api_credentials_usage_count_ge_0"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_api_credentials_owner_id", "api_credentials", ["owner_id"], unique=False)
    op.create_index("ix_api_credentials_is_active", "api_credentials", ["is_active"], unique=False)

    _ = op.create_table(
        "api_rate_window_records",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("credential_id", sa.String(length=36), nullable=False),
        sa.Column("endpoint", sa.String(length=512), nullable=False),
        sa.Column("method", sa.String(length=10), nullable=False),
        sa.Column("ip", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_api_rate_window_records_created_at",
        "api_rate_window_records",
        ["created_at"],
        unique=False,
    )
    op.create_index(
        "ix_api_rate_window_records_credential_created",
        "api_rate_window_records",
        ["credential_id", "created_at"],
        unique=False,
    )

    _ = op.create_table(
        "api_auth_logs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("credential_prefix", sa.String(length=32), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("reason", sa.String(length=100), nullable=True),
        sa.Column("ip", sa.String(length=64), nullable=False),
        sa.Column("user_agent", sa.String(length=512), nullable=False),
        sa.Column("endpoint", sa.String(length=512), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_api_auth_logs_created_at", "api_auth_logs", ["created_at"], unique=False)

    _ = op.create_table(
        "security_events",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("event_type", sa.String(length=100), nullable=False),
        sa.Column("ip", sa.String(length=64), nullable=True),
        sa.Column("event_data", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_security_events_event_type", "security_events", ["event_type"], unique=False
    )
    op.create_index(
        "ix_security_events_created_at", "security_events", ["created_at"], unique=False
    )

    _ = op.create_table(
        "protection_settings",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("setting_name", sa.String(length=100), nullable=False),
        sa.Column("setting_value", sa.Text(), nullable=False),
        sa.Column("setting_type", sa.String(length=10), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "setting_type IN ('string','integer','boolean','float')",
            name="ck_protection_settings_setting_type",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("setting_name", name="uq_protection_settings_setting_name"),
    )


def downgrade() -> None:
    op.drop_table("protection_settings")

    op.drop_index("ix_security_events_created_at", table_name="security_events")
    op.drop_index("ix_security_events_event_type", table_name="security_events")
    op.drop_table("security_events")

    op.drop_index("ix_api_auth_logs_created_at", table_name="api_auth_logs")
    op.drop_table("api_auth_logs")

    op.drop_index(
        "ix_api_rate_window_records_credential_created", table_name="api_rate_window_records"
    )
    op.drop_index("ix_api_rate_window_records_created_at", table_name="api_rate_window_records")
    op.drop_table("api_rate_window_records")

    op.drop_index("ix_api_credentials_is_active", table_name="api_credentials")
    op.drop_index("ix_api_credentials_owner_id", table_name="api_credentials")
    op.drop_table("api_credentials")

    op.drop_table("access_list_entries")

    op.drop_index("ix_lockouts_unlock_at", table_name="lockouts")
    op.drop_index("ix_lockouts_subject_username", table_name="lockouts")
    op.drop_index("ix_lockouts_subject_ip", table_name="lockouts")
    op.drop_table("lockouts")

    op.drop_index(
        "ix_login_attempts_username_success_attempted_at", table_name="login_attempts"
    )
    op.drop_index("ix_login_attempts_ip_success_attempted_at", table_name="login_attempts")
    op.drop_index("ix_login_attempts_attempted_at", table_name="login_attempts")
    op.drop_table("login_attempts")
