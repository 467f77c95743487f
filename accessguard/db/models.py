# pyright: reportMissingImports=false
# pyright: reportDeprecated=false
# pyright: reportImplicitOverride=false
# pyright: reportIncompatibleVariableOverride=false
from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from accessguard.db.base import Base


def _uuid_str() -> str:
    return str(uuid4())


class LoginAttempt(Base):
    __tablename__: str = "login_attempts"
    __table_args__: tuple[object, ...] = (
        Index("ix_login_attempts_ip_success_attempted_at", "ip", "success", "attempted_at"),
        Index(
            "ix_login_attempts_username_success_attempted_at",
            "username",
            "success",
            "attempted_at",
        ),
    )

    id: Mapped[int] = mapped_column(Integer(), primary_key=True, autoincrement=True)
    ip: Mapped[str] = mapped_column(String(64), nullable=False)
    username: Mapped[str | None] = mapped_column(String(255), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean(), nullable=False, default=False)
    user_agent: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    attempted_at: Mapped[datetime] = mapped_column(
        DateTime(), default=datetime.utcnow, index=True, nullable=False
    )


class Lockout(Base):
    __tablename__: str = "lockouts"
    __table_args__: tuple[object, ...] = (
        CheckConstraint(
            "subject_ip IS NOT NULL OR subject_username IS NOT NULL",
            name="ck_lockouts_has_subject",
        ),
    )

    id: Mapped[int] = mapped_column(Integer(), primary_key=True, autoincrement=True)
    subject_ip: Mapped[str | None] = mapped_column(String(64), index=True, nullable=True)
    subject_username: Mapped[str | None] = mapped_column(
        String(255), index=True, nullable=True
    )
    reason: Mapped[str] = mapped_column(String(255), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean(), nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(), default=datetime.utcnow, nullable=False
    )
    unlock_at: Mapped[datetime] = mapped_column(DateTime(), index=True, nullable=False)


class AccessListEntry(Base):
    __tablename__: str = "access_list_entries"
    __table_args__: tuple[object, ...] = (
        UniqueConstraint(
            "subject", "list_type", "scope", name="uq_access_list_entries_subject_type_scope"
        ),
        CheckConstraint("list_type IN ('allow','deny')", name="ck_access_list_entries_list_type"),
        CheckConstraint("scope IN ('ip','username')", name="ck_access_list_entries_scope"),
    )

    id: Mapped[int] = mapped_column(Integer(), primary_key=True, autoincrement=True)
    subject: Mapped[str] = mapped_column(String(255), nullable=False)
    list_type: Mapped[str] = mapped_column(String(10), nullable=False)
    scope: Mapped[str] = mapped_column(String(10), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text(), nullable=True)
    added_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    added_at: Mapped[datetime] = mapped_column(
        DateTime(), default=datetime.utcnow, nullable=False
    )
    active: Mapped[bool] = mapped_column(Boolean(), nullable=False, default=True)


class ApiCredential(Base):
    __tablename__: str = "api_credentials"
    __table_args__: tuple[object, ...] = (
        CheckConstraint("usage_count >= 0", name="ck_api_credentials_usage_count_ge_0"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    owner_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    secret_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    permissions_json: Mapped[str] = mapped_column(Text(), nullable=False, default="[]")
    ip_allowlist_json: Mapped[str] = mapped_column(Text(), nullable=False, default="[]")

    is_active: Mapped[bool] = mapped_column(Boolean(), index=True, nullable=False, default=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(), nullable=True)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(), nullable=True)
    usage_count: Mapped[int] = mapped_column(Integer(), nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(), default=datetime.utcnow, nullable=False
    )


class RateWindowRecord(Base):
    __tablename__: str = "api_rate_window_records"
    __table_args__: tuple[object, ...] = (
        Index("ix_api_rate_window_records_credential_created", "credential_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer(), primary_key=True, autoincrement=True)
    credential_id: Mapped[str] = mapped_column(String(36), nullable=False)
    endpoint: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    method: Mapped[str] = mapped_column(String(10), nullable=False, default="")
    ip: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(), default=datetime.utcnow, index=True, nullable=False
    )


class AuthLogEntry(Base):
    __tablename__: str = "api_auth_logs"

    id: Mapped[int] = mapped_column(Integer(), primary_key=True, autoincrement=True)
    credential_prefix: Mapped[str] = mapped_column(String(32), nullable=False)
    success: Mapped[bool] = mapped_column(Boolean(), nullable=False)
    reason: Mapped[str | None] = mapped_column(String(100), nullable=True)
    ip: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    user_agent: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    endpoint: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(), default=datetime.utcnow, index=True, nullable=False
    )


class SecurityEvent(Base):
    __tablename__: str = "security_events"

    id: Mapped[int] = mapped_column(Integer(), primary_key=True, autoincrement=True)
    event_type: Mapped[str] = mapped_column(String(100), index=True, nullable=False)
    ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
    event_data: Mapped[str] = mapped_column(Text(), nullable=False, default="{}")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(), default=datetime.utcnow, index=True, nullable=False
    )


class ProtectionSetting(Base):
    __tablename__: str = "protection_settings"
    __table_args__: tuple[object, ...] = (
        UniqueConstraint("setting_name", name="uq_protection_settings_setting_name"),
        CheckConstraint(
            "setting_type IN ('string','integer','boolean','float')",
            name="ck_protection_settings_setting_type",
        ),
    )

    id: Mapped[int] = mapped_column(Integer(), primary_key=True, autoincrement=True)
    setting_name: Mapped[str] = mapped_column(String(100), nullable=False)
    setting_value: Mapped[str] = mapped_column(Text(), nullable=False, default="")
    setting_type: Mapped[str] = mapped_column(String(10), nullable=False, default="string")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )
