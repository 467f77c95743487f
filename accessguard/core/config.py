# pyright: reportMissingImports=false

from __future__ import annotations

from functools import lru_cache
from typing import ClassVar

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven settings with local dev defaults.

    The ``protection_*`` values are only the defaults of the login protection
    surface; administrators override them at runtime through the
    ``protection_settings`` table (see ``services.protection_settings``).
    """

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_file=None,
        case_sensitive=False,
        extra="ignore",
    )

    api_v1_prefix: str = "/api/v1"
    log_level: str = "INFO"

    env: str = "dev"

    # Prefer DATABASE_URL when provided; otherwise construct from POSTGRES_* vars.
    database_url: str | None = None
    postgres_db: str = "accessguard"
    postgres_user: str = "accessguard"
    postgres_password: str = "accessguard"
    postgres_host: str = "localhost"
    postgres_port: int = 5432

    # Upper bound for a single store call; expiry is treated as a store failure.
    store_timeout_ms: int = 2000

    protection_max_login_attempts: int = 5
    protection_lockout_duration: int = 900
    protection_reset_time: int = 900
    protection_enable_ip_denylist: bool = True
    protection_enable_ip_safelist: bool = False
    protection_enable_username_denylist: bool = True
    protection_enable_username_safelist: bool = False
    protection_show_remaining_attempts: bool = True
    protection_lockout_message: str = (
        "Too many failed login attempts. Please try again in {minutes} minutes."
    )
    protection_notify_admin_lockout: bool = False
    protection_admin_email: str = ""

    auth_log_retention_days: int = 90

    @field_validator(
        "protection_max_login_attempts",
        "protection_lockout_duration",
        "protection_reset_time",
    )
    @classmethod
    def _positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be a positive integer")
        return v

    @property
    def sqlalchemy_database_uri(self) -> str:
        if self.database_url:
            return self.database_url
        return (
            f"postgresql+psycopg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    def _is_prod_env(self) -> bool:
        return self.env.strip().lower() in ("prod", "production")

    @model_validator(mode="after")
    def _validate_prod_config(self) -> "Settings":
        if not self._is_prod_env():
            return self

        problems: list[str] = []

        if self.sqlalchemy_database_uri.startswith("sqlite"):
            problems.append("DATABASE_URL must point at PostgreSQL in production (sqlite is dev-only).")
        if self.store_timeout_ms <= 0:
            problems.append("STORE_TIMEOUT_MS must be > 0 in production.")

        if problems:
            details = "\n".join(f"- {p}" for p in problems)
            raise ValueError(
                f"Production settings validation failed (ENV={self.env!r}). Fix the following before starting the server:\n"
                + details
            )

        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
