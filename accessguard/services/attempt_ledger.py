from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from accessguard.core.clock import Clock, utcnow
from accessguard.db.models import LoginAttempt
from accessguard.services.audit import AuditLogger, rollback_quietly
from accessguard.services.protection_settings import ProtectionConfig


logger = logging.getLogger(__name__)

ATTEMPT_RETENTION = timedelta(days=30)


def normalize_username(username: str | None) -> str | None:
    if not isinstance(username, str) or username.strip() == "":
        return None
    return username.strip()


class AttemptLedger:
    def __init__(
        self,
        db: Session,
        *,
        config: ProtectionConfig,
        audit: AuditLogger | None = None,
        now: Clock = utcnow,
    ):
        self._db: Session = db
        self._config: ProtectionConfig = config
        self._audit: AuditLogger = audit or AuditLogger(db, now=now)
        self._now: Clock = now

    def record_attempt(
        self, ip: str, username: str | None, success: bool, user_agent: str | None = None
    ) -> None:
        """Append a login attempt. Never raises; telemetry must not block login."""
        now = self._now()
        user = normalize_username(username)
        try:
            self._db.add(
                LoginAttempt(
                    ip=ip,
                    username=user,
                    success=bool(success),
                    user_agent=(user_agent or "")[:512],
                    attempted_at=now,
                )
            )
            self._db.commit()
        except SQLAlchemyError:
            logger.exception("failed to record login attempt ip=%s username=%s", ip, user)
            rollback_quietly(self._db)
            return

        if not success:
            self._audit.record_security_event(
                "login.failure", ip=ip, data={"username": user}
            )

        self._purge_expired(now)

    def _purge_expired(self, now: datetime) -> None:
        try:
            _ = self._db.execute(
                delete(LoginAttempt).where(LoginAttempt.attempted_at < now - ATTEMPT_RETENTION)
            )
            self._db.commit()
        except SQLAlchemyError:
            logger.exception("failed to purge expired login attempts")
            rollback_quietly(self._db)

    def count_recent_failures(
        self, ip: str, username: str | None, window_seconds: int | None = None
    ) -> int:
        """Failures inside the window: the larger of the IP and username signals.

        With a username, the IP signal only covers attempts from that IP that
        named the same user or no user at all. Without a username the IP signal
        is every failure from that address.

        Store errors propagate; callers decide whether to fail open.
        """
        window = self._config.reset_time if window_seconds is None else int(window_seconds)
        since = self._now() - timedelta(seconds=window)
        user = normalize_username(username)

        ip_stmt = select(func.count()).select_from(LoginAttempt).where(
            LoginAttempt.ip == ip,
            LoginAttempt.success.is_(False),
            LoginAttempt.attempted_at > since,
        )
        if user is not None:
            ip_stmt = ip_stmt.where(
                or_(LoginAttempt.username.is_(None), LoginAttempt.username == user)
            )
        ip_count = int(self._db.execute(ip_stmt).scalar_one())

        user_count = 0
        if user is not None:
            user_count = int(
                self._db.execute(
                    select(func.count())
                    .select_from(LoginAttempt)
                    .where(
                        LoginAttempt.username == user,
                        LoginAttempt.success.is_(False),
                        LoginAttempt.attempted_at > since,
                    )
                ).scalar_one()
            )

        return max(ip_count, user_count)

    def denied_attempts_log(self, limit: int = 100, offset: int = 0) -> list[LoginAttempt]:
        stmt = (
            select(LoginAttempt)
            .where(LoginAttempt.success.is_(False))
            .order_by(LoginAttempt.attempted_at.desc(), LoginAttempt.id.desc())
            .offset(max(0, int(offset)))
            .limit(max(0, int(limit)))
        )
        return list(self._db.execute(stmt).scalars().all())
