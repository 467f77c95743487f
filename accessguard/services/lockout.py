"""Brute-force lockout state machine.

A (ip, username) pair is evaluated fresh on every call, first match wins:

* Locked  - an active lockout row with ``unlock_at`` in the future governs the pair.
* Denied  - the IP or the username is on an enabled denylist.
* Safe    - the IP or the username is on an enabled safelist; counting is skipped.
* otherwise the recent failure count is compared with ``max_login_attempts`` and a
  lockout row is created once it is reached.

Only lockouts are persisted. Expiry is a query-time predicate, never a sweep.
Read failures resolve to "not blocked" and are logged.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from accessguard.core.clock import Clock, utcnow
from accessguard.core.errors import Denylisted, Locked
from accessguard.db.models import Lockout
from accessguard.metrics.prometheus import (
    record_brute_force_decision,
    record_lockout_created,
    record_store_error,
)
from accessguard.services.access_lists import AccessListResolver, ListScope
from accessguard.services.attempt_ledger import AttemptLedger, normalize_username
from accessguard.services.audit import AuditLogger
from accessguard.services.protection_settings import ProtectionConfig


logger = logging.getLogger(__name__)

DENYLIST_WAIT_HINT_SECONDS = 3600
DEFAULT_LOCKOUT_REASON = "Too many failed login attempts"
DEFAULT_LOCKOUT_MESSAGE = "Too many failed login attempts. Please try again in {minutes} minutes."
IP_DENIED_MESSAGE = "Access denied from your IP address."
USERNAME_DENIED_MESSAGE = "This username is not allowed to login."


@dataclass(frozen=True)
class BruteForceDecision:
    blocked: bool
    wait_time_seconds: int | None = None
    message: str | None = None
    remaining_attempts: int | None = None
    reason: str = "clear"


class LockoutManager:
    def __init__(
        self,
        db: Session,
        *,
        config: ProtectionConfig,
        ledger: AttemptLedger | None = None,
        lists: AccessListResolver | None = None,
        audit: AuditLogger | None = None,
        now: Clock = utcnow,
    ):
        self._db: Session = db
        self._config: ProtectionConfig = config
        self._now: Clock = now
        self._audit: AuditLogger = audit or AuditLogger(db, now=now)
        self._ledger: AttemptLedger = ledger or AttemptLedger(
            db, config=config, audit=self._audit, now=now
        )
        self._lists: AccessListResolver = lists or AccessListResolver(db, config=config, now=now)

    def _store_failed(self, what: str) -> None:
        logger.exception("brute-force check: %s failed; failing open", what)
        record_store_error("lockout")
        try:
            self._db.rollback()
        except SQLAlchemyError:
            logger.exception("rollback after store failure also failed")

    def _render_message(self, wait_seconds: int) -> str:
        values = {"minutes": math.ceil(wait_seconds / 60), "seconds": wait_seconds}
        try:
            return self._config.lockout_message.format_map(values)
        except (KeyError, IndexError, ValueError):
            logger.warning("lockout_message template is invalid; using default")
            return DEFAULT_LOCKOUT_MESSAGE.format_map(values)

    def _governing_lockout(self, ip: str, username: str | None, now: datetime) -> Lockout | None:
        if username is None:
            subject = Lockout.subject_ip == ip
        else:
            subject = or_(
                Lockout.subject_username == username,
                and_(Lockout.subject_ip == ip, Lockout.subject_username.is_(None)),
            )
        stmt = (
            select(Lockout)
            .where(subject, Lockout.active.is_(True), Lockout.unlock_at > now)
            .order_by(Lockout.unlock_at.desc(), Lockout.id.desc())
            .limit(1)
        )
        return self._db.execute(stmt).scalars().first()

    def _denied_scope(self, ip: str, username: str | None) -> ListScope | None:
        if self._lists.is_denylisted(ListScope.IP, ip):
            return ListScope.IP
        if username is not None and self._lists.is_denylisted(ListScope.USERNAME, username):
            return ListScope.USERNAME
        return None

    def _is_safe(self, ip: str, username: str | None) -> bool:
        if self._lists.is_safelisted(ListScope.IP, ip):
            return True
        return username is not None and self._lists.is_safelisted(ListScope.USERNAME, username)

    def check_brute_force(self, ip: str, username: str | None = None) -> BruteForceDecision:
        """Decide whether a login attempt from ``ip`` for ``username`` may proceed.

        Not idempotent: crossing the threshold inserts a lockout row.
        """
        now = self._now()
        user = normalize_username(username)

        try:
            lockout = self._governing_lockout(ip, user, now)
        except SQLAlchemyError:
            self._store_failed("lockout lookup")
            lockout = None
        if lockout is not None:
            wait = max(1, math.ceil((lockout.unlock_at - now).total_seconds()))
            record_brute_force_decision("locked")
            return BruteForceDecision(
                blocked=True,
                wait_time_seconds=wait,
                message=self._render_message(wait),
                reason="locked",
            )

        try:
            denied = self._denied_scope(ip, user)
        except SQLAlchemyError:
            self._store_failed("denylist lookup")
            denied = None
        if denied is not None:
            record_brute_force_decision("denied")
            return BruteForceDecision(
                blocked=True,
                wait_time_seconds=DENYLIST_WAIT_HINT_SECONDS,
                message=IP_DENIED_MESSAGE if denied is ListScope.IP else USERNAME_DENIED_MESSAGE,
                reason="denied",
            )

        try:
            safe = self._is_safe(ip, user)
        except SQLAlchemyError:
            self._store_failed("safelist lookup")
            safe = False
        if safe:
            record_brute_force_decision("safe")
            return BruteForceDecision(blocked=False, reason="safe")

        try:
            failures = self._ledger.count_recent_failures(ip, user)
        except SQLAlchemyError:
            self._store_failed("failure count")
            record_brute_force_decision("clear")
            return BruteForceDecision(blocked=False)

        max_attempts = self._config.max_login_attempts
        if failures >= max_attempts:
            self.create_lockout(ip, user)
            duration = self._config.lockout_duration
            record_brute_force_decision("threshold")
            return BruteForceDecision(
                blocked=True,
                wait_time_seconds=duration,
                message=self._render_message(duration),
                reason="locked",
            )

        record_brute_force_decision("clear")
        remaining = max_attempts - failures if self._config.show_remaining_attempts else None
        return BruteForceDecision(blocked=False, remaining_attempts=remaining)

    def create_lockout(
        self,
        ip: str | None,
        username: str | None = None,
        *,
        duration_seconds: int | None = None,
        reason: str | None = None,
    ) -> Lockout | None:
        """Insert a lockout unless one already governs the pair.

        Returns the governing row, or None when the store rejected the write.
        """
        now = self._now()
        user = normalize_username(username)
        if ip is None and user is None:
            raise ValueError("a lockout needs an ip or a username")
        duration = duration_seconds or self._config.lockout_duration
        reason = reason or DEFAULT_LOCKOUT_REASON

        try:
            if ip is not None:
                existing = self._governing_lockout(ip, user, now)
                if existing is not None:
                    return existing
            lockout = Lockout(
                subject_ip=ip,
                subject_username=user,
                reason=reason,
                active=True,
                created_at=now,
                unlock_at=now + timedelta(seconds=duration),
            )
            self._db.add(lockout)
            self._db.commit()
        except SQLAlchemyError:
            self._store_failed("lockout insert")
            return None

        record_lockout_created()
        logger.info(
            "lockout created ip=%s username=%s until=%s", ip, user, lockout.unlock_at.isoformat()
        )
        self._audit.record_security_event(
            "lockout.created",
            ip=ip,
            data={"username": user, "reason": reason, "unlock_at": lockout.unlock_at},
        )
        if self._config.notify_admin_lockout:
            self._notify_admin(ip, user, reason)
        return lockout

    def _notify_admin(self, ip: str | None, username: str | None, reason: str) -> None:
        admin_email = self._config.admin_email.strip()
        if admin_email == "":
            return
        logger.warning(
            "lockout notification to=%s ip=%s username=%s reason=%s",
            admin_email,
            ip,
            username,
            reason,
        )
        self._audit.record_security_event(
            "lockout.notify_admin",
            ip=ip,
            data={"admin_email": admin_email, "username": username, "reason": reason},
        )

    def clear_lockout(
        self,
        ip: str | None = None,
        username: str | None = None,
        lockout_id: int | None = None,
    ) -> int:
        """Deactivate lockouts by id, else by ip, else by username.

        Attempt history is left alone, so a cleared actor who keeps failing is
        locked out again on the next check.
        """
        stmt = update(Lockout).where(Lockout.active.is_(True))
        if lockout_id is not None:
            stmt = stmt.where(Lockout.id == lockout_id)
        elif ip is not None:
            stmt = stmt.where(Lockout.subject_ip == ip)
        elif normalize_username(username) is not None:
            stmt = stmt.where(Lockout.subject_username == normalize_username(username))
        else:
            return 0

        result = self._db.execute(stmt.values(active=False))
        self._db.commit()
        cleared = int(result.rowcount or 0)
        if cleared:
            self._audit.record_security_event(
                "lockout.cleared",
                ip=ip,
                data={"lockout_id": lockout_id, "username": username, "cleared": cleared},
            )
        return cleared

    def get_active_lockouts(self) -> list[Lockout]:
        stmt = (
            select(Lockout)
            .where(Lockout.active.is_(True), Lockout.unlock_at > self._now())
            .order_by(Lockout.created_at.desc(), Lockout.id.desc())
        )
        return list(self._db.execute(stmt).scalars().all())

    def remaining_attempts(self, ip: str, username: str | None = None) -> int | None:
        if not self._config.show_remaining_attempts:
            return None
        try:
            failures = self._ledger.count_recent_failures(ip, username)
        except SQLAlchemyError:
            self._store_failed("failure count")
            return None
        return max(0, self._config.max_login_attempts - failures)

    def can_attempt_login(self, ip: str) -> bool:
        return not self.check_brute_force(ip).blocked

    def ensure_can_attempt(self, ip: str, username: str | None = None) -> BruteForceDecision:
        """Like :meth:`check_brute_force` but raises ``Locked``/``Denylisted`` when blocked."""
        decision = self.check_brute_force(ip, username)
        if not decision.blocked:
            return decision
        wait = decision.wait_time_seconds or 0
        message = decision.message or ""
        if decision.reason == "denied":
            raise Denylisted(wait_time_seconds=wait, message=message)
        raise Locked(wait_time_seconds=wait, message=message)
