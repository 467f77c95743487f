from __future__ import annotations

import enum
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from accessguard.core.clock import Clock, utcnow
from accessguard.db.models import AccessListEntry
from accessguard.services.protection_settings import ProtectionConfig


logger = logging.getLogger(__name__)


class ListScope(str, enum.Enum):
    IP = "ip"
    USERNAME = "username"


class ListType(str, enum.Enum):
    ALLOW = "allow"
    DENY = "deny"


class AccessListResolver:
    """Administrator-curated allow/deny entries for IPs and usernames.

    Lookups raise on store errors; the lockout manager owns the fail-open policy.
    """

    def __init__(self, db: Session, *, config: ProtectionConfig, now: Clock = utcnow):
        self._db: Session = db
        self._config: ProtectionConfig = config
        self._now: Clock = now

    def _enabled(self, scope: ListScope, list_type: ListType) -> bool:
        c = self._config
        if scope is ListScope.IP:
            return c.enable_ip_denylist if list_type is ListType.DENY else c.enable_ip_safelist
        return (
            c.enable_username_denylist if list_type is ListType.DENY else c.enable_username_safelist
        )

    def _is_listed(self, scope: ListScope, subject: str | None, list_type: ListType) -> bool:
        if not subject or not self._enabled(scope, list_type):
            return False
        stmt = (
            select(AccessListEntry.id)
            .where(
                AccessListEntry.subject == subject,
                AccessListEntry.scope == scope.value,
                AccessListEntry.list_type == list_type.value,
                AccessListEntry.active.is_(True),
            )
            .limit(1)
        )
        return self._db.execute(stmt).scalar_one_or_none() is not None

    def is_denylisted(self, scope: ListScope, subject: str | None) -> bool:
        return self._is_listed(ListScope(scope), subject, ListType.DENY)

    def is_safelisted(self, scope: ListScope, subject: str | None) -> bool:
        return self._is_listed(ListScope(scope), subject, ListType.ALLOW)

    def _get(self, scope: ListScope, subject: str, list_type: ListType) -> AccessListEntry | None:
        stmt = select(AccessListEntry).where(
            AccessListEntry.subject == subject,
            AccessListEntry.scope == scope.value,
            AccessListEntry.list_type == list_type.value,
        )
        return self._db.execute(stmt).scalar_one_or_none()

    def add_to_list(
        self,
        scope: ListScope,
        subject: str,
        list_type: ListType,
        reason: str | None = None,
        added_by: str | None = None,
    ) -> AccessListEntry:
        """Upsert on (subject, list_type, scope); an existing row is reactivated."""
        scope = ListScope(scope)
        list_type = ListType(list_type)
        subject = subject.strip()
        if subject == "":
            raise ValueError("subject must be non-empty")

        now = self._now()
        entry = self._get(scope, subject, list_type)
        if entry is None:
            entry = AccessListEntry(subject=subject, scope=scope.value, list_type=list_type.value)
            self._db.add(entry)
        entry.active = True
        entry.reason = reason
        entry.added_by = added_by
        entry.added_at = now
        self._db.commit()
        logger.info(
            "access list upsert scope=%s list_type=%s subject=%s by=%s",
            scope.value,
            list_type.value,
            subject,
            added_by,
        )
        return entry

    def remove_from_list(self, scope: ListScope, subject: str, list_type: ListType) -> bool:
        entry = self._get(ListScope(scope), subject.strip(), ListType(list_type))
        if entry is None or not entry.active:
            return False
        entry.active = False
        self._db.commit()
        return True

    def list_entries(
        self,
        *,
        scope: ListScope | None = None,
        list_type: ListType | None = None,
        active_only: bool = True,
    ) -> list[AccessListEntry]:
        stmt = select(AccessListEntry)
        if scope is not None:
            stmt = stmt.where(AccessListEntry.scope == ListScope(scope).value)
        if list_type is not None:
            stmt = stmt.where(AccessListEntry.list_type == ListType(list_type).value)
        if active_only:
            stmt = stmt.where(AccessListEntry.active.is_(True))
        stmt = stmt.order_by(AccessListEntry.added_at.desc(), AccessListEntry.id.desc())
        return list(self._db.execute(stmt).scalars().all())
