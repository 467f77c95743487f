from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from accessguard.core.clock import Clock, utcnow
from accessguard.db.models import AuthLogEntry, SecurityEvent


logger = logging.getLogger(__name__)


def rollback_quietly(db: Session) -> None:
    try:
        db.rollback()
    except SQLAlchemyError:
        logger.exception("rollback after store failure also failed")


def _canonical_json(obj: dict[str, object]) -> str:
    return json.dumps(obj, ensure_ascii=True, separators=(",", ":"), sort_keys=True, default=str)


class AuditLogger:
    """Append-only writers for the API auth trail and generic security events.

    Both writers commit on their own and never raise: an audit row that cannot be
    stored is logged and dropped.
    """

    def __init__(self, db: Session, *, now: Clock = utcnow):
        self._db: Session = db
        self._now: Clock = now

    def record_auth(
        self,
        *,
        credential_prefix: str,
        success: bool,
        reason: str | None = None,
        ip: str = "",
        user_agent: str = "",
        endpoint: str = "",
    ) -> None:
        entry = AuthLogEntry(
            credential_prefix=credential_prefix,
            success=success,
            reason=reason,
            ip=ip[:64],
            user_agent=user_agent[:512],
            endpoint=endpoint[:512],
            created_at=self._now(),
        )
        try:
            self._db.add(entry)
            self._db.commit()
        except SQLAlchemyError:
            logger.exception(
                "failed to write api auth log (success=%s reason=%s)", success, reason
            )
            rollback_quietly(self._db)

    def record_security_event(
        self, event_type: str, *, ip: str | None = None, data: dict[str, object] | None = None
    ) -> None:
        event = SecurityEvent(
            event_type=event_type,
            ip=ip,
            event_data=_canonical_json(data or {}),
            created_at=self._now(),
        )
        try:
            self._db.add(event)
            self._db.commit()
        except SQLAlchemyError:
            logger.exception("failed to record security event %s", event_type)
            rollback_quietly(self._db)


def purge_old_auth_logs(
    db: Session,
    *,
    now: datetime,
    retention_days: int,
) -> dict[str, object]:
    retention_days = int(retention_days)
    cutoff = now - timedelta(days=retention_days)

    to_delete = db.execute(
        select(func.count()).select_from(AuthLogEntry).where(AuthLogEntry.created_at < cutoff)
    ).scalar_one()
    _ = db.execute(delete(AuthLogEntry).where(AuthLogEntry.created_at < cutoff))
    db.commit()

    return {
        "deleted": int(to_delete),
        "retention_days": retention_days,
        "cutoff": cutoff.isoformat(),
    }
