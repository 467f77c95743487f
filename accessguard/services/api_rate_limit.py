from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from accessguard.core.clock import Clock, utcnow
from accessguard.db.models import ApiCredential, RateWindowRecord
from accessguard.services.audit import rollback_quietly


API_RATE_LIMIT_PER_HOUR = 1000
RATE_WINDOW_SECONDS = 3600
RATE_RECORD_RETENTION_SECONDS = 86400

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestMeta:
    endpoint: str = ""
    method: str = ""
    ip: str = ""


@dataclass(frozen=True)
class RateLimitStatus:
    limit: int
    remaining: int
    reset_epoch: int

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_epoch),
        }


class ApiRateLimiter:
    """Sliding one-hour request budget per API credential.

    Store errors on the count or insert propagate to the caller. Pruning old
    records is best effort.
    """

    def __init__(
        self,
        db: Session,
        *,
        budget: int = API_RATE_LIMIT_PER_HOUR,
        window_seconds: int = RATE_WINDOW_SECONDS,
        now: Clock = utcnow,
    ):
        self._db: Session = db
        self._budget: int = int(budget)
        self._window: timedelta = timedelta(seconds=int(window_seconds))
        self._now: Clock = now

    def _window_filter(self, credential_id: str, now: datetime):
        return (
            RateWindowRecord.credential_id == credential_id,
            RateWindowRecord.created_at > now - self._window,
        )

    def _count(self, credential_id: str, now: datetime) -> int:
        stmt = (
            select(func.count())
            .select_from(RateWindowRecord)
            .where(*self._window_filter(credential_id, now))
        )
        return int(self._db.execute(stmt).scalar_one())

    def check_and_record(self, credential_id: str, meta: RequestMeta | None = None) -> bool:
        """Count the window and, if under budget, record this request.

        A rejected request is not recorded. The credential row is locked for
        the count-and-insert so concurrent requests of one credential serialize.
        """
        meta = meta or RequestMeta()
        now = self._now()

        _ = self._db.execute(
            select(ApiCredential.id).where(ApiCredential.id == credential_id).with_for_update()
        )
        if self._count(credential_id, now) >= self._budget:
            self._db.rollback()
            return False

        self._db.add(
            RateWindowRecord(
                credential_id=credential_id,
                endpoint=meta.endpoint[:512],
                method=meta.method[:10],
                ip=meta.ip[:64],
                created_at=now,
            )
        )
        self._db.commit()

        self._prune(now)
        return True

    def _prune(self, now: datetime) -> None:
        cutoff = now - timedelta(seconds=RATE_RECORD_RETENTION_SECONDS)
        try:
            _ = self._db.execute(
                delete(RateWindowRecord).where(RateWindowRecord.created_at < cutoff)
            )
            self._db.commit()
        except SQLAlchemyError:
            logger.exception("failed to prune api rate window records")
            rollback_quietly(self._db)

    def usage(self, credential_id: str) -> RateLimitStatus:
        now = self._now()
        used = self._count(credential_id, now)
        oldest = self._db.execute(
            select(func.min(RateWindowRecord.created_at)).where(
                *self._window_filter(credential_id, now)
            )
        ).scalar_one_or_none()
        reset_at = (oldest or now) + self._window
        return RateLimitStatus(
            limit=self._budget,
            remaining=max(0, self._budget - used),
            reset_epoch=int(reset_at.replace(tzinfo=UTC).timestamp()),
        )
