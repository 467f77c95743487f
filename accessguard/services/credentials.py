"""API credential authentication.

Secrets are only stored hashed, so a presented secret cannot be looked up
directly: every active credential is verified in turn until one matches. The
cost is linear in the number of active credentials.

Every rejection resolves to ``None`` for the caller; the specific reason goes to
the ``api_auth_logs`` trail only. Store errors reject (fail closed).
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import cast

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from accessguard.core.clock import Clock, utcnow
from accessguard.core.errors import (
    AccessProtectionError,
    ExpiredCredential,
    IPNotAllowlisted,
    MalformedCredential,
    RateLimitExceeded,
    StoreUnavailable,
    UnknownOrInactiveCredential,
)
from accessguard.core.security import (
    generate_api_secret,
    hash_api_secret,
    is_well_formed_secret,
    secret_prefix,
    verify_api_secret,
)
from accessguard.db.models import ApiCredential
from accessguard.metrics.prometheus import record_api_auth, record_store_error
from accessguard.services.api_rate_limit import ApiRateLimiter, RequestMeta
from accessguard.services.audit import AuditLogger


logger = logging.getLogger(__name__)

API_KEY_HEADER = "x-api-key"
API_KEY_QUERY_PARAM = "api_key"

_RE_BEARER = re.compile(r"^Bearer\s+(.+)$", re.IGNORECASE)


@dataclass(frozen=True)
class Identity:
    user_id: str
    credential_id: str
    name: str
    permissions: frozenset[str] = frozenset()


@dataclass(frozen=True)
class RequestContext:
    """The parts of an inbound request the validator looks at.

    Header names are matched case-insensitively.
    """

    headers: Mapping[str, str] = field(default_factory=dict)
    query_params: Mapping[str, str] = field(default_factory=dict)
    peer_ip: str = ""
    endpoint: str = ""
    method: str = ""

    def header(self, name: str) -> str | None:
        wanted = name.lower()
        for k, v in self.headers.items():
            if k.lower() == wanted:
                return v
        return None

    @property
    def user_agent(self) -> str:
        return self.header("user-agent") or ""

    @property
    def client_ip(self) -> str:
        forwarded = self.header("x-forwarded-for")
        if forwarded:
            first = forwarded.split(",")[0].strip()
            if first:
                return first
        real_ip = (self.header("x-real-ip") or "").strip()
        if real_ip:
            return real_ip
        return self.peer_ip


def _load_str_list(raw: str | None) -> list[str]:
    if not raw:
        return []
    try:
        val = cast(object, json.loads(raw))
    except ValueError:
        return []
    if not isinstance(val, list):
        return []
    return [str(x).strip() for x in cast(list[object], val) if str(x).strip()]


def credential_permissions(cred: ApiCredential) -> list[str]:
    return _load_str_list(cred.permissions_json)


def credential_ip_allowlist(cred: ApiCredential) -> list[str]:
    return _load_str_list(cred.ip_allowlist_json)


def has_permission(identity: Identity | None, permission: str) -> bool:
    """Exact match, the global ``*``, or a single trailing ``<namespace>.*``."""
    if identity is None:
        return False
    perms = identity.permissions
    if "*" in perms or permission in perms:
        return True
    namespace, sep, _rest = permission.partition(".")
    return sep != "" and f"{namespace}.*" in perms


class CredentialValidator:
    def __init__(
        self,
        db: Session,
        *,
        rate_limiter: ApiRateLimiter | None = None,
        audit: AuditLogger | None = None,
        now: Clock = utcnow,
    ):
        self._db: Session = db
        self._now: Clock = now
        self._rate_limiter: ApiRateLimiter = rate_limiter or ApiRateLimiter(db, now=now)
        self._audit: AuditLogger = audit or AuditLogger(db, now=now)

    def extract_secret(self, ctx: RequestContext) -> str | None:
        api_key = (ctx.header(API_KEY_HEADER) or "").strip()
        if api_key:
            return api_key

        auth = (ctx.header("authorization") or "").strip()
        m = _RE_BEARER.match(auth)
        if m is not None and m.group(1).strip():
            return m.group(1).strip()

        query_key = (ctx.query_params.get(API_KEY_QUERY_PARAM) or "").strip()
        if query_key:
            logger.warning(
                "api key passed as query parameter on %s %s; use the X-API-Key header",
                ctx.method,
                ctx.endpoint,
            )
            return query_key
        return None

    def _find_credential(self, secret: str) -> ApiCredential | None:
        rows = self._db.execute(
            select(ApiCredential)
            .where(ApiCredential.is_active.is_(True))
            .order_by(ApiCredential.created_at.desc())
        ).scalars().all()
        for cred in rows:
            if verify_api_secret(secret, cred.secret_hash):
                return cred
        return None

    def _resolve(self, secret: str, ctx: RequestContext, client_ip: str) -> Identity:
        if not is_well_formed_secret(secret):
            raise MalformedCredential()

        cred = self._find_credential(secret)
        if cred is None:
            raise UnknownOrInactiveCredential()
        if not cred.is_active:
            raise UnknownOrInactiveCredential("key inactive")

        now = self._now()
        if cred.expires_at is not None and cred.expires_at <= now:
            raise ExpiredCredential()

        allowlist = credential_ip_allowlist(cred)
        if allowlist and client_ip not in allowlist:
            raise IPNotAllowlisted()

        credential_id = cred.id
        meta = RequestMeta(endpoint=ctx.endpoint, method=ctx.method, ip=client_ip)
        if not self._rate_limiter.check_and_record(credential_id, meta):
            raise RateLimitExceeded()

        cred.last_used_at = now
        cred.usage_count = int(cred.usage_count or 0) + 1
        self._db.commit()

        return Identity(
            user_id=cred.owner_id,
            credential_id=credential_id,
            name=cred.name,
            permissions=frozenset(credential_permissions(cred)),
        )

    def _log(self, secret: str, ctx: RequestContext, client_ip: str, *, reason: str | None) -> None:
        success = reason is None
        record_api_auth(success=success, reason=reason)
        self._audit.record_auth(
            credential_prefix=secret_prefix(secret),
            success=success,
            reason=reason,
            ip=client_ip,
            user_agent=ctx.user_agent,
            endpoint=ctx.endpoint,
        )

    def authenticate(self, ctx: RequestContext) -> Identity | None:
        secret = self.extract_secret(ctx)
        if secret is None:
            return None

        client_ip = ctx.client_ip
        try:
            identity = self._resolve(secret, ctx, client_ip)
        except AccessProtectionError as exc:
            self._log(secret, ctx, client_ip, reason=exc.reason)
            return None
        except SQLAlchemyError:
            logger.exception("credential validation hit a store error; rejecting")
            record_store_error("credentials")
            try:
                self._db.rollback()
            except SQLAlchemyError:
                logger.exception("rollback after store failure also failed")
            self._log(secret, ctx, client_ip, reason=StoreUnavailable.reason)
            return None

        self._log(secret, ctx, client_ip, reason=None)
        return identity

    def has_permission(self, identity: Identity | None, permission: str) -> bool:
        return has_permission(identity, permission)


def issue_credential(
    db: Session,
    *,
    owner_id: str,
    name: str,
    permissions: Iterable[str],
    expires_at: datetime | None = None,
    ip_allowlist: Iterable[str] = (),
    environment: str = "live",
    now: Clock = utcnow,
) -> tuple[ApiCredential, str]:
    """Create a credential and return it with its cleartext secret.

    The secret is not recoverable afterwards; only its salted hash is stored.
    """
    if owner_id.strip() == "":
        raise ValueError("owner_id must be non-empty")
    if name.strip() == "":
        raise ValueError("name must be non-empty")

    secret = generate_api_secret(environment)
    perms = sorted({p.strip() for p in permissions if p.strip()})
    ips = [ip.strip() for ip in ip_allowlist if ip.strip()]
    cred = ApiCredential(
        owner_id=owner_id.strip(),
        name=name.strip(),
        secret_hash=hash_api_secret(secret),
        permissions_json=json.dumps(perms),
        ip_allowlist_json=json.dumps(ips),
        is_active=True,
        expires_at=expires_at,
        usage_count=0,
        created_at=now(),
    )
    db.add(cred)
    db.flush()
    return cred, secret


def revoke_credential(db: Session, credential_id: str) -> bool:
    cred = db.get(ApiCredential, credential_id)
    if cred is None or not cred.is_active:
        return False
    cred.is_active = False
    db.flush()
    return True
