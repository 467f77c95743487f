# pyright: reportMissingImports=false
# pyright: reportUnknownArgumentType=false
# pyright: reportUnknownMemberType=false
# pyright: reportUnknownVariableType=false
# pyright: reportCallInDefaultInitializer=false
from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from accessguard.api.v1.deps import get_protection_config, require_permission
from accessguard.core.clock import utcnow
from accessguard.core.config import settings
from accessguard.db.models import AccessListEntry, Lockout
from accessguard.db.session import get_db
from accessguard.services.access_lists import AccessListResolver, ListScope, ListType
from accessguard.services.attempt_ledger import AttemptLedger
from accessguard.services.audit import AuditLogger, purge_old_auth_logs
from accessguard.services.credentials import (
    Identity,
    credential_ip_allowlist,
    credential_permissions,
    issue_credential,
    revoke_credential,
)
from accessguard.services.lockout import LockoutManager
from accessguard.services.protection_settings import (
    ProtectionConfig,
    load_protection_config,
    update_setting,
)


router = APIRouter(prefix="/admin/protection", tags=["admin"])

_require_admin = require_permission("protection.admin")


def _to_naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def _actor(identity: Identity) -> str:
    return f"credential:{identity.credential_id}"


class LockoutItem(BaseModel):
    id: int
    ip: str | None
    username: str | None
    reason: str
    created_at: datetime
    unlock_at: datetime


class LockoutListResponse(BaseModel):
    items: list[LockoutItem]


class LockoutClearRequest(BaseModel):
    ip: str | None = Field(None, min_length=1, max_length=64)
    username: str | None = Field(None, min_length=1, max_length=255)
    lockout_id: int | None = Field(None, ge=1)


class LockoutClearResponse(BaseModel):
    cleared: int


class DeniedAttemptItem(BaseModel):
    id: int
    ip: str
    username: str | None
    user_agent: str
    attempted_at: datetime


class DeniedAttemptListResponse(BaseModel):
    items: list[DeniedAttemptItem]
    next_offset: int | None = None


class AccessListItem(BaseModel):
    id: int
    subject: str
    scope: ListScope
    list_type: ListType
    reason: str | None
    added_by: str | None
    added_at: datetime
    active: bool


class AccessListResponse(BaseModel):
    items: list[AccessListItem]


class AccessListUpsertRequest(BaseModel):
    scope: ListScope
    list_type: ListType
    subject: str = Field(..., min_length=1, max_length=255)
    reason: str | None = Field(None, max_length=2000)


class AccessListRemoveResponse(BaseModel):
    removed: bool


class ProtectionSettingsResponse(BaseModel):
    settings: dict[str, object]


class CredentialIssueRequest(BaseModel):
    owner_id: str = Field(..., min_length=1, max_length=64)
    name: str = Field(..., min_length=1, max_length=100)
    permissions: list[str] = Field(default_factory=list, examples=[["login_guard.*"]])
    ip_allowlist: list[str] = Field(default_factory=list)
    expires_at: datetime | None = None
    environment: str = Field("live", pattern="^(live|test)$")


class CredentialIssueResponse(BaseModel):
    id: str
    owner_id: str
    name: str
    permissions: list[str]
    ip_allowlist: list[str]
    expires_at: datetime | None
    created_at: datetime
    secret: str = Field(description="Shown once; only its hash is stored")


class CredentialRevokeResponse(BaseModel):
    revoked: bool


def _lockout_item(row: Lockout) -> LockoutItem:
    return LockoutItem(
        id=row.id,
        ip=row.subject_ip,
        username=row.subject_username,
        reason=row.reason,
        created_at=row.created_at,
        unlock_at=row.unlock_at,
    )


def _list_item(row: AccessListEntry) -> AccessListItem:
    return AccessListItem(
        id=row.id,
        subject=row.subject,
        scope=ListScope(row.scope),
        list_type=ListType(row.list_type),
        reason=row.reason,
        added_by=row.added_by,
        added_at=row.added_at,
        active=bool(row.active),
    )


@router.get("/lockouts", response_model=LockoutListResponse, operation_id="admin_lockouts_list")
def admin_lockouts_list(
    _identity: Identity = Depends(_require_admin),
    config: ProtectionConfig = Depends(get_protection_config),
    db: Session = Depends(get_db),
) -> LockoutListResponse:
    rows = LockoutManager(db, config=config).get_active_lockouts()
    return LockoutListResponse(items=[_lockout_item(r) for r in rows])


@router.post(
    "/lockouts/clear", response_model=LockoutClearResponse, operation_id="admin_lockouts_clear"
)
def admin_lockouts_clear(
    payload: LockoutClearRequest,
    _identity: Identity = Depends(_require_admin),
    config: ProtectionConfig = Depends(get_protection_config),
    db: Session = Depends(get_db),
) -> LockoutClearResponse:
    if payload.lockout_id is None and payload.ip is None and payload.username is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="One of lockout_id, ip or username is required",
        )
    cleared = LockoutManager(db, config=config).clear_lockout(
        ip=payload.ip, username=payload.username, lockout_id=payload.lockout_id
    )
    return LockoutClearResponse(cleared=cleared)


@router.get(
    "/denied-attempts",
    response_model=DeniedAttemptListResponse,
    operation_id="admin_denied_attempts_list",
)
def admin_denied_attempts_list(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    _identity: Identity = Depends(_require_admin),
    config: ProtectionConfig = Depends(get_protection_config),
    db: Session = Depends(get_db),
) -> DeniedAttemptListResponse:
    rows = AttemptLedger(db, config=config).denied_attempts_log(limit=limit + 1, offset=offset)
    more = len(rows) > limit
    page = rows[:limit]

    items = [
        DeniedAttemptItem(
            id=row.id,
            ip=row.ip,
            username=row.username,
            user_agent=row.user_agent,
            attempted_at=row.attempted_at,
        )
        for row in page
    ]
    next_offset = (offset + len(page)) if more else None
    return DeniedAttemptListResponse(items=items, next_offset=next_offset)


@router.get("/lists", response_model=AccessListResponse, operation_id="admin_access_lists_list")
def admin_access_lists_list(
    scope: ListScope | None = Query(None),
    list_type: ListType | None = Query(None),
    active_only: bool = Query(True),
    _identity: Identity = Depends(_require_admin),
    config: ProtectionConfig = Depends(get_protection_config),
    db: Session = Depends(get_db),
) -> AccessListResponse:
    rows = AccessListResolver(db, config=config).list_entries(
        scope=scope, list_type=list_type, active_only=active_only
    )
    return AccessListResponse(items=[_list_item(r) for r in rows])


@router.put("/lists", response_model=AccessListItem, operation_id="admin_access_lists_upsert")
def admin_access_lists_upsert(
    payload: AccessListUpsertRequest,
    identity: Identity = Depends(_require_admin),
    config: ProtectionConfig = Depends(get_protection_config),
    db: Session = Depends(get_db),
) -> AccessListItem:
    try:
        entry = AccessListResolver(db, config=config).add_to_list(
            payload.scope,
            payload.subject,
            payload.list_type,
            reason=payload.reason,
            added_by=_actor(identity),
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

    item = _list_item(entry)
    AuditLogger(db).record_security_event(
        "access_list.updated",
        data={
            "actor": _actor(identity),
            "scope": item.scope.value,
            "list_type": item.list_type.value,
            "subject": item.subject,
        },
    )
    return item


@router.delete(
    "/lists", response_model=AccessListRemoveResponse, operation_id="admin_access_lists_remove"
)
def admin_access_lists_remove(
    scope: ListScope = Query(...),
    list_type: ListType = Query(...),
    subject: str = Query(..., min_length=1, max_length=255),
    identity: Identity = Depends(_require_admin),
    config: ProtectionConfig = Depends(get_protection_config),
    db: Session = Depends(get_db),
) -> AccessListRemoveResponse:
    removed = AccessListResolver(db, config=config).remove_from_list(scope, subject, list_type)
    if removed:
        AuditLogger(db).record_security_event(
            "access_list.removed",
            data={
                "actor": _actor(identity),
                "scope": scope.value,
                "list_type": list_type.value,
                "subject": subject,
            },
        )
    return AccessListRemoveResponse(removed=removed)


@router.get(
    "/settings", response_model=ProtectionSettingsResponse, operation_id="admin_settings_get"
)
def admin_settings_get(
    _identity: Identity = Depends(_require_admin),
    config: ProtectionConfig = Depends(get_protection_config),
) -> ProtectionSettingsResponse:
    return ProtectionSettingsResponse(settings=config.as_dict())


@router.put(
    "/settings", response_model=ProtectionSettingsResponse, operation_id="admin_settings_put"
)
def admin_settings_put(
    payload: dict[str, object] = Body(...),
    identity: Identity = Depends(_require_admin),
    db: Session = Depends(get_db),
) -> ProtectionSettingsResponse:
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Body must not be empty"
        )

    for name, value in payload.items():
        try:
            _ = update_setting(db, name=name, value=value)
        except KeyError:
            db.rollback()
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown setting: {name}"
            )
        except ValueError as exc:
            db.rollback()
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    db.commit()

    AuditLogger(db).record_security_event(
        "settings.updated",
        data={"actor": _actor(identity), "names": sorted(payload.keys())},
    )
    return ProtectionSettingsResponse(settings=load_protection_config(db).as_dict())


@router.post(
    "/credentials",
    response_model=CredentialIssueResponse,
    status_code=status.HTTP_201_CREATED,
    operation_id="admin_credentials_issue",
)
def admin_credentials_issue(
    payload: CredentialIssueRequest,
    identity: Identity = Depends(_require_admin),
    db: Session = Depends(get_db),
) -> CredentialIssueResponse:
    expires_at = _to_naive_utc(payload.expires_at) if payload.expires_at is not None else None
    try:
        cred, secret = issue_credential(
            db,
            owner_id=payload.owner_id,
            name=payload.name,
            permissions=payload.permissions,
            expires_at=expires_at,
            ip_allowlist=payload.ip_allowlist,
            environment=payload.environment,
        )
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    db.commit()

    resp = CredentialIssueResponse(
        id=cred.id,
        owner_id=cred.owner_id,
        name=cred.name,
        permissions=credential_permissions(cred),
        ip_allowlist=credential_ip_allowlist(cred),
        expires_at=cred.expires_at,
        created_at=cred.created_at,
        secret=secret,
    )
    AuditLogger(db).record_security_event(
        "credential.issued",
        data={"actor": _actor(identity), "credential_id": resp.id, "owner_id": resp.owner_id},
    )
    return resp


@router.delete(
    "/credentials/{credential_id}",
    response_model=CredentialRevokeResponse,
    operation_id="admin_credentials_revoke",
)
def admin_credentials_revoke(
    credential_id: str,
    identity: Identity = Depends(_require_admin),
    db: Session = Depends(get_db),
) -> CredentialRevokeResponse:
    if not revoke_credential(db, credential_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Credential not found")
    db.commit()

    AuditLogger(db).record_security_event(
        "credential.revoked",
        data={"actor": _actor(identity), "credential_id": credential_id},
    )
    return CredentialRevokeResponse(revoked=True)


@router.post("/auth-logs/purge", operation_id="admin_auth_logs_purge")
def admin_auth_logs_purge(
    retention_days: int | None = Query(None, ge=1, le=3650),
    _identity: Identity = Depends(_require_admin),
    db: Session = Depends(get_db),
) -> dict[str, object]:
    return purge_old_auth_logs(
        db,
        now=utcnow(),
        retention_days=retention_days or settings.auth_log_retention_days,
    )
