# pyright: reportMissingImports=false
# pyright: reportUnknownArgumentType=false
# pyright: reportUnknownMemberType=false
# pyright: reportUnknownVariableType=false
# pyright: reportCallInDefaultInitializer=false
from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from accessguard.api.v1.deps import get_protection_config, require_permission
from accessguard.db.session import get_db
from accessguard.services.attempt_ledger import AttemptLedger
from accessguard.services.credentials import Identity
from accessguard.services.lockout import LockoutManager
from accessguard.services.protection_settings import ProtectionConfig


router = APIRouter(prefix="/login-guard", tags=["login-guard"])


class LoginCheckRequest(BaseModel):
    ip: str = Field(..., min_length=1, max_length=64, examples=["203.0.113.7"])
    username: str | None = Field(None, max_length=255, examples=["alice"])


class LoginCheckResponse(BaseModel):
    blocked: bool
    wait_time_seconds: int | None = None
    message: str | None = None
    remaining_attempts: int | None = None
    reason: str


class LoginAttemptRequest(BaseModel):
    ip: str = Field(..., min_length=1, max_length=64, examples=["203.0.113.7"])
    username: str | None = Field(None, max_length=255, examples=["alice"])
    success: bool
    user_agent: str | None = Field(None, max_length=512)


@router.post("/check", response_model=LoginCheckResponse, operation_id="login_guard_check")
def login_guard_check(
    payload: LoginCheckRequest,
    _identity: Identity = Depends(require_permission("login_guard.check")),
    config: ProtectionConfig = Depends(get_protection_config),
    db: Session = Depends(get_db),
) -> LoginCheckResponse:
    decision = LockoutManager(db, config=config).check_brute_force(payload.ip, payload.username)
    return LoginCheckResponse(
        blocked=decision.blocked,
        wait_time_seconds=decision.wait_time_seconds,
        message=decision.message,
        remaining_attempts=decision.remaining_attempts,
        reason=decision.reason,
    )


@router.post(
    "/attempts",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    operation_id="login_guard_record_attempt",
)
def login_guard_record_attempt(
    payload: LoginAttemptRequest,
    _identity: Identity = Depends(require_permission("login_guard.record")),
    config: ProtectionConfig = Depends(get_protection_config),
    db: Session = Depends(get_db),
) -> None:
    AttemptLedger(db, config=config).record_attempt(
        payload.ip, payload.username, payload.success, payload.user_agent
    )
