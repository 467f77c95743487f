# pyright: reportMissingImports=false
# pyright: reportUnknownArgumentType=false
# pyright: reportUnknownMemberType=false
# pyright: reportUnknownVariableType=false
# pyright: reportCallInDefaultInitializer=false
from __future__ import annotations

import logging
from collections.abc import Callable
from typing import NoReturn

from fastapi import Depends, HTTPException, Request, Response, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from accessguard.db.session import get_db
from accessguard.services.api_rate_limit import ApiRateLimiter
from accessguard.services.credentials import (
    CredentialValidator,
    Identity,
    RequestContext,
    has_permission,
)
from accessguard.services.protection_settings import ProtectionConfig, load_protection_config


logger = logging.getLogger(__name__)


def _unauthorized(detail: str = "Unauthorized") -> NoReturn:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def _forbidden(detail: str = "Forbidden") -> NoReturn:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


def request_context(request: Request) -> RequestContext:
    return RequestContext(
        headers=dict(request.headers),
        query_params=dict(request.query_params),
        peer_ip=request.client.host if request.client is not None else "",
        endpoint=request.url.path,
        method=request.method,
    )


def get_protection_config(db: Session = Depends(get_db)) -> ProtectionConfig:
    return load_protection_config(db)


def require_identity(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
) -> Identity:
    identity = CredentialValidator(db).authenticate(request_context(request))
    if identity is None:
        _unauthorized()

    try:
        usage = ApiRateLimiter(db).usage(identity.credential_id)
    except SQLAlchemyError:
        logger.exception("failed to compute rate limit headers")
        db.rollback()
    else:
        for name, value in usage.headers().items():
            response.headers[name] = value
    return identity


def require_permission(permission: str) -> Callable[..., Identity]:
    def _dependency(identity: Identity = Depends(require_identity)) -> Identity:
        if not has_permission(identity, permission):
            _forbidden(f"Requires {permission}")
        return identity

    return _dependency
