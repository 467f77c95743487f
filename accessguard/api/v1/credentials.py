# pyright: reportMissingImports=false
# pyright: reportCallInDefaultInitializer=false
from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from accessguard.api.v1.deps import require_identity
from accessguard.services.credentials import Identity


router = APIRouter(prefix="/credentials", tags=["credentials"])


class MeResponse(BaseModel):
    user_id: str
    credential_id: str
    name: str
    permissions: list[str]


@router.get("/me", response_model=MeResponse, operation_id="credentials_me")
def credentials_me(identity: Identity = Depends(require_identity)) -> MeResponse:
    return MeResponse(
        user_id=identity.user_id,
        credential_id=identity.credential_id,
        name=identity.name,
        permissions=sorted(identity.permissions),
    )
