# pyright: reportMissingImports=false
# pyright: reportUnknownArgumentType=false
# pyright: reportUnknownVariableType=false
from __future__ import annotations

from fastapi import APIRouter

from accessguard.api.v1.admin_protection import router as admin_protection_router
from accessguard.api.v1.credentials import router as credentials_router
from accessguard.api.v1.health import router as health_router
from accessguard.api.v1.login_guard import router as login_guard_router


api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(credentials_router)
api_router.include_router(login_guard_router)
api_router.include_router(admin_protection_router)
