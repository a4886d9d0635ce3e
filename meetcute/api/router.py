"""
Main API router. Mounts all sub-routers.
"""

from fastapi import APIRouter, Depends

from ..core.dependencies import get_user

router = APIRouter()


# ── Health (no auth) ─────────────────────────────────────────────────

@router.get("/health")
async def health():
    return {"status": "ok", "service": "meetcute"}


# ── Auth config (no auth) ───────────────────────────────────────────

@router.get("/auth/config")
async def auth_config():
    from ..core.config import get_settings
    from ..core.flags import get_flags

    flags = get_flags()
    if not flags.use_auth0:
        return {"auth_enabled": False, "message": "Auth0 disabled, requests run as the local user"}

    settings = get_settings()
    return {
        "auth_enabled": True,
        "domain": settings.auth0_domain,
        "audience": settings.auth0_audience,
    }


# ── V1 routes (auth required) ───────────────────────────────────────

from .memories import memories_router
from .matches import matches_router
from .conversations import conversations_router
from .notifications import notifications_router
from .admin import admin_router

router.include_router(memories_router, prefix="/v1", dependencies=[Depends(get_user)])
router.include_router(matches_router, prefix="/v1", dependencies=[Depends(get_user)])
router.include_router(conversations_router, prefix="/v1", dependencies=[Depends(get_user)])
router.include_router(notifications_router, prefix="/v1", dependencies=[Depends(get_user)])
# require_admin resolves the user itself
router.include_router(admin_router, prefix="/v1")
