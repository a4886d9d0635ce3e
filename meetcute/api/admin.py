"""
Admin operations.

POST /v1/admin/reconcile — Sweep every waiting memory pair for matches
"""

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import AuthenticatedUser
from ..core.dependencies import require_admin, get_db
from ..core.errors import MeetCuteError
from ..services.candidates import run_reconciliation
from .errors import http_error

logger = logging.getLogger(__name__)

admin_router = APIRouter(prefix="/admin", tags=["admin"])


class ReconcileResponse(BaseModel):
    memories_scanned: int
    pairs_scored: int
    candidates_found: int
    matches_created: int


@admin_router.post("/reconcile", response_model=ReconcileResponse)
async def reconcile(
    user: AuthenticatedUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    logger.info("Reconciliation requested by %s", user.user_id)
    try:
        result = await run_reconciliation(db)
    except MeetCuteError as e:
        raise http_error(e)
    return ReconcileResponse(
        memories_scanned=result.memories_scanned,
        pairs_scored=result.pairs_scored,
        candidates_found=result.candidates_found,
        matches_created=result.matches_created,
    )
