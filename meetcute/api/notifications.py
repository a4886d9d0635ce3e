"""
Notification counts.

GET /v1/notifications/counts — Badges for the navigation bar
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import AuthenticatedUser
from ..core.dependencies import get_user, get_db
from ..core.errors import MeetCuteError
from ..services import notifications
from .errors import http_error

notifications_router = APIRouter(prefix="/notifications", tags=["notifications"])


class CountsResponse(BaseModel):
    pending_matches: int = 0
    unread_messages: int = 0
    spark_messages: int = 0
    private_messages: int = 0


@notifications_router.get("/counts", response_model=CountsResponse)
async def get_counts(
    user: AuthenticatedUser = Depends(get_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        counts = await notifications.counts(db, user.user_id)
    except MeetCuteError as e:
        raise http_error(e)
    return CountsResponse(**counts.to_dict())
