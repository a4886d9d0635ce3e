"""
Matches API.

GET  /v1/matches/pending        — Matches waiting on the caller's answer
GET  /v1/matches                — Every match the caller is part of
POST /v1/matches/{id}/respond   — Accept or decline
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import AuthenticatedUser
from ..core.dependencies import get_user, get_db
from ..core.errors import MeetCuteError
from ..models.match import Match, MATCH_ACCEPTED
from ..services import matching
from ..services.conversations import find_conversation
from .errors import http_error

logger = logging.getLogger(__name__)

matches_router = APIRouter(prefix="/matches", tags=["matches"])


class RespondRequest(BaseModel):
    accept: bool


class MemorySummary(BaseModel):
    description: str = ""
    location: Optional[str] = None
    time_period: Optional[str] = None


class PendingMatchResponse(BaseModel):
    match_id: str
    other_user_id: str
    other_memory_summary: MemorySummary
    confidence: float
    reason: str = ""
    created_at: Optional[datetime] = None


class MatchResponse(BaseModel):
    id: str
    status: str
    confidence: float
    reason: str = ""
    my_confirmation: Optional[bool] = None
    other_confirmation: Optional[bool] = None
    conversation_id: Optional[str] = None


async def _match_out(db: AsyncSession, match: Match, user_id: str) -> MatchResponse:
    conversation_id = None
    if match.status == MATCH_ACCEPTED:
        convo = await find_conversation(db, match.user1_id, match.user2_id)
        conversation_id = convo.id if convo else None
    return MatchResponse(
        id=match.id,
        status=match.status,
        confidence=match.confidence_score,
        reason=match.match_reason or "",
        my_confirmation=match.confirmation_of(user_id),
        other_confirmation=match.confirmation_of(match.other_user(user_id)),
        conversation_id=conversation_id,
    )


@matches_router.get("/pending", response_model=list[PendingMatchResponse])
async def list_pending(
    user: AuthenticatedUser = Depends(get_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        views = await matching.list_pending_matches(db, user.user_id)
    except MeetCuteError as e:
        raise http_error(e)
    return [
        PendingMatchResponse(
            match_id=v.match_id,
            other_user_id=v.other_user_id,
            other_memory_summary=MemorySummary(
                description=v.other_memory_description,
                location=v.other_memory_location,
                time_period=v.other_memory_time_period,
            ),
            confidence=v.confidence,
            reason=v.reason,
            created_at=v.created_at,
        )
        for v in views
    ]


@matches_router.get("", response_model=list[MatchResponse])
async def list_matches(
    status: Optional[str] = None,
    user: AuthenticatedUser = Depends(get_user),
    db: AsyncSession = Depends(get_db),
):
    matches = await matching.list_matches_for(db, user.user_id, status=status)
    return [await _match_out(db, m, user.user_id) for m in matches]


@matches_router.post("/{match_id}/respond", response_model=MatchResponse)
async def respond(
    match_id: str,
    req: RespondRequest,
    user: AuthenticatedUser = Depends(get_user),
    db: AsyncSession = Depends(get_db),
):
    """Record the caller's answer. Two acceptances open a conversation."""
    try:
        match = await matching.respond(db, match_id, user.user_id, req.accept)
    except MeetCuteError as e:
        raise http_error(e)
    return await _match_out(db, match, user.user_id)
