"""
Memories API.

POST   /v1/memories        — Submit a memory (runs matching before returning)
GET    /v1/memories        — The caller's memories
DELETE /v1/memories/{id}   — Withdraw a memory that is still waiting
GET    /v1/memories/draft  — The caller's in-progress narrative
PUT    /v1/memories/draft  — Save it
DELETE /v1/memories/draft  — Discard it
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import AuthenticatedUser
from ..core.dependencies import get_user, get_db
from ..core.errors import MeetCuteError
from ..models.memory import Memory
from ..services import drafts, memory_store
from ..services.submission import submit_memory
from .errors import http_error

logger = logging.getLogger(__name__)

memories_router = APIRouter(prefix="/memories", tags=["memories"])


class MemoryRequest(BaseModel):
    text: str
    location: Optional[str] = None
    time_period: Optional[str] = None


class MemoryResponse(BaseModel):
    id: str
    description: str
    location: Optional[str] = None
    time_period: Optional[str] = None
    status: str
    match_id: Optional[str] = None
    processed: bool = False
    details: dict = {}
    created_at: Optional[datetime] = None


class MatchSummary(BaseModel):
    id: str
    status: str
    confidence: float
    reason: str = ""


class SubmissionResponse(BaseModel):
    memory: MemoryResponse
    match: Optional[MatchSummary] = None
    candidates_considered: int = 0
    warnings: list[str] = []


class DraftRequest(BaseModel):
    transcript: str = ""
    location: Optional[str] = None
    time_period: Optional[str] = None


class DraftResponse(BaseModel):
    transcript: str = ""
    location: Optional[str] = None
    time_period: Optional[str] = None
    updated_at: Optional[datetime] = None


def _memory_out(m: Memory) -> MemoryResponse:
    return MemoryResponse(
        id=m.id,
        description=m.description,
        location=m.display_location,
        time_period=m.display_time_period,
        status=m.status,
        match_id=m.match_id,
        processed=bool(m.processed),
        details=m.extracted_details or {},
        created_at=m.created_at,
    )


@memories_router.post("", response_model=SubmissionResponse, status_code=201)
async def create_memory(
    req: MemoryRequest,
    user: AuthenticatedUser = Depends(get_user),
    db: AsyncSession = Depends(get_db),
):
    """Store a memory and look for the other half of the encounter."""
    try:
        result = await submit_memory(
            db, user.user_id, req.text, location=req.location, time_period=req.time_period
        )
    except MeetCuteError as e:
        raise http_error(e)

    match = None
    if result.match is not None:
        match = MatchSummary(
            id=result.match.id,
            status=result.match.status,
            confidence=result.match.confidence_score,
            reason=result.match.match_reason or "",
        )
    return SubmissionResponse(
        memory=_memory_out(result.memory),
        match=match,
        candidates_considered=result.candidates_considered,
        warnings=result.warnings,
    )


@memories_router.get("", response_model=list[MemoryResponse])
async def list_memories(
    user: AuthenticatedUser = Depends(get_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        memories = await memory_store.list_user_memories(db, user.user_id)
    except MeetCuteError as e:
        raise http_error(e)
    return [_memory_out(m) for m in memories]


# ── Draft (declared before /{memory_id}) ─────────────────────────────

@memories_router.get("/draft", response_model=DraftResponse)
async def get_draft(
    user: AuthenticatedUser = Depends(get_user),
    db: AsyncSession = Depends(get_db),
):
    draft = await drafts.load_draft(db, user.user_id)
    if not draft:
        raise HTTPException(status_code=404, detail="No draft")
    return DraftResponse(
        transcript=draft.transcript,
        location=draft.location,
        time_period=draft.time_period,
        updated_at=draft.updated_at,
    )


@memories_router.put("/draft", response_model=DraftResponse)
async def put_draft(
    req: DraftRequest,
    user: AuthenticatedUser = Depends(get_user),
    db: AsyncSession = Depends(get_db),
):
    draft = await drafts.save_draft(
        db, user.user_id, req.transcript, location=req.location, time_period=req.time_period
    )
    return DraftResponse(
        transcript=draft.transcript,
        location=draft.location,
        time_period=draft.time_period,
        updated_at=draft.updated_at,
    )


@memories_router.delete("/draft")
async def delete_draft(
    user: AuthenticatedUser = Depends(get_user),
    db: AsyncSession = Depends(get_db),
):
    return {"deleted": await drafts.discard_draft(db, user.user_id)}


@memories_router.delete("/{memory_id}")
async def delete_memory(
    memory_id: str,
    user: AuthenticatedUser = Depends(get_user),
    db: AsyncSession = Depends(get_db),
):
    """Withdraw a memory. Matched memories are locked."""
    try:
        await memory_store.delete_memory(db, memory_id, user.user_id)
    except MeetCuteError as e:
        raise http_error(e)
    return {"deleted": True, "id": memory_id}
