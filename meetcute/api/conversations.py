"""
Conversations API.

GET  /v1/conversations                     — The caller's conversations
GET  /v1/conversations/{id}/messages       — Messages, oldest first
POST /v1/conversations/{id}/messages       — Send a message
POST /v1/conversations/{id}/read           — Mark the other side's messages read
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import AuthenticatedUser
from ..core.dependencies import get_user, get_db
from ..core.errors import MeetCuteError
from ..core.guardrails import check_message
from ..models.conversation import Message
from ..services import conversations, realtime
from .errors import http_error

logger = logging.getLogger(__name__)

conversations_router = APIRouter(prefix="/conversations", tags=["conversations"])


class ConversationSummaryOut(BaseModel):
    id: str
    other_user_id: str
    match_id: Optional[str] = None
    last_message_at: Optional[datetime] = None
    unread_count: int = 0


class MessageRequest(BaseModel):
    content: str


class MessageOut(BaseModel):
    id: str
    sender_id: str
    content: str
    read_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


def _message_out(m: Message) -> MessageOut:
    return MessageOut(
        id=m.id,
        sender_id=m.sender_id,
        content=m.content,
        read_at=m.read_at,
        created_at=m.created_at,
    )


@conversations_router.get("", response_model=list[ConversationSummaryOut])
async def list_conversations(
    user: AuthenticatedUser = Depends(get_user),
    db: AsyncSession = Depends(get_db),
):
    """List conversations for the current user, newest first."""
    summaries = await conversations.list_conversations(db, user.user_id)
    return [
        ConversationSummaryOut(
            id=s.id,
            other_user_id=s.other_user_id,
            match_id=s.match_id,
            last_message_at=s.last_message_at,
            unread_count=s.unread_count,
        )
        for s in summaries
    ]


@conversations_router.get("/{conversation_id}/messages", response_model=list[MessageOut])
async def list_messages(
    conversation_id: str,
    limit: int = 100,
    offset: int = 0,
    user: AuthenticatedUser = Depends(get_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        convo = await conversations.get_conversation_for(db, conversation_id, user.user_id)
    except MeetCuteError as e:
        raise http_error(e)

    result = await db.execute(
        select(Message)
        .where(Message.conversation_id == convo.id)
        .order_by(Message.created_at.asc())
        .limit(limit)
        .offset(offset)
    )
    return [_message_out(m) for m in result.scalars().all()]


@conversations_router.post("/{conversation_id}/messages", response_model=MessageOut, status_code=201)
async def send_message(
    conversation_id: str,
    req: MessageRequest,
    user: AuthenticatedUser = Depends(get_user),
    db: AsyncSession = Depends(get_db),
):
    check = check_message(req.content)
    if not check.allowed:
        raise HTTPException(status_code=400, detail=check.reason)

    try:
        message = await conversations.send_message(
            db, conversation_id, user.user_id, check.modified_input
        )
        convo = await conversations.get_conversation_for(db, conversation_id, user.user_id)
    except MeetCuteError as e:
        raise http_error(e)

    recipients = [p.user_id for p in convo.participants if p.user_id != user.user_id]
    await db.commit()
    await realtime.message_sent(conversation_id, recipients)
    return _message_out(message)


@conversations_router.post("/{conversation_id}/read")
async def mark_read(
    conversation_id: str,
    user: AuthenticatedUser = Depends(get_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        changed = await conversations.mark_read(db, conversation_id, user.user_id)
    except MeetCuteError as e:
        raise http_error(e)

    await db.commit()
    if changed:
        await realtime.notifications_changed(user.user_id)
    return {"conversation_id": conversation_id, "marked_read": changed}
