"""
Two-party conversations — find-or-create, send, mark read.

ensure_conversation() searches before inserting and the participant_key
column is unique, so two confirmations racing for the same pair end up in
one conversation.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import ConversationNotFound
from ..models.base import pair_key, utcnow
from ..models.conversation import Conversation, ConversationParticipant, Message

logger = logging.getLogger(__name__)


async def _find_by_key(db: AsyncSession, key: str) -> Optional[Conversation]:
    result = await db.execute(select(Conversation).where(Conversation.participant_key == key))
    return result.scalar_one_or_none()


async def find_conversation(db: AsyncSession, user_a: str, user_b: str) -> Optional[Conversation]:
    """The conversation linking exactly these two users, if one exists."""
    convo = await _find_by_key(db, pair_key(user_a, user_b))
    if convo is not None:
        return convo

    # Rows created without a key: look for a conversation whose only
    # participants are user_a and user_b.
    P = ConversationParticipant
    result = await db.execute(
        select(P.conversation_id)
        .group_by(P.conversation_id)
        .having(
            func.count(P.id) == 2,
            func.sum(case((P.user_id.in_([user_a, user_b]), 1), else_=0)) == 2,
            func.count(func.distinct(P.user_id)) == 2,
        )
        .limit(1)
    )
    conversation_id = result.scalar_one_or_none()
    if conversation_id is None:
        return None
    result = await db.execute(select(Conversation).where(Conversation.id == conversation_id))
    return result.scalar_one_or_none()


async def ensure_conversation(
    db: AsyncSession,
    user_a: str,
    user_b: str,
    match_id: Optional[str] = None,
) -> str:
    """
    Return the id of the conversation between user_a and user_b,
    creating it (plus both participant rows) if needed. Idempotent.
    """
    if user_a == user_b:
        raise ValueError("A conversation needs two different users")

    existing = await find_conversation(db, user_a, user_b)
    if existing is not None:
        if match_id and not existing.match_id:
            existing.match_id = match_id
            await db.flush()
        logger.debug("Conversation %s already links %s and %s", existing.id, user_a, user_b)
        return existing.id

    try:
        async with db.begin_nested():
            convo = Conversation(
                participant_key=pair_key(user_a, user_b),
                match_id=match_id,
                participants=[
                    ConversationParticipant(user_id=user_a),
                    ConversationParticipant(user_id=user_b),
                ],
            )
            db.add(convo)
            await db.flush()
    except IntegrityError:
        # Another caller created it between our search and insert
        existing = await find_conversation(db, user_a, user_b)
        if existing is None:
            raise
        logger.info("Conversation for %s/%s created concurrently, reusing %s",
                    user_a, user_b, existing.id)
        return existing.id

    logger.info("Conversation %s created for %s and %s (match=%s)",
                convo.id, user_a, user_b, match_id)
    return convo.id


# ── Participants' view ───────────────────────────────────────────────

async def get_conversation_for(db: AsyncSession, conversation_id: str, user_id: str) -> Conversation:
    result = await db.execute(select(Conversation).where(Conversation.id == conversation_id))
    convo = result.scalar_one_or_none()
    if convo is None or user_id not in {p.user_id for p in convo.participants}:
        raise ConversationNotFound(conversation_id)
    return convo


@dataclass
class ConversationSummary:
    id: str
    other_user_id: str
    match_id: Optional[str]
    last_message_at: Optional[datetime]
    unread_count: int


async def list_conversations(db: AsyncSession, user_id: str) -> list[ConversationSummary]:
    mine = select(ConversationParticipant.conversation_id).where(
        ConversationParticipant.user_id == user_id
    )
    result = await db.execute(
        select(Conversation)
        .where(Conversation.id.in_(mine))
        .order_by(Conversation.created_at.desc())
    )
    convos = list(result.scalars().all())
    if not convos:
        return []

    unread_result = await db.execute(
        select(Message.conversation_id, func.count(Message.id))
        .where(
            Message.conversation_id.in_([c.id for c in convos]),
            Message.sender_id != user_id,
            Message.read_at.is_(None),
        )
        .group_by(Message.conversation_id)
    )
    unread = dict(unread_result.all())

    summaries = []
    for c in convos:
        others = [p.user_id for p in c.participants if p.user_id != user_id]
        summaries.append(ConversationSummary(
            id=c.id,
            other_user_id=others[0] if others else "",
            match_id=c.match_id,
            last_message_at=c.last_message_at,
            unread_count=unread.get(c.id, 0),
        ))
    return summaries


async def send_message(
    db: AsyncSession, conversation_id: str, sender_id: str, content: str
) -> Message:
    convo = await get_conversation_for(db, conversation_id, sender_id)
    message = Message(conversation_id=convo.id, sender_id=sender_id, content=content)
    db.add(message)
    convo.last_message_at = utcnow()
    await db.flush()
    return message


async def mark_read(db: AsyncSession, conversation_id: str, user_id: str) -> int:
    """Mark every message the other side sent as read. Returns how many changed."""
    await get_conversation_for(db, conversation_id, user_id)
    result = await db.execute(
        update(Message)
        .where(
            Message.conversation_id == conversation_id,
            Message.sender_id != user_id,
            Message.read_at.is_(None),
        )
        .values(read_at=utcnow())
    )
    return result.rowcount
