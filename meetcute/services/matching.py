"""
Match lifecycle — create matches and drive them through confirm / decline.

    pending ──(both owners accept)──▶ accepted ──▶ conversation provisioned
       │
       └──(either owner declines)──▶ declined

Every transition is a conditional UPDATE on the match row, so concurrent
callers can't both win: only one respond() flips a match to accepted, and
only that call provisions the conversation. ensure_conversation() is
idempotent on top of that.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..core.errors import (
    AlreadyResponded,
    DuplicateMatch,
    InvalidMatch,
    MatchNotFound,
    MatchNotPending,
    MemoryAlreadyMatched,
    NotAParticipant,
)
from ..models.base import pair_key
from ..models.match import Match, MATCH_ACCEPTED, MATCH_DECLINED, MATCH_PENDING
from ..models.memory import Memory
from . import conversations, memory_store, realtime

logger = logging.getLogger(__name__)


# ── Creation ─────────────────────────────────────────────────────────

async def find_active_match(db: AsyncSession, memory_a_id: str, memory_b_id: str) -> Optional[Match]:
    """The live (non-declined) match for an unordered memory pair, if any."""
    result = await db.execute(
        select(Match).where(
            Match.status != MATCH_DECLINED,
            or_(
                Match.active_pair_key == pair_key(memory_a_id, memory_b_id),
                and_(Match.memory1_id == memory_a_id, Match.memory2_id == memory_b_id),
                and_(Match.memory1_id == memory_b_id, Match.memory2_id == memory_a_id),
            ),
        ).limit(1)
    )
    return result.scalar_one_or_none()


async def find_declined_match(db: AsyncSession, memory_a_id: str, memory_b_id: str) -> Optional[Match]:
    """A declined match between the same two memories, in either orientation."""
    result = await db.execute(
        select(Match).where(
            Match.status == MATCH_DECLINED,
            or_(
                and_(Match.memory1_id == memory_a_id, Match.memory2_id == memory_b_id),
                and_(Match.memory1_id == memory_b_id, Match.memory2_id == memory_a_id),
            ),
        ).limit(1)
    )
    return result.scalar_one_or_none()


async def _refresh(db: AsyncSession, *objs) -> None:
    for obj in objs:
        if obj in db:
            await db.refresh(obj)


async def create_match(
    db: AsyncSession,
    memory_a: Memory,
    memory_b: Memory,
    confidence: float,
    reason: str,
) -> Match:
    """
    Insert a pending match and move both memories to matched, atomically.

    Raises DuplicateMatch when a live match already exists for the pair
    (pre-check, or the unique active_pair_key losing a race) or when the
    pair was declined before. Raises MemoryAlreadyMatched when either
    memory left the pool meanwhile.
    The caller owns the surrounding transaction.
    """
    if memory_a.id == memory_b.id:
        raise InvalidMatch("A memory cannot match itself")
    if memory_a.user_id == memory_b.user_id:
        raise InvalidMatch("Both memories belong to the same user")

    existing = await find_active_match(db, memory_a.id, memory_b.id)
    if existing is not None:
        raise DuplicateMatch(f"Match {existing.id} already links {memory_a.id} and {memory_b.id}")

    declined = await find_declined_match(db, memory_a.id, memory_b.id)
    if declined is not None:
        raise DuplicateMatch(f"Match {declined.id} between {memory_a.id} and {memory_b.id} was declined")

    try:
        async with db.begin_nested():
            match = Match(
                memory1_id=memory_a.id,
                memory2_id=memory_b.id,
                user1_id=memory_a.user_id,
                user2_id=memory_b.user_id,
                confidence_score=max(0.0, min(1.0, float(confidence))),
                match_reason=reason or None,
                status=MATCH_PENDING,
                active_pair_key=pair_key(memory_a.id, memory_b.id),
            )
            db.add(match)
            await db.flush()

            changed = await memory_store.mark_matched(db, [memory_a.id, memory_b.id], match.id)
            if changed != 2:
                raise MemoryAlreadyMatched(
                    f"Memory {memory_a.id} or {memory_b.id} is no longer waiting"
                )
    except IntegrityError as e:
        await _refresh(db, memory_a, memory_b)
        raise DuplicateMatch(f"Concurrent match for {memory_a.id} and {memory_b.id}") from e
    except MemoryAlreadyMatched:
        await _refresh(db, memory_a, memory_b)
        raise

    await _refresh(db, memory_a, memory_b)
    logger.info(
        "Match %s created: memories %s/%s users %s/%s confidence=%.2f",
        match.id, memory_a.id, memory_b.id, match.user1_id, match.user2_id,
        match.confidence_score,
    )
    return match


# ── Confirmation ─────────────────────────────────────────────────────

async def get_match(db: AsyncSession, match_id: str) -> Match:
    async def _op():
        result = await db.execute(select(Match).where(Match.id == match_id))
        return result.scalar_one_or_none()

    match = await memory_store.with_store_retry(db, _op, "get_match")
    if match is None:
        raise MatchNotFound(match_id)
    return match


async def get_match_for(db: AsyncSession, match_id: str, user_id: str) -> Match:
    match = await get_match(db, match_id)
    if not match.is_participant(user_id):
        logger.error("User %s tried to read match %s they are not part of", user_id, match_id)
        raise NotAParticipant(match_id)
    return match


def _flag_field(match: Match, user_id: str) -> str:
    return "user1_confirmed" if user_id == match.user1_id else "user2_confirmed"


async def _promote(db: AsyncSession, match: Match) -> bool:
    """pending → accepted, only if both flags are true. True if this call did it."""
    result = await db.execute(
        update(Match)
        .where(
            Match.id == match.id,
            Match.status == MATCH_PENDING,
            Match.user1_confirmed.is_(True),
            Match.user2_confirmed.is_(True),
        )
        .values(status=MATCH_ACCEPTED)
    )
    return result.rowcount == 1


async def _provision(db: AsyncSession, match: Match) -> str:
    return await conversations.ensure_conversation(
        db, match.user1_id, match.user2_id, match_id=match.id
    )


async def _resume(db: AsyncSession, match: Match) -> Match:
    """
    Finish whatever a previous identical respond() left undone:
    promote a fully confirmed match, and (re)ensure its conversation.
    """
    if match.status == MATCH_PENDING and match.user1_confirmed and match.user2_confirmed:
        if await _promote(db, match):
            logger.info("Match %s accepted on retry", match.id)
        await db.refresh(match)
    if match.status == MATCH_ACCEPTED:
        await _provision(db, match)
    return match


def _check_can_respond(match: Match, user_id: str, accept: bool) -> bool:
    """
    Returns True for an identical retry (the caller should just resume),
    False when a fresh response may be recorded. Raises otherwise.
    """
    prior = match.confirmation_of(user_id)
    if prior is not None:
        if prior == accept:
            return True
        logger.warning(
            "User %s already answered %s on match %s, now sent %s",
            user_id, prior, match.id, accept,
        )
        raise AlreadyResponded(match.id)
    if match.status != MATCH_PENDING:
        raise MatchNotPending(f"Match {match.id} is {match.status}")
    return False


async def respond(
    db: AsyncSession,
    match_id: str,
    user_id: str,
    accept: bool,
) -> Match:
    """
    Record one owner's answer. Declining closes the match immediately;
    accepting waits for the other owner, and the second acceptance unlocks
    a conversation. Retrying the same answer returns the current state.
    Commits on success.
    """
    match = await get_match(db, match_id)
    if not match.is_participant(user_id):
        logger.error("User %s responded to match %s they are not part of", user_id, match_id)
        raise NotAParticipant(match_id)

    if _check_can_respond(match, user_id, accept):
        logger.info("Repeated response from %s on match %s (accept=%s)", user_id, match_id, accept)
        match = await _resume(db, match)
        await db.commit()
        return match

    field = _flag_field(match, user_id)
    flag = getattr(Match, field)
    values = {field: bool(accept)}
    if not accept:
        values.update(status=MATCH_DECLINED, active_pair_key=None)

    result = await db.execute(
        update(Match)
        .where(Match.id == match.id, Match.status == MATCH_PENDING, flag.is_(None))
        .values(**values)
    )
    if result.rowcount != 1:
        # Someone changed the row between our read and write
        await db.refresh(match)
        if _check_can_respond(match, user_id, accept):
            match = await _resume(db, match)
            await db.commit()
            return match
        raise MatchNotPending(f"Match {match.id} changed concurrently")

    conversation_id = None
    if not accept:
        logger.info("Match %s declined by %s", match.id, user_id)
        if get_settings().reopen_memories_on_decline:
            reopened = await memory_store.reopen(db, [match.memory1_id, match.memory2_id], match.id)
            logger.info("Match %s: %d memories returned to the pool", match.id, reopened)
    else:
        logger.info("Match %s confirmed by %s", match.id, user_id)
        if await _promote(db, match):
            conversation_id = await _provision(db, match)
            logger.info("Match %s accepted, conversation %s", match.id, conversation_id)

    await db.refresh(match)
    await db.commit()

    await realtime.match_updated(match)
    if conversation_id:
        await realtime.conversation_created(conversation_id, [match.user1_id, match.user2_id])
    return match


# ── Queries ──────────────────────────────────────────────────────────

async def pending_for(db: AsyncSession, user_id: str) -> list[Match]:
    """Pending matches still waiting on this user's answer."""
    async def _op():
        result = await db.execute(
            select(Match)
            .where(
                Match.status == MATCH_PENDING,
                or_(
                    and_(
                        Match.user1_id == user_id,
                        or_(Match.user1_confirmed.is_(None), Match.user1_confirmed.is_(False)),
                    ),
                    and_(
                        Match.user2_id == user_id,
                        or_(Match.user2_confirmed.is_(None), Match.user2_confirmed.is_(False)),
                    ),
                ),
            )
            .order_by(Match.created_at.desc())
        )
        return list(result.scalars().all())

    return await memory_store.with_store_retry(db, _op, "pending_for")


async def list_matches_for(
    db: AsyncSession, user_id: str, status: Optional[str] = None
) -> list[Match]:
    """Every match the user is part of, newest first."""
    stmt = select(Match).where(or_(Match.user1_id == user_id, Match.user2_id == user_id))
    if status:
        stmt = stmt.where(Match.status == status)
    result = await db.execute(stmt.order_by(Match.created_at.desc()))
    return list(result.scalars().all())


@dataclass
class PendingMatchView:
    match_id: str
    other_user_id: str
    other_memory_id: str
    other_memory_description: str
    other_memory_location: Optional[str]
    other_memory_time_period: Optional[str]
    confidence: float
    reason: str
    created_at: Optional[datetime]


async def list_pending_matches(db: AsyncSession, user_id: str) -> list[PendingMatchView]:
    """pending_for(), joined with the other side's memory for display."""
    matches = await pending_for(db, user_id)
    if not matches:
        return []

    other_ids = [m.other_memory(user_id) for m in matches]
    result = await db.execute(select(Memory).where(Memory.id.in_(other_ids)))
    memories = {m.id: m for m in result.scalars().all()}

    views = []
    for m in matches:
        other = memories.get(m.other_memory(user_id))
        views.append(PendingMatchView(
            match_id=m.id,
            other_user_id=m.other_user(user_id),
            other_memory_id=m.other_memory(user_id),
            other_memory_description=other.description if other else "",
            other_memory_location=other.display_location if other else None,
            other_memory_time_period=other.display_time_period if other else None,
            confidence=m.confidence_score,
            reason=m.match_reason or "",
            created_at=m.created_at,
        ))
    return views
