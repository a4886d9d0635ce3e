"""
Memory drafts — load/save the narrative a user is still writing.

One draft per user. Submitting a memory discards the draft.
"""

import logging
from typing import Optional

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.draft import MemoryDraft

logger = logging.getLogger(__name__)


async def load_draft(db: AsyncSession, user_id: str) -> Optional[MemoryDraft]:
    result = await db.execute(select(MemoryDraft).where(MemoryDraft.user_id == user_id))
    return result.scalar_one_or_none()


async def save_draft(
    db: AsyncSession,
    user_id: str,
    transcript: str,
    location: Optional[str] = None,
    time_period: Optional[str] = None,
) -> MemoryDraft:
    """Create or overwrite the user's draft."""
    draft = await load_draft(db, user_id)
    if draft:
        draft.transcript = transcript
        draft.location = location
        draft.time_period = time_period
    else:
        draft = MemoryDraft(
            user_id=user_id,
            transcript=transcript,
            location=location,
            time_period=time_period,
        )
        db.add(draft)

    await db.flush()
    logger.debug("Saved draft for %s (%d chars)", user_id, len(transcript))
    return draft


async def discard_draft(db: AsyncSession, user_id: str) -> bool:
    """Delete the user's draft. Returns False if there was none."""
    result = await db.execute(delete(MemoryDraft).where(MemoryDraft.user_id == user_id))
    if result.rowcount:
        logger.debug("Discarded draft for %s", user_id)
    return bool(result.rowcount)
