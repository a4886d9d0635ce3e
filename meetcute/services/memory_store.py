"""
Memory persistence — create, read and transition memories.

Status changes are conditional updates (WHERE status = ...) so a memory can
only leave the waiting pool once, no matter how many writers race on it.
"""

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy import select, update
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import has_pending_writes
from ..core.errors import MemoryLocked, MemoryNotFound, StoreUnavailable
from ..models.memory import Memory, MEMORY_MATCHED, MEMORY_WAITING

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ── Retry logic (reads only) ─────────────────────────────────────────

MAX_RETRIES = 2
BASE_DELAY = 0.2
MAX_DELAY = 2.0


async def with_store_retry(
    db: AsyncSession,
    operation: Callable[[], Awaitable[T]],
    what: str,
) -> T:
    """
    Run a read against the store, retrying connection-level failures with
    exponential backoff + jitter. Raises StoreUnavailable once retries run out.
    """
    last_exc: Optional[Exception] = None

    for attempt in range(MAX_RETRIES + 1):
        try:
            return await operation()
        except (OperationalError, InterfaceError) as e:
            last_exc = e
            # A rollback would lose writes already in this transaction
            if has_pending_writes(db) or attempt == MAX_RETRIES:
                break
            delay = min(MAX_DELAY, BASE_DELAY * (2 ** attempt) + random.uniform(0, 0.1))
            logger.warning(
                "Store error during %s (attempt %d/%d), retrying in %.1fs: %s",
                what, attempt + 1, MAX_RETRIES + 1, delay, e,
            )
            await db.rollback()
            await asyncio.sleep(delay)

    logger.error("Store unavailable during %s: %s", what, last_exc)
    raise StoreUnavailable(f"Store unavailable during {what}") from last_exc


# ── Reads ────────────────────────────────────────────────────────────

async def get_memory(db: AsyncSession, memory_id: str) -> Optional[Memory]:
    async def _op():
        result = await db.execute(select(Memory).where(Memory.id == memory_id))
        return result.scalar_one_or_none()

    return await with_store_retry(db, _op, "get_memory")


async def get_owned_memory(db: AsyncSession, memory_id: str, user_id: str) -> Memory:
    """Fetch a memory that must belong to user_id."""
    memory = await get_memory(db, memory_id)
    if memory is None or memory.user_id != user_id:
        raise MemoryNotFound(memory_id)
    return memory


async def list_user_memories(db: AsyncSession, user_id: str) -> list[Memory]:
    async def _op():
        result = await db.execute(
            select(Memory)
            .where(Memory.user_id == user_id)
            .order_by(Memory.created_at.desc())
        )
        return list(result.scalars().all())

    return await with_store_retry(db, _op, "list_user_memories")


async def list_waiting_memories(
    db: AsyncSession,
    exclude_user_id: Optional[str] = None,
    exclude_memory_id: Optional[str] = None,
) -> list[Memory]:
    """All memories still in the pool, oldest first."""
    async def _op():
        stmt = select(Memory).where(Memory.status == MEMORY_WAITING)
        if exclude_user_id is not None:
            stmt = stmt.where(Memory.user_id != exclude_user_id)
        if exclude_memory_id is not None:
            stmt = stmt.where(Memory.id != exclude_memory_id)
        result = await db.execute(stmt.order_by(Memory.created_at.asc(), Memory.id.asc()))
        return list(result.scalars().all())

    return await with_store_retry(db, _op, "list_waiting_memories")


# ── Writes ───────────────────────────────────────────────────────────

async def create_memory(
    db: AsyncSession,
    user_id: str,
    description: str,
    location: Optional[str] = None,
    time_period: Optional[str] = None,
) -> Memory:
    """Insert a new waiting memory. The embedding is backfilled later."""
    memory = Memory(
        user_id=user_id,
        description=description,
        location=location or None,
        time_period=time_period or None,
        status=MEMORY_WAITING,
        processed=False,
    )
    db.add(memory)
    await db.flush()
    logger.info("Created memory %s for user %s (%d chars)", memory.id, user_id, len(description))
    return memory


async def save_processing_results(
    db: AsyncSession,
    memory: Memory,
    embedding: Optional[list[float]] = None,
    details: Optional[dict] = None,
) -> Memory:
    """Backfill the embedding and extracted details, and mark the memory processed."""
    if embedding is not None:
        memory.embedding = list(embedding)
    if details:
        memory.extracted_details = details
        memory.extracted_location = details.get("location") or memory.extracted_location
        memory.extracted_time_period = details.get("time_period") or memory.extracted_time_period
    memory.processed = True
    await db.flush()
    return memory


async def delete_memory(db: AsyncSession, memory_id: str, user_id: str) -> None:
    """Owners may withdraw a memory while it is still waiting."""
    memory = await get_owned_memory(db, memory_id, user_id)
    if memory.status != MEMORY_WAITING:
        raise MemoryLocked(f"Memory {memory_id} is {memory.status}")
    await db.delete(memory)
    await db.flush()
    logger.info("Deleted memory %s for user %s", memory_id, user_id)


async def mark_matched(db: AsyncSession, memory_ids: list[str], match_id: str) -> int:
    """
    Move waiting memories to matched. Returns how many rows changed;
    callers compare against len(memory_ids) to detect a lost race.
    """
    result = await db.execute(
        update(Memory)
        .where(Memory.id.in_(memory_ids), Memory.status == MEMORY_WAITING)
        .values(status=MEMORY_MATCHED, match_id=match_id)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount


async def reopen(db: AsyncSession, memory_ids: list[str], match_id: str) -> int:
    """Return memories held by match_id to the waiting pool."""
    result = await db.execute(
        update(Memory)
        .where(
            Memory.id.in_(memory_ids),
            Memory.status == MEMORY_MATCHED,
            Memory.match_id == match_id,
        )
        .values(status=MEMORY_WAITING, match_id=None)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount
