"""
Candidate search — which waiting memories might describe the same encounter.

find_candidates() is read-only, so it can run speculatively. Writing a match
is the lifecycle manager's job (services.matching).
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import DuplicateMatch, MemoryAlreadyMatched, InvalidMatch
from ..models.memory import Memory, MEMORY_WAITING
from . import matching, memory_store, realtime
from .similarity import SimilarityScorer

logger = logging.getLogger(__name__)


@dataclass
class Candidate:
    memory: Memory
    confidence: float
    reason: str
    strategy: str = ""


@dataclass
class ReconciliationResult:
    memories_scanned: int = 0
    pairs_scored: int = 0
    candidates_found: int = 0
    matches_created: int = 0


def rank_candidates(candidates: list[Candidate]) -> list[Candidate]:
    """Highest confidence first, each memory at most once."""
    ordered = sorted(candidates, key=lambda c: c.confidence, reverse=True)
    seen: set[str] = set()
    unique = []
    for c in ordered:
        if c.memory.id in seen:
            continue
        seen.add(c.memory.id)
        unique.append(c)
    return unique


def score_pool(
    new_memory: Memory,
    pool: list[Memory],
    scorer: SimilarityScorer,
) -> list[Candidate]:
    """Score new_memory against every memory in pool. One bad row never stops the scan."""
    found = []
    for other in pool:
        if other.user_id == new_memory.user_id or other.id == new_memory.id:
            continue
        try:
            result = scorer.score(new_memory, other)
        except Exception as e:
            logger.warning("Scoring %s against %s failed: %s", new_memory.id, other.id, e)
            continue
        if scorer.is_candidate(result):
            found.append(Candidate(other, result.confidence, result.reason, result.strategy))
    return rank_candidates(found)


async def find_candidates(
    db: AsyncSession,
    new_memory: Memory,
    scorer: Optional[SimilarityScorer] = None,
) -> list[Candidate]:
    """
    Waiting memories from other users that score at or above the threshold,
    best first. No writes.
    """
    if new_memory.status != MEMORY_WAITING:
        raise ValueError(f"Memory {new_memory.id} is {new_memory.status}, not waiting")

    scorer = scorer or SimilarityScorer()
    pool = await memory_store.list_waiting_memories(
        db, exclude_user_id=new_memory.user_id, exclude_memory_id=new_memory.id
    )
    candidates = score_pool(new_memory, pool, scorer)
    logger.info(
        "Candidate search for memory %s: %d scanned, %d above %.2f",
        new_memory.id, len(pool), len(candidates), scorer.threshold,
    )
    return candidates


async def run_reconciliation(
    db: AsyncSession,
    scorer: Optional[SimilarityScorer] = None,
) -> ReconciliationResult:
    """
    Batch sweep over every waiting memory pair. Re-runnable: pairs that
    already have a live or declined match, and memories matched meanwhile,
    are skipped.

    Qualifying pairs are written best-first, so a memory that qualifies with
    several others ends up matched to its strongest candidate.
    """
    scorer = scorer or SimilarityScorer()
    pool = await memory_store.list_waiting_memories(db)
    result = ReconciliationResult(memories_scanned=len(pool))

    scored: list[tuple[float, str, Memory, Memory]] = []
    for i, first in enumerate(pool):
        for second in pool[i + 1:]:
            if first.user_id == second.user_id:
                continue
            result.pairs_scored += 1
            try:
                outcome = scorer.score(first, second)
            except Exception as e:
                logger.warning("Scoring %s against %s failed: %s", first.id, second.id, e)
                continue
            if scorer.is_candidate(outcome):
                scored.append((outcome.confidence, outcome.reason, first, second))

    result.candidates_found = len(scored)
    scored.sort(key=lambda item: item[0], reverse=True)

    taken: set[str] = set()
    for confidence, reason, first, second in scored:
        if first.id in taken or second.id in taken:
            continue
        try:
            match = await matching.create_match(db, first, second, confidence, reason)
        except (DuplicateMatch, MemoryAlreadyMatched) as e:
            logger.debug("Sweep skipped %s/%s: %s", first.id, second.id, e)
            continue
        except InvalidMatch as e:
            logger.warning("Sweep rejected %s/%s: %s", first.id, second.id, e)
            continue
        await db.commit()
        await realtime.match_created(match)
        taken.update((first.id, second.id))
        result.matches_created += 1

    logger.info(
        "Reconciliation: %d memories, %d pairs scored, %d candidates, %d matches created",
        result.memories_scanned, result.pairs_scored,
        result.candidates_found, result.matches_created,
    )
    return result
