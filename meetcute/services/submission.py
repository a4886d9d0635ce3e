"""
Memory submission — the path from "user hits submit" to "pending match".

Order matters:
  1. Validate and sanitise the text.
  2. Insert the memory (waiting, no embedding) and COMMIT, so the user's
     words survive any later failure.
  3. Extract details and embed. Neither step is fatal.
  4. Search candidates and create at most one match (the strongest that
     can still be written).
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import (
    DuplicateMatch,
    EmbeddingUnavailable,
    InvalidMemory,
    MemoryAlreadyMatched,
    StoreUnavailable,
)
from ..core.guardrails import check_memory_text
from ..models.match import Match
from ..models.memory import Memory
from . import candidates as candidate_search
from . import drafts, extraction, matching, memory_store, realtime
from .embeddings import EmbeddingClient, get_embedding_client
from .similarity import SimilarityScorer

logger = logging.getLogger(__name__)


@dataclass
class SubmissionResult:
    memory: Memory
    match: Optional[Match] = None
    candidates_considered: int = 0
    warnings: list[str] = field(default_factory=list)


async def match_new_memory(
    db: AsyncSession,
    memory: Memory,
    scorer: Optional[SimilarityScorer] = None,
) -> tuple[Optional[Match], int]:
    """
    Pair a waiting memory with its best available candidate.
    Returns (match or None, number of candidates considered).
    """
    found = await candidate_search.find_candidates(db, memory, scorer)
    for candidate in found:
        try:
            match = await matching.create_match(
                db, memory, candidate.memory, candidate.confidence, candidate.reason
            )
        except (DuplicateMatch, MemoryAlreadyMatched) as e:
            logger.debug("Candidate %s skipped: %s", candidate.memory.id, e)
            continue
        await db.commit()
        await realtime.match_created(match)
        return match, len(found)
    return None, len(found)


async def submit_memory(
    db: AsyncSession,
    user_id: str,
    text: str,
    location: Optional[str] = None,
    time_period: Optional[str] = None,
    scorer: Optional[SimilarityScorer] = None,
    embedding_client: Optional[EmbeddingClient] = None,
) -> SubmissionResult:
    check = check_memory_text(text, user_id)
    if not check.allowed:
        raise InvalidMemory(check.reason)
    description = check.modified_input

    memory = await memory_store.create_memory(db, user_id, description, location, time_period)
    await drafts.discard_draft(db, user_id)
    await db.commit()

    result = SubmissionResult(memory=memory)

    details = await extraction.extract_details(description)

    embedding = None
    client = embedding_client or get_embedding_client()
    try:
        embedding = await client.embed(description)
    except EmbeddingUnavailable as e:
        logger.warning("No embedding for memory %s, keyword matching only: %s", memory.id, e)
        result.warnings.append("embedding_unavailable")

    await memory_store.save_processing_results(
        db, memory, embedding=embedding, details=details.to_dict() or None
    )
    await db.commit()

    try:
        result.match, result.candidates_considered = await match_new_memory(db, memory, scorer)
    except StoreUnavailable as e:
        # The memory is saved; the next reconciliation sweep will retry it
        logger.error("Matching deferred for memory %s: %s", memory.id, e)
        result.warnings.append("matching_deferred")

    if result.match is None:
        logger.info("Memory %s is waiting (%d candidates considered)",
                    memory.id, result.candidates_considered)
    return result
