import math

import pytest
from sqlalchemy import select

from meetcute.core.config import get_settings
from meetcute.models.match import Match
from meetcute.services import candidates, matching
from meetcute.services.similarity import SimilarityScorer

HAT_STORY = "Saw someone in a black SF hat near Coco Apartments, Napa around 6pm, July 23rd."
BABY_STORY = (
    "There was a baby and a guy in a black SF hat outside Coco Apartments "
    "around 6pm on July 23rd in Napa."
)


def _unit(angle: float) -> list[float]:
    return [math.cos(angle), math.sin(angle)]


@pytest.fixture
def scorer():
    return SimilarityScorer(threshold=0.85, keyword_confidence=0.95)


async def test_find_candidates_never_returns_own_memories(db, add_memory, scorer) -> None:
    mine = await add_memory(db, "alice", "first memory at the pier", _unit(0.0))
    await add_memory(db, "alice", "same moment, written twice", _unit(0.0))
    theirs = await add_memory(db, "bob", "saw someone at the pier", _unit(0.05))

    found = await candidates.find_candidates(db, mine, scorer)

    assert [c.memory.id for c in found] == [theirs.id]
    assert all(c.memory.user_id != "alice" for c in found)


async def test_find_candidates_orders_by_confidence(db, add_memory, scorer) -> None:
    mine = await add_memory(db, "alice", "the ferry building at noon", _unit(0.0))
    close = await add_memory(db, "bob", "ferry building around noon", _unit(0.05))
    closer = await add_memory(db, "carol", "ferry building, noon", _unit(0.01))
    await add_memory(db, "dave", "something else entirely", _unit(1.2))

    found = await candidates.find_candidates(db, mine, scorer)

    assert [c.memory.id for c in found] == [closer.id, close.id]
    assert found[0].confidence >= found[1].confidence


async def test_find_candidates_ignores_matched_memories(db, add_memory, scorer) -> None:
    mine = await add_memory(db, "alice", HAT_STORY)
    other = await add_memory(db, "bob", BABY_STORY)
    third = await add_memory(db, "carol", BABY_STORY)

    await matching.create_match(db, other, third, 0.95, "seed")
    await db.commit()

    assert await candidates.find_candidates(db, mine, scorer) == []


async def test_find_candidates_rejects_non_waiting_memory(db, add_memory, scorer) -> None:
    a = await add_memory(db, "alice", HAT_STORY)
    b = await add_memory(db, "bob", BABY_STORY)
    await matching.create_match(db, a, b, 0.95, "seed")
    await db.commit()

    with pytest.raises(ValueError):
        await candidates.find_candidates(db, a, scorer)


async def test_bad_embedding_degrades_to_keywords(db, add_memory, scorer) -> None:
    mine = await add_memory(db, "alice", HAT_STORY, [1.0, 0.0])
    other = await add_memory(db, "bob", BABY_STORY, [1.0, 0.0, 0.0])

    found = await candidates.find_candidates(db, mine, scorer)

    assert [c.memory.id for c in found] == [other.id]
    assert found[0].strategy == "keyword"


async def test_reconciliation_matches_best_pairs_and_is_rerunnable(db, add_memory, scorer) -> None:
    a = await add_memory(db, "alice", "pier at dusk", _unit(0.0))
    b = await add_memory(db, "bob", "pier at dusk too", _unit(0.02))
    c = await add_memory(db, "carol", "pier-ish", _unit(0.2))
    await add_memory(db, "dave", "unrelated", _unit(1.4))

    first = await candidates.run_reconciliation(db, scorer)

    assert first.memories_scanned == 4
    assert first.matches_created == 1
    result = await db.execute(select(Match))
    (match,) = result.scalars().all()
    assert {match.memory1_id, match.memory2_id} == {a.id, b.id}

    # c is still waiting but its only partners are taken or too far away
    second = await candidates.run_reconciliation(db, scorer)
    assert second.matches_created == 0
    await db.refresh(c)
    assert c.status == "waiting"


async def test_reconciliation_never_rematches_a_declined_pair(db, add_memory, scorer, monkeypatch) -> None:
    monkeypatch.setenv("REOPEN_MEMORIES_ON_DECLINE", "true")
    get_settings.cache_clear()

    x = await add_memory(db, "x", "pier at dusk", _unit(0.0))
    y = await add_memory(db, "y", "pier at dusk too", _unit(0.02))
    assert (await candidates.run_reconciliation(db, scorer)).matches_created == 1
    (match,) = (await db.execute(select(Match))).scalars().all()

    await matching.respond(db, match.id, "x", False)

    again = await candidates.run_reconciliation(db, scorer)
    assert again.memories_scanned == 2
    assert again.candidates_found == 1
    assert again.matches_created == 0
    for memory in (x, y):
        await db.refresh(memory)
        assert memory.status == "waiting"

    # Reopened memories still pair with newcomers
    z = await add_memory(db, "z", "the pier, dusk", _unit(0.01))
    third = await candidates.run_reconciliation(db, scorer)
    assert third.matches_created == 1
    await db.refresh(z)
    assert z.status == "matched"
