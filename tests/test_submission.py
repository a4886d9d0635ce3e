import httpx
import pytest
from sqlalchemy import func, select

from meetcute.core.errors import InvalidMemory, StoreUnavailable
from meetcute.core.flags import get_flags
from meetcute.models.conversation import Conversation
from meetcute.models.match import Match, MATCH_ACCEPTED, MATCH_DECLINED, MATCH_PENDING
from meetcute.models.memory import Memory, MEMORY_MATCHED, MEMORY_WAITING
from meetcute.services import drafts, matching, submission
from meetcute.services.embeddings import EmbeddingClient
from meetcute.services.memory_store import get_memory

HAT_STORY = "Saw someone in a black SF hat near Coco Apartments, Napa around 6pm, July 23rd."
BABY_STORY = (
    "There was a baby and a guy in a black SF hat outside Coco Apartments "
    "around 6pm on July 23rd in Napa."
)


async def _count(db, model) -> int:
    result = await db.execute(select(func.count(model.id)))
    return result.scalar_one()


@pytest.fixture
async def matched_pair(db):
    x = await submission.submit_memory(db, "x", HAT_STORY)
    y = await submission.submit_memory(db, "y", BABY_STORY)
    return x, y


async def test_keyword_match_end_to_end(db, matched_pair) -> None:
    x, y = matched_pair

    assert x.match is None
    assert y.match is not None
    assert y.candidates_considered == 1
    assert "embedding_unavailable" in y.warnings

    match = y.match
    assert match.status == MATCH_PENDING
    assert match.confidence_score == pytest.approx(0.95)
    assert "Shared details" in match.match_reason
    assert await _count(db, Match) == 1

    for memory_id in (x.memory.id, y.memory.id):
        memory = await get_memory(db, memory_id)
        assert memory.status == MEMORY_MATCHED
        assert memory.match_id == match.id
        assert memory.processed is True


async def test_decline_end_to_end(db, matched_pair) -> None:
    _, y = matched_pair

    match = await matching.respond(db, y.match.id, "x", False)

    assert match.status == MATCH_DECLINED
    for memory_id in (match.memory1_id, match.memory2_id):
        memory = await get_memory(db, memory_id)
        assert memory.match_id == match.id
    assert await _count(db, Conversation) == 0


async def test_mutual_confirm_end_to_end(db, matched_pair) -> None:
    _, y = matched_pair

    after_x = await matching.respond(db, y.match.id, "x", True)
    assert after_x.status == MATCH_PENDING
    assert after_x.confirmation_of("x") is True
    assert after_x.confirmation_of("y") is None

    after_y = await matching.respond(db, y.match.id, "y", True)
    assert after_y.status == MATCH_ACCEPTED
    assert await _count(db, Conversation) == 1

    convo = (await db.execute(select(Conversation))).scalar_one()
    assert {p.user_id for p in convo.participants} == {"x", "y"}


async def test_common_word_does_not_match(db) -> None:
    await submission.submit_memory(db, "x", "I grabbed a coffee before my shift downtown.")
    result = await submission.submit_memory(db, "y", "We chatted in line for coffee this morning.")

    assert result.match is None
    assert result.candidates_considered == 0
    assert result.memory.status == MEMORY_WAITING
    assert await _count(db, Match) == 0


async def test_one_submission_creates_at_most_one_match(db) -> None:
    await submission.submit_memory(db, "x", HAT_STORY)
    await submission.submit_memory(
        db, "z", "A baby was crying by the fountain on July 23rd, I still think about it."
    )
    result = await submission.submit_memory(db, "y", BABY_STORY)

    assert result.candidates_considered == 2
    assert result.match is not None
    assert await _count(db, Match) == 1


async def test_invalid_text_is_rejected_before_storage(db) -> None:
    with pytest.raises(InvalidMemory):
        await submission.submit_memory(db, "x", "   <b></b>  ")
    with pytest.raises(InvalidMemory):
        await submission.submit_memory(db, "x", "too short")
    assert await _count(db, Memory) == 0


async def test_submission_sanitises_and_clears_draft(db) -> None:
    await drafts.save_draft(db, "x", "half a story")
    await db.commit()

    result = await submission.submit_memory(
        db, "x", "<i>Blue   bike</i> at the farmers market", location="Ferry Building"
    )

    assert result.memory.description == "Blue bike at the farmers market"
    assert result.memory.location == "Ferry Building"
    assert await drafts.load_draft(db, "x") is None


async def test_embedding_is_backfilled(db, monkeypatch) -> None:
    monkeypatch.setenv("FF_USE_EMBEDDINGS", "true")
    get_flags.cache_clear()

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": [{"embedding": [0.6, 0.8]}]})

    client = EmbeddingClient(
        base_url="https://embed.test/v1",
        api_key="test-key",
        dimensions=2,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )

    result = await submission.submit_memory(
        db, "x", "A long enough narrative about the pier", embedding_client=client
    )

    assert result.memory.embedding == [0.6, 0.8]
    assert result.warnings == []
    await client.close()


async def test_memory_survives_a_store_outage_during_matching(db, monkeypatch) -> None:
    async def _down(*args, **kwargs):
        raise StoreUnavailable("store unavailable during list_waiting_memories")

    monkeypatch.setattr(submission.candidate_search, "find_candidates", _down)

    result = await submission.submit_memory(db, "x", HAT_STORY)

    assert result.match is None
    assert "matching_deferred" in result.warnings
    memory = await get_memory(db, result.memory.id)
    assert memory is not None and memory.status == MEMORY_WAITING
