import pytest
from sqlalchemy.exc import OperationalError

from meetcute.core.errors import MemoryLocked, MemoryNotFound, StoreUnavailable
from meetcute.models.memory import MEMORY_MATCHED, MEMORY_WAITING
from meetcute.services import memory_store


def _db_gone() -> OperationalError:
    return OperationalError("SELECT 1", {}, Exception("connection refused"))


@pytest.fixture(autouse=True)
def _no_backoff(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(memory_store, "MAX_DELAY", 0.0)


async def test_reads_retry_transient_failures(db) -> None:
    calls = []

    async def _flaky():
        calls.append(1)
        if len(calls) < 3:
            raise _db_gone()
        return "ok"

    assert await memory_store.with_store_retry(db, _flaky, "flaky read") == "ok"
    assert len(calls) == 3


async def test_reads_give_up_with_store_unavailable(db) -> None:
    async def _down():
        raise _db_gone()

    with pytest.raises(StoreUnavailable):
        await memory_store.with_store_retry(db, _down, "down read")


async def test_reads_do_not_retry_over_flushed_writes(db, add_memory) -> None:
    memory = await add_memory(db, "alice", "Red scarf on the 38 bus this morning")
    memory.location = "Muni"
    await db.flush()
    calls = []

    async def _flaky():
        calls.append(1)
        raise _db_gone()

    with pytest.raises(StoreUnavailable):
        await memory_store.with_store_retry(db, _flaky, "read after flush")
    assert len(calls) == 1

    await db.commit()
    await db.refresh(memory)
    assert memory.location == "Muni"


async def test_commit_clears_the_write_guard(db, add_memory) -> None:
    await add_memory(db, "alice", "Red scarf on the 38 bus this morning")
    calls = []

    async def _flaky():
        calls.append(1)
        if len(calls) < 2:
            raise _db_gone()
        return "ok"

    assert await memory_store.with_store_retry(db, _flaky, "read after commit") == "ok"
    assert len(calls) == 2


async def test_processing_results_fill_display_fields(db, add_memory) -> None:
    memory = await add_memory(db, "alice", "Red scarf on the 38 bus this morning")
    memory.location = "Muni"

    await memory_store.save_processing_results(
        db, memory, embedding=[0.1, 0.2], details={"location": "38 Geary", "clothing": "red scarf"}
    )
    await db.commit()

    assert memory.processed is True
    assert memory.embedding == [0.1, 0.2]
    assert memory.display_location == "38 Geary"
    assert memory.display_time_period is None
    assert memory.extracted_details["clothing"] == "red scarf"


async def test_mark_matched_only_moves_waiting_memories(db, add_memory) -> None:
    a = await add_memory(db, "alice", "first story about the pier")
    b = await add_memory(db, "bob", "second story about the pier")

    assert await memory_store.mark_matched(db, [a.id, b.id], "m-1") == 2
    assert await memory_store.mark_matched(db, [a.id, b.id], "m-2") == 0
    await db.commit()
    await db.refresh(a)
    assert a.status == MEMORY_MATCHED and a.match_id == "m-1"

    assert await memory_store.reopen(db, [a.id, b.id], "m-other") == 0
    assert await memory_store.reopen(db, [a.id, b.id], "m-1") == 2
    await db.commit()
    await db.refresh(b)
    assert b.status == MEMORY_WAITING and b.match_id is None


async def test_delete_memory_rules(db, add_memory) -> None:
    a = await add_memory(db, "alice", "first story about the pier")
    b = await add_memory(db, "alice", "another story about the pier")
    await memory_store.mark_matched(db, [b.id], "m-1")
    await db.commit()

    with pytest.raises(MemoryNotFound):
        await memory_store.delete_memory(db, a.id, "bob")
    with pytest.raises(MemoryLocked):
        await memory_store.delete_memory(db, b.id, "alice")

    await memory_store.delete_memory(db, a.id, "alice")
    await db.commit()
    assert await memory_store.get_memory(db, a.id) is None
    assert [m.id for m in await memory_store.list_user_memories(db, "alice")] == [b.id]
