from meetcute.services import drafts


async def test_draft_round_trip(db) -> None:
    assert await drafts.load_draft(db, "alice") is None

    await drafts.save_draft(db, "alice", "It was raining", location="Napa")
    await db.commit()
    await drafts.save_draft(db, "alice", "It was raining and she had a black hat")
    await db.commit()

    draft = await drafts.load_draft(db, "alice")
    assert draft.transcript == "It was raining and she had a black hat"
    assert draft.location is None
    assert await drafts.load_draft(db, "bob") is None


async def test_discard_draft(db) -> None:
    await drafts.save_draft(db, "alice", "half a story")
    await db.commit()

    assert await drafts.discard_draft(db, "alice") is True
    assert await drafts.discard_draft(db, "alice") is False
    assert await drafts.load_draft(db, "alice") is None
