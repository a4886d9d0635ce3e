from pathlib import Path
from typing import Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from meetcute.core.config import get_settings
from meetcute.core.database import build_engine, create_tables
from meetcute.core.flags import get_flags
from meetcute.services import embeddings, memory_store


def _sqlite_url(db_path: Path) -> str:
    return f"sqlite+aiosqlite:///{db_path}"


@pytest.fixture(autouse=True)
def _offline_env(monkeypatch: pytest.MonkeyPatch):
    """No Auth0, Redis, embedding or LLM calls unless a test opts back in."""
    monkeypatch.setenv("FF_USE_AUTH0", "false")
    monkeypatch.setenv("FF_USE_REDIS", "false")
    monkeypatch.setenv("FF_USE_EMBEDDINGS", "false")
    monkeypatch.setenv("FF_USE_LLM_EXTRACTION", "false")
    monkeypatch.delenv("MATCH_THRESHOLD", raising=False)
    monkeypatch.delenv("REOPEN_MEMORIES_ON_DECLINE", raising=False)
    get_settings.cache_clear()
    get_flags.cache_clear()
    embeddings.set_embedding_client(None)
    yield
    get_settings.cache_clear()
    get_flags.cache_clear()
    embeddings.set_embedding_client(None)


@pytest.fixture
async def engine(tmp_path: Path):
    engine = build_engine(_sqlite_url(tmp_path / "meetcute.db"))
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def add_memory():
    """Insert a committed waiting memory, optionally with an embedding."""
    async def _add(
        session: AsyncSession,
        user_id: str,
        description: str,
        embedding: Optional[list[float]] = None,
    ):
        memory = await memory_store.create_memory(session, user_id, description)
        if embedding is not None:
            await memory_store.save_processing_results(session, memory, embedding=embedding)
        await session.commit()
        return memory

    return _add
