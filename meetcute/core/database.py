"""
Async SQLAlchemy engine and session management. Single connection pool for everything.
"""

import logging
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Session

from .config import get_settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base. All models inherit from this."""
    pass


# Session.info key set while a transaction holds writes that a rollback would lose
PENDING_WRITES = "pending_writes"


@event.listens_for(Session, "after_flush")
def _note_flush(session, flush_context):
    session.info[PENDING_WRITES] = True


@event.listens_for(Session, "do_orm_execute")
def _note_bulk_write(orm_execute_state):
    if orm_execute_state.is_insert or orm_execute_state.is_update or orm_execute_state.is_delete:
        orm_execute_state.session.info[PENDING_WRITES] = True


@event.listens_for(Session, "after_transaction_end")
def _clear_writes(session, transaction):
    if transaction.parent is None:
        session.info.pop(PENDING_WRITES, None)


def has_pending_writes(session: AsyncSession) -> bool:
    """True if the current transaction has flushed or bulk-executed writes, or unflushed changes."""
    return bool(
        session.info.get(PENDING_WRITES) or session.new or session.dirty or session.deleted
    )


# Lazy globals — initialized on first call to get_engine()
_engine = None
_session_factory = None


def build_engine(url: str, echo: bool = False, **engine_kwargs) -> AsyncEngine:
    """Create an async engine for a database URL. Extra kwargs go to create_async_engine."""
    # Ensure we're using asyncpg driver for PostgreSQL
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)

    # SQLite doesn't support pool_size / max_overflow
    is_sqlite = "sqlite" in url
    kwargs = {"echo": echo}
    if not is_sqlite:
        kwargs["pool_size"] = 20
        kwargs["max_overflow"] = 10
        kwargs["pool_pre_ping"] = True
    kwargs.update(engine_kwargs)

    engine = create_async_engine(url, **kwargs)

    if is_sqlite:
        # aiosqlite defers BEGIN on its own, which breaks SAVEPOINT.
        # Take over transaction start so begin_nested() works.
        @event.listens_for(engine.sync_engine, "connect")
        def _on_connect(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine.sync_engine, "begin")
        def _on_begin(conn):
            conn.exec_driver_sql("BEGIN")

    return engine


def get_engine():
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = build_engine(settings.database_url, echo=settings.debug)
        logger.info(
            "Database engine created (%s)",
            "sqlite" if "sqlite" in settings.database_url else "postgresql",
        )
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _session_factory


async def get_db() -> AsyncSession:
    """FastAPI dependency — yields a DB session per request."""
    factory = get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def create_tables(engine: AsyncEngine) -> None:
    """Create every table registered on Base.metadata."""
    async with engine.begin() as conn:
        # Import all models so they register with Base.metadata
        from ..models import (  # noqa: F401
            memory,
            match,
            conversation,
            draft,
        )
        await conn.run_sync(Base.metadata.create_all)


async def init_db():
    """Create all tables. Called on startup."""
    await create_tables(get_engine())
    logger.info("Database tables created/verified")


async def close_db():
    """Dispose engine. Called on shutdown."""
    global _engine, _session_factory
    if _engine:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        logger.info("Database engine disposed")
