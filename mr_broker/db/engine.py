# =============================================================================
# Database Engine & Session Management
# =============================================================================
#
# Only the pgvector backend touches PostgreSQL. Two engines share one schema:
#
#   - async (asyncpg): vector queries from FastAPI request handlers
#   - sync (psycopg2): upserts and deletes from ingestion worker threads
#
# Ingestion runs in Celery workers and thread pools, which cannot drive
# the async engine. Both engines are created lazily so a Chroma deployment
# never needs a database driver.
#
# SESSION LIFECYCLE (both flavours):
#   create -> yield -> commit (or rollback on error) -> close
# =============================================================================

from collections.abc import AsyncGenerator, Generator
from contextlib import asynccontextmanager, contextmanager

from sqlalchemy import create_engine, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session, sessionmaker

from mr_broker.config import settings

# ---------------------------------------------------------------------------
# Async Engine - FastAPI query path
# ---------------------------------------------------------------------------
# - pool_size=5 / max_overflow=10: enough for a handful of concurrent queries
# - expire_on_commit=False: loaded rows stay readable after the session closes
# ---------------------------------------------------------------------------

_async_engine = None
_async_session_factory = None


def _get_async_session_factory():
    """Lazily create and cache the async engine and its session factory."""
    global _async_engine, _async_session_factory
    if _async_session_factory is None:
        _async_engine = create_async_engine(
            settings.database_url,
            echo=settings.debug,
            pool_size=5,
            max_overflow=10,
        )
        _async_session_factory = async_sessionmaker(
            bind=_async_engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _async_session_factory


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Async session for the query path.

    Usage:
        async with get_async_session() as session:
            rows = (await session.execute(stmt)).all()
    """
    async with _get_async_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ---------------------------------------------------------------------------
# Sync Engine - ingestion workers
# ---------------------------------------------------------------------------

_sync_engine = None
_sync_session_factory = None


def _get_sync_engine():
    """Lazily create and cache the sync SQLAlchemy engine."""
    global _sync_engine
    if _sync_engine is None:
        _sync_engine = create_engine(
            settings.database_url_sync,
            echo=settings.debug,
            pool_size=5,
            max_overflow=10,
        )
    return _sync_engine


def _get_sync_session_factory():
    """Lazily create and cache the sync session factory."""
    global _sync_session_factory
    if _sync_session_factory is None:
        _sync_session_factory = sessionmaker(
            bind=_get_sync_engine(),
            class_=Session,
            expire_on_commit=False,
        )
    return _sync_session_factory


@contextmanager
def get_sync_session() -> Generator[Session, None, None]:
    """
    Sync session for ingestion threads and Celery tasks.

    Usage:
        with get_sync_session() as session:
            session.execute(stmt)
            # Auto-commits on exit, auto-rollbacks on exception
    """
    factory = _get_sync_session_factory()
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_schema() -> None:
    """Enable the pgvector extension and create missing tables."""
    from mr_broker.db.models import Base

    engine = _get_sync_engine()
    with engine.begin() as conn:
        conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
    Base.metadata.create_all(engine)
