# =============================================================================
# Database Engine & Session Management
# =============================================================================
#
# Two engines against the same PostgreSQL schema:
#
#   async_engine (asyncpg)  — the FastAPI process: entity store, agent
#                             conversations, run metrics, API keys
#   sync engine (psycopg2)  — Celery workers writing agent replies
#
# SESSION PATTERNS:
# 1. Dependency-injected (get_async_session via Depends): commits when the
#    handler returns, rolls back on exception.
# 2. Self-managed (async_session_factory() directly): used by the SQL
#    collaborator backends and background metric writes, which run outside
#    the request dependency lifecycle. These MUST commit explicitly.
# =============================================================================

from collections.abc import AsyncGenerator, Generator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session, sessionmaker

from strategist.config import settings

# ---------------------------------------------------------------------------
# Async Engine
# ---------------------------------------------------------------------------
# pool_size covers max_parallel_agents concurrent conversation pollers plus
# the request's own entity-store reads.
# ---------------------------------------------------------------------------
async_engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_size=10,
    max_overflow=10,
)

# expire_on_commit=False: rows read in one session are turned into plain
# dicts after commit, outside any session.
async_session_factory = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ---------------------------------------------------------------------------
# Sync Engine — For Celery Workers (Lazy Initialization)
# ---------------------------------------------------------------------------
# psycopg2 is only needed by workers, so the engine is built on first use.
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
    Sync session for Celery tasks: commit on exit, rollback on error.

    Usage:
        with get_sync_session() as session:
            conversation = session.get(AgentConversation, conversation_id)
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


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that provides a database session per request."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
