"""
Affirmly Backend — Database Session Management
===============================================

What:  Async SQLAlchemy engine, session factory, and FastAPI dependency.
Why:   Centralizes all database connection logic in one place.
How:   Creates an async engine with connection pooling, provides a session
       dependency that auto-commits on success and auto-rolls-back on error.
Who:   Routes receive sessions via FastAPI's dependency injection; the
       broadcast scheduler receives the session factory explicitly.
When:  Engine is created at module import; sessions are created per-request
       (or per scheduler tick).

Store handle:
    Nothing below the route layer imports `async_session_factory` directly.
    Services take an `AsyncSession` argument and the scheduler takes a
    factory, so tests can hand in an in-memory SQLite session instead.
"""

from typing import Any, AsyncGenerator, Dict

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.config import settings


def build_engine(database_url: str) -> AsyncEngine:
    """
    Create an async engine for the given URL.

    Pool sizing only applies to server databases; SQLite (used by the test
    suite and local tooling) manages its own single-connection pool.
    """
    kwargs: Dict[str, Any] = {"echo": settings.log_level == "DEBUG"}
    if not database_url.startswith("sqlite"):
        kwargs.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=settings.db_pool_pre_ping,
            pool_recycle=3600,
        )
    return create_async_engine(database_url, **kwargs)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False: attributes stay readable after commit
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


# ── Engine & Session Factory ──────────────────────────────────────────────
engine = build_engine(settings.database_url)
async_session_factory = build_session_factory(engine)


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.

    Registers every model with a single metadata object, which Alembic
    reads for migrations and the tests use for `create_all`.
    """
    pass


# ── Session Dependency ────────────────────────────────────────────────────
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a database session per request.

    How it works:
        1. Creates a new session from the factory
        2. Yields it to the route handler
        3. On success: commits the transaction
        4. On error: rolls back and re-raises for the global error handler
        5. Always: closes the session (returns connection to pool)
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def dispose_engine() -> None:
    """Close all pooled connections. Called from the lifespan shutdown hook."""
    await engine.dispose()
