"""keycast database module.

- SQLAlchemy 2.x ORM models
- Alembic migration configuration
- Async engine and session factory construction (psycopg driver)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

if TYPE_CHECKING:
    from keycast.core.config import DatabaseSettings


def to_psycopg_url(url: str) -> str:
    """Rewrite a plain PostgreSQL URL to use the psycopg (v3) driver.

    Args:
        url: Database URL as configured (postgresql://, postgres://, or
            already carrying a driver).

    Returns:
        URL usable by both create_async_engine and the sync Alembic engine.
    """
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    return url


def create_engine_from_settings(settings: DatabaseSettings) -> AsyncEngine:
    """Create the async engine whose pool is shared by both worker loops.

    Args:
        settings: Database connection settings.

    Returns:
        Configured AsyncEngine. Call dispose() on shutdown.
    """
    return create_async_engine(
        to_psycopg_url(str(settings.url)),
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
        pool_timeout=settings.pool_timeout,
        pool_pre_ping=True,
        echo=settings.echo,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to the engine.

    Objects stay readable after commit so records can be handed across
    session boundaries.
    """
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
