"""
Database Configuration
======================

Async engine and session factory for the knowledge record store.

Sessions handed out by `get_db` start without a transaction; the SQL store
opens one per store call, so a request may span several short transactions.
"""

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from knowscope.core.config import settings
from knowscope.models.base import Base


def _build_engine() -> AsyncEngine:
    if settings.APP_ENV == "test":
        # Pooled asyncpg connections outlive per-test event loops.
        return create_async_engine(settings.DATABASE_URL, echo=settings.DEBUG, poolclass=NullPool)
    return create_async_engine(
        settings.DATABASE_URL,
        echo=settings.DEBUG,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
        pool_timeout=settings.STORE_TIMEOUT_SECONDS,
    )


engine: AsyncEngine = _build_engine()

async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def create_db_and_tables() -> None:
    """
    Create the knowledge tables if they don't exist.

    Development convenience; deployments run `alembic upgrade head`.
    """
    from knowscope.models import KnowledgeItem, KnowledgeItemRevision  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session dependency."""
    async with async_session_factory() as session:
        yield session
