from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import SQLModel

from reconciler.config import settings


def _create_engine(url: str, **options: Any) -> AsyncEngine:
    return create_async_engine(url, echo=False, pool_pre_ping=True, **options)


def _session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Handlers read rows back after commit to build responses
    return async_sessionmaker(bind, expire_on_commit=False, autoflush=False)


# Webhook traffic goes through the transaction pooler, which cannot hold
# prepared statements. One connection per in-flight event.
engine = _create_engine(
    settings.database_url,
    pool_size=settings.database_pool_size,
    max_overflow=settings.database_max_overflow,
    pool_recycle=300,
    connect_args={
        "statement_cache_size": 0,
        "prepared_statement_cache_size": 0,
        "command_timeout": settings.database_command_timeout,
    },
)

# Sweeps hold session-level advisory locks, so they need a direct connection
direct_engine = _create_engine(
    settings.database_url_direct,
    pool_size=3,
    max_overflow=2,
)

async_session_maker = _session_factory(engine)
direct_session_maker = _session_factory(direct_engine)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session; rolled back if the request fails."""
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Create tables directly from the models. Debug runs only; Alembic owns the schema."""
    async with direct_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
