"""
Async engines and session factories for tipgen (SQLite or PostgreSQL).

Two factories share one engine:
- AsyncSessionLocal: reads (context building, validation lookups)
- TipWriteSessionLocal: the tip write transaction, SERIALIZABLE on PostgreSQL
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from tipgen.config import get_settings

logger = logging.getLogger(__name__)

_ASYNC_DRIVERS = (
    ("sqlite://", "sqlite+aiosqlite://"),
    ("postgres://", "postgresql+asyncpg://"),
    ("postgresql://", "postgresql+asyncpg://"),
)


def get_database_url(url: str) -> str:
    """Swap a sync driver scheme for its async counterpart; other URLs pass through."""
    for sync_prefix, async_prefix in _ASYNC_DRIVERS:
        if url.startswith(sync_prefix):
            return async_prefix + url[len(sync_prefix):]
    return url


settings = get_settings()
DATABASE_URL = get_database_url(settings.DATABASE_URL)
is_sqlite = DATABASE_URL.startswith("sqlite")

if is_sqlite:
    engine_kwargs = {"connect_args": {"check_same_thread": False}}
    if ":memory:" in DATABASE_URL:
        # one shared connection, otherwise each checkout sees an empty database
        engine_kwargs["poolclass"] = StaticPool
else:
    engine_kwargs = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 30,
        "pool_reset_on_return": "rollback",
    }

async_engine = create_async_engine(DATABASE_URL, echo=False, **engine_kwargs)

# SQLite holds a database-wide write lock; PostgreSQL needs the level requested.
tip_write_engine = (
    async_engine if is_sqlite else async_engine.execution_options(isolation_level="SERIALIZABLE")
)

AsyncSessionLocal = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

TipWriteSessionLocal = async_sessionmaker(
    bind=tip_write_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def init_db() -> None:
    """Create missing tables. Existing tables are left untouched."""
    logger.info(f"Creating tipgen tables if missing ({'sqlite' if is_sqlite else 'postgresql'})")
    async with async_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def close_db() -> None:
    await async_engine.dispose()
    logger.info("Database engine disposed")
