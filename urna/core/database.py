"""
Async PostgreSQL access through an asyncpg connection pool.

Services receive an ``asyncpg.Connection`` and issue raw SQL. Components that
own their transaction boundary (the vote caster) take the pool itself.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from uuid import UUID

import asyncpg

from urna.core.config import Settings
from urna.core.logging_config import get_logger

logger = get_logger(__name__)

# Global connection pool
_pool: asyncpg.Pool | None = None


async def init_db_pool(settings: Settings) -> asyncpg.Pool:
    """
    Initialize the connection pool on startup.

    Call this in the FastAPI lifespan event.
    """
    global _pool
    _pool = await asyncpg.create_pool(
        dsn=settings.DATABASE_URL,
        min_size=settings.DB_POOL_MIN_SIZE,
        max_size=settings.DB_POOL_MAX_SIZE,
        max_inactive_connection_lifetime=300,
        timeout=30,
        command_timeout=settings.DB_COMMAND_TIMEOUT,
    )
    logger.info(
        f"Database pool initialized: {_pool.get_size()} / {_pool.get_max_size()} connections"
    )
    return _pool


async def close_db_pool() -> None:
    """Close the connection pool on shutdown."""
    global _pool
    if _pool:
        await _pool.close()
        _pool = None
        logger.info("Database pool closed")


def get_pool() -> asyncpg.Pool:
    """Return the initialized pool."""
    if not _pool:
        raise RuntimeError("Database pool not initialized. Call init_db_pool() first.")
    return _pool


@asynccontextmanager
async def get_db_connection():
    """
    Get a database connection from the pool.

    Usage:
        async with get_db_connection() as conn:
            voter = await conn.fetchrow("SELECT * FROM voters WHERE id = $1", voter_id)
    """
    async with get_pool().acquire() as connection:
        yield connection


async def get_db() -> AsyncGenerator[asyncpg.Connection, None]:
    """
    FastAPI dependency for database connections.

    Usage in routes:
        @router.get("/elections")
        async def list_elections(conn: asyncpg.Connection = Depends(get_db)):
            ...
    """
    async with get_pool().acquire() as connection:
        yield connection


def record_to_dict(record: asyncpg.Record | None) -> dict | None:
    """Convert an asyncpg Record to a dictionary with string UUIDs."""
    if record is None:
        return None
    result = dict(record)
    for key, value in result.items():
        if isinstance(value, UUID):
            result[key] = str(value)
    return result


def records_to_list(records: list[asyncpg.Record]) -> list[dict]:
    """Convert a list of asyncpg Records to dictionaries."""
    return [record_to_dict(record) for record in records]


def affected_rows(status: str) -> int:
    """Number of rows reported by an asyncpg command tag such as ``UPDATE 1``."""
    return int(status.split()[-1])
