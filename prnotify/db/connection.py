"""PostgreSQL database connection."""

import asyncio
import json

import asyncpg
from asyncpg import Connection, Pool

from prnotify.core.config import settings
from prnotify.core.logging import get_logger

logger = get_logger(__name__)

_pool: Pool | None = None

CONNECT_ATTEMPTS = 5
CONNECT_RETRY_DELAY = 2


async def _init_connection(conn: Connection) -> None:
    """Decode JSONB columns (repositories, filters, escalation) to Python objects."""
    await conn.set_type_codec(
        "jsonb", encoder=json.dumps, decoder=json.loads, schema="pg_catalog"
    )


async def get_db_pool() -> Pool:
    """Get database connection pool with retry logic."""
    global _pool
    if _pool is None:
        for attempt in range(CONNECT_ATTEMPTS):
            try:
                logger.info(
                    "Connecting to database", attempt=attempt + 1, max_attempts=CONNECT_ATTEMPTS
                )
                _pool = await asyncpg.create_pool(
                    settings.database_url,
                    min_size=1,
                    max_size=10,
                    command_timeout=60,
                    init=_init_connection,
                )
                async with _pool.acquire() as conn:
                    await conn.fetchval("SELECT 1")
                logger.info("Database connection pool created")
                break
            except (OSError, asyncpg.PostgresError) as e:
                logger.warning("Database connection failed", error=str(e))
                if attempt < CONNECT_ATTEMPTS - 1:
                    await asyncio.sleep(CONNECT_RETRY_DELAY)
                else:
                    logger.error("Failed to connect to database after all retries")
                    raise
    return _pool


async def close_db_pool() -> None:
    """Close database connection pool."""
    global _pool
    if _pool:
        await _pool.close()
        _pool = None
