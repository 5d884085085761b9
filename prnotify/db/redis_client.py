"""Redis client connection, used by the shared state store."""

import asyncio

from redis.asyncio import Redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import RedisError

from prnotify.core.config import settings
from prnotify.core.logging import get_logger

logger = get_logger(__name__)

_redis: Redis | None = None
_pool: ConnectionPool | None = None

CONNECT_ATTEMPTS = 5
CONNECT_RETRY_DELAY = 2


async def get_redis() -> Redis:
    """Get Redis client with retry logic."""
    global _redis, _pool
    if _redis is None:
        for attempt in range(CONNECT_ATTEMPTS):
            try:
                logger.info(
                    "Connecting to Redis", attempt=attempt + 1, max_attempts=CONNECT_ATTEMPTS
                )
                _pool = ConnectionPool.from_url(settings.redis_url, decode_responses=True)
                _redis = Redis(connection_pool=_pool)
                await _redis.ping()
                logger.info("Redis connection established")
                break
            except (OSError, RedisError) as e:
                logger.warning("Redis connection failed", error=str(e))
                _redis = None
                if attempt < CONNECT_ATTEMPTS - 1:
                    await asyncio.sleep(CONNECT_RETRY_DELAY)
                else:
                    logger.error("Failed to connect to Redis after all retries")
                    raise
    return _redis


async def close_redis() -> None:
    """Close Redis connection."""
    global _redis, _pool
    if _redis:
        await _redis.aclose()
        _redis = None
    if _pool:
        await _pool.disconnect()
        _pool = None
