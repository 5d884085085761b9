"""Short-lived shared state: OAuth state entries and rate-limit windows."""

import asyncio
import json
import math
import time
import uuid
from abc import ABC, abstractmethod
from collections import deque
from typing import Callable, Optional

from redis.asyncio import Redis

from prnotify.core.config import settings
from prnotify.core.logging import get_logger

logger = get_logger(__name__)

KEY_PREFIX = "prnotify:"

_WINDOW_SCRIPT = """
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
redis.call('ZREMRANGEBYSCORE', KEYS[1], '-inf', now - window)
if redis.call('ZCARD', KEYS[1]) < tonumber(ARGV[3]) then
    redis.call('ZADD', KEYS[1], now, ARGV[4])
    redis.call('EXPIRE', KEYS[1], math.ceil(window))
    return 1
end
return 0
"""


class StateStore(ABC):
    """Key/value store with expiry plus sliding-window counters."""

    @abstractmethod
    async def set(self, key: str, value: dict, ttl: float) -> None:
        """Store a value that disappears after ttl seconds."""
        pass

    @abstractmethod
    async def get(self, key: str) -> Optional[dict]:
        pass

    @abstractmethod
    async def pop(self, key: str) -> Optional[dict]:
        """Atomically read and delete a value."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        pass

    @abstractmethod
    async def hit_window(self, key: str, limit: int, window: float) -> bool:
        """
        Record a hit in a sliding window if there is room.

        Args:
            key: Window identifier
            limit: Maximum hits allowed inside the window
            window: Window length in seconds

        Returns:
            True if the hit was recorded, False if the window is full
        """
        pass

    async def close(self) -> None:
        pass


class MemoryStateStore(StateStore):
    """Process-local state store."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._values: dict[str, tuple[dict, float]] = {}
        self._windows: dict[str, deque[float]] = {}
        self._lock = asyncio.Lock()

    def _evict(self, key: str) -> None:
        entry = self._values.get(key)
        if entry is not None and entry[1] <= self._clock():
            del self._values[key]

    def _sweep(self) -> None:
        now = self._clock()
        for key in [key for key, (_, expires) in self._values.items() if expires <= now]:
            del self._values[key]

    async def set(self, key: str, value: dict, ttl: float) -> None:
        async with self._lock:
            self._sweep()
            self._values[key] = (dict(value), self._clock() + ttl)

    async def get(self, key: str) -> Optional[dict]:
        async with self._lock:
            self._evict(key)
            entry = self._values.get(key)
            return dict(entry[0]) if entry else None

    async def pop(self, key: str) -> Optional[dict]:
        async with self._lock:
            self._evict(key)
            entry = self._values.pop(key, None)
            return entry[0] if entry else None

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._values.pop(key, None)

    async def hit_window(self, key: str, limit: int, window: float) -> bool:
        async with self._lock:
            now = self._clock()
            hits = self._windows.setdefault(key, deque())
            while hits and hits[0] <= now - window:
                hits.popleft()
            if len(hits) >= limit:
                return False
            hits.append(now)
            return True


class RedisStateStore(StateStore):
    """State store shared across processes through Redis."""

    def __init__(self, redis: Redis, prefix: str = KEY_PREFIX):
        self.redis = redis
        self.prefix = prefix
        self._window_script = redis.register_script(_WINDOW_SCRIPT)

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def set(self, key: str, value: dict, ttl: float) -> None:
        await self.redis.set(self._key(key), json.dumps(value), ex=max(1, math.ceil(ttl)))

    async def get(self, key: str) -> Optional[dict]:
        raw = await self.redis.get(self._key(key))
        return json.loads(raw) if raw else None

    async def pop(self, key: str) -> Optional[dict]:
        raw = await self.redis.getdel(self._key(key))
        return json.loads(raw) if raw else None

    async def delete(self, key: str) -> None:
        await self.redis.delete(self._key(key))

    async def hit_window(self, key: str, limit: int, window: float) -> bool:
        now = time.time()
        member = f"{now}:{uuid.uuid4().hex}"
        recorded = await self._window_script(
            keys=[self._key(f"window:{key}")],
            args=[now, window, limit, member],
        )
        return bool(recorded)


async def create_state_store() -> StateStore:
    """Build the state store selected by settings."""
    if settings.state_store == "redis":
        from prnotify.db.redis_client import get_redis

        logger.info("Using Redis state store")
        return RedisStateStore(await get_redis())
    logger.info("Using in-memory state store")
    return MemoryStateStore()
