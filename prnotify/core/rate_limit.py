"""Sliding-window rate limiting per provider type."""

import asyncio

from prnotify.core.config import settings
from prnotify.core.logging import get_logger
from prnotify.db.state import StateStore

logger = get_logger(__name__)


class SlidingWindowRateLimiter:
    """
    Caps outbound requests per provider type over a sliding window.

    Counters live in the shared StateStore, so every adapter instance (and,
    with Redis, every process) draws from the same allowance.
    """

    def __init__(
        self,
        store: StateStore,
        window: float | None = None,
        poll_interval: float | None = None,
    ):
        self.store = store
        self.window = window if window is not None else settings.rate_limit_window_seconds
        self.poll_interval = (
            poll_interval if poll_interval is not None else settings.rate_limit_poll_interval
        )

    async def try_acquire(self, provider_type: str, limit: int | None = None) -> bool:
        """Take a slot if one is free, without waiting."""
        if limit is None:
            limit = settings.get_rate_limit(provider_type)
        return await self.store.hit_window(f"ratelimit:{provider_type}", limit, self.window)

    async def acquire(self, provider_type: str, limit: int | None = None) -> None:
        """Wait until a request slot is available for the provider type."""
        waited = False
        while not await self.try_acquire(provider_type, limit):
            if not waited:
                logger.info("Rate limit reached, waiting for a slot", provider=provider_type)
                waited = True
            await asyncio.sleep(self.poll_interval)
