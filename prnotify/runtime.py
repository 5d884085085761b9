"""Wiring of stores, providers and services for one process."""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

from asyncpg import Pool

from prnotify.auth.oauth import OAuthStateManager
from prnotify.auth.token_manager import TokenManager
from prnotify.core.config import settings
from prnotify.core.logging import get_logger
from prnotify.core.rate_limit import SlidingWindowRateLimiter
from prnotify.db.connection import close_db_pool, get_db_pool
from prnotify.db.redis_client import close_redis
from prnotify.db.repositories import (
    PostgresEscalationTracker,
    PostgresExecutionLogStore,
    PostgresScheduleStore,
    PostgresTokenStore,
)
from prnotify.db.state import StateStore, create_state_store
from prnotify.notifications.dispatcher import DispatchOrchestrator
from prnotify.notifications.escalation import EscalationEngine
from prnotify.providers.factory import (
    ProviderRegistry,
    get_provider_registry,
    reset_provider_registry,
)

logger = get_logger(__name__)


@dataclass
class Runtime:
    pool: Pool
    state_store: StateStore
    registry: ProviderRegistry
    schedule_store: PostgresScheduleStore
    token_store: PostgresTokenStore
    execution_log: PostgresExecutionLogStore
    escalation_tracker: PostgresEscalationTracker
    token_manager: TokenManager
    oauth_states: OAuthStateManager

    def dispatcher(self) -> DispatchOrchestrator:
        return DispatchOrchestrator(
            schedule_store=self.schedule_store,
            registry=self.registry,
            token_manager=self.token_manager,
            escalation_engine=EscalationEngine(
                self.registry, self.token_manager, tracker=self.escalation_tracker
            ),
            execution_log=self.execution_log,
        )


async def open_runtime() -> Runtime:
    """Connect to PostgreSQL (and Redis when configured) and build the services."""
    pool = await get_db_pool()
    state_store = await create_state_store()
    registry = get_provider_registry(rate_limiter=SlidingWindowRateLimiter(state_store))
    token_store = PostgresTokenStore(pool)
    runtime = Runtime(
        pool=pool,
        state_store=state_store,
        registry=registry,
        schedule_store=PostgresScheduleStore(pool),
        token_store=token_store,
        execution_log=PostgresExecutionLogStore(pool),
        escalation_tracker=PostgresEscalationTracker(pool),
        token_manager=TokenManager(token_store, registry),
        oauth_states=OAuthStateManager(state_store),
    )
    logger.info("Runtime ready", state_store=settings.state_store)
    return runtime


async def close_runtime(runtime: Runtime) -> None:
    await reset_provider_registry()
    await runtime.state_store.close()
    await close_db_pool()
    if settings.state_store == "redis":
        await close_redis()


@asynccontextmanager
async def runtime_context() -> AsyncIterator[Runtime]:
    runtime = await open_runtime()
    try:
        yield runtime
    finally:
        await close_runtime(runtime)
