"""Batch jobs shared by the CLI and the serverless handler."""

from datetime import timedelta

from prnotify.auth.token_refresh import refresh_expiring_tokens
from prnotify.core.config import settings
from prnotify.core.logging import get_logger
from prnotify.db.connection import close_db_pool, get_db_pool
from prnotify.db.migrations import run_migrations
from prnotify.runtime import runtime_context

logger = get_logger(__name__)


async def run_dispatch() -> dict:
    """Run one dispatch batch over all active schedules."""
    async with runtime_context() as runtime:
        result = await runtime.dispatcher().run()
    return result.to_dict()


async def run_token_refresh() -> dict:
    """Refresh tokens that expire within the configured window."""
    async with runtime_context() as runtime:
        summary = await refresh_expiring_tokens(
            runtime.token_store,
            runtime.token_manager,
            within=timedelta(minutes=settings.token_refresh_window_minutes),
        )
    return {
        "checked": summary.checked,
        "refreshed": summary.refreshed,
        "failed": summary.failed,
        "errors": summary.errors,
    }


async def run_migrate() -> dict:
    pool = await get_db_pool()
    try:
        applied = await run_migrations(pool)
    finally:
        await close_db_pool()
    logger.info("Migrations finished", applied=len(applied))
    return {"applied": applied}


JOBS = {
    "dispatch": run_dispatch,
    "refresh-tokens": run_token_refresh,
    "migrate": run_migrate,
}
