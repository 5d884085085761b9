"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from prnotify.api import oauth, providers, schedules
from prnotify.core.config import settings
from prnotify.core.logging import get_logger, setup_logging
from prnotify.runtime import close_runtime, open_runtime

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting application...", environment=settings.environment)
    app.state.runtime = await open_runtime()
    logger.info("Application started")
    yield
    logger.info("Shutting down application...")
    await close_runtime(app.state.runtime)
    app.state.runtime = None
    logger.info("Application shut down")


app = FastAPI(
    title="PR Notify",
    description="Scheduled pull request reminders for chat channels",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.app_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
async def root():
    return {"message": "PR Notify API", "version": "0.1.0"}


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    runtime = getattr(app.state, "runtime", None)
    if runtime is None:
        return {"status": "starting"}
    try:
        async with runtime.pool.acquire() as conn:
            await conn.fetchval("SELECT 1")
        return {"status": "healthy", "postgres": "connected", "state_store": settings.state_store}
    except Exception as e:
        logger.warning("Health check failed", error=str(e))
        return {"status": "unhealthy", "error": str(e)}


app.include_router(schedules.router, prefix="/api", tags=["schedules"])
app.include_router(oauth.router, prefix="/api", tags=["oauth"])
app.include_router(providers.router, prefix="/api", tags=["providers"])
