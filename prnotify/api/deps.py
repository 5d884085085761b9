"""Request dependencies shared by the API routers."""

from fastapi import Header, HTTPException, Request

from prnotify.auth.oauth import OAuthStateManager
from prnotify.auth.token_manager import TokenManager
from prnotify.db.stores import ExecutionLogStore, ScheduleStore
from prnotify.providers.factory import ProviderRegistry
from prnotify.runtime import Runtime


def get_runtime(request: Request) -> Runtime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Service is starting up")
    return runtime


def get_current_user(x_user_id: str | None = Header(default=None)) -> str:
    """User id supplied by the authentication layer in front of the API."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_user_id


def get_schedule_store(request: Request) -> ScheduleStore:
    return get_runtime(request).schedule_store


def get_execution_log(request: Request) -> ExecutionLogStore:
    return get_runtime(request).execution_log


def get_registry(request: Request) -> ProviderRegistry:
    return get_runtime(request).registry


def get_token_manager(request: Request) -> TokenManager:
    return get_runtime(request).token_manager


def get_oauth_states(request: Request) -> OAuthStateManager:
    return get_runtime(request).oauth_states
