"""Listing repositories and channels for connected provider accounts."""

from fastapi import APIRouter, Depends, HTTPException

from prnotify.api.deps import get_current_user, get_registry, get_token_manager
from prnotify.auth.token_manager import TokenManager
from prnotify.core.logging import get_logger
from prnotify.models.pull_request import Channel, Repository
from prnotify.providers.errors import (
    NoTokenError,
    ProviderError,
    TokenExpiredError,
    UnknownProviderError,
)
from prnotify.providers.factory import ProviderRegistry

logger = get_logger(__name__)
router = APIRouter()


def _http_error(e: ProviderError) -> HTTPException:
    if isinstance(e, UnknownProviderError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, (NoTokenError, TokenExpiredError)):
        return HTTPException(status_code=401, detail=str(e))
    return HTTPException(status_code=502, detail=str(e))


@router.get("/providers/git/{provider}/{provider_id}/repositories", response_model=list[Repository])
async def list_repositories(
    provider: str,
    provider_id: str,
    user_id: str = Depends(get_current_user),
    registry: ProviderRegistry = Depends(get_registry),
    token_manager: TokenManager = Depends(get_token_manager),
):
    try:
        git = registry.git(provider)
        return await token_manager.execute_with_token(
            user_id, provider, provider_id, git.get_repositories
        )
    except ProviderError as e:
        logger.warning("Listing repositories failed", provider=provider, error=str(e))
        raise _http_error(e)


@router.get("/providers/messaging/{provider}/{provider_id}/channels", response_model=list[Channel])
async def list_channels(
    provider: str,
    provider_id: str,
    user_id: str = Depends(get_current_user),
    registry: ProviderRegistry = Depends(get_registry),
    token_manager: TokenManager = Depends(get_token_manager),
):
    try:
        messaging = registry.messaging(provider)
        return await token_manager.execute_with_token(
            user_id, provider, provider_id, messaging.get_channels
        )
    except ProviderError as e:
        logger.warning("Listing channels failed", provider=provider, error=str(e))
        raise _http_error(e)
