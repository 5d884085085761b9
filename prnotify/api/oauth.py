"""OAuth connection endpoints and timezone listing."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from prnotify.api.deps import get_current_user, get_oauth_states, get_registry, get_token_manager
from prnotify.auth.oauth import OAuthStateError, OAuthStateManager
from prnotify.auth.token_manager import TokenManager
from prnotify.core.logging import get_logger
from prnotify.providers.errors import ProviderError, UnknownProviderError
from prnotify.providers.factory import ProviderRegistry
from prnotify.scheduling.cron import list_timezones

logger = get_logger(__name__)
router = APIRouter()


class AuthUrlRequest(BaseModel):
    redirect_uri: str


class AuthUrlResponse(BaseModel):
    auth_url: str
    state: str


class CallbackRequest(BaseModel):
    code: str
    state: str
    provider_id: Optional[str] = None


class CallbackResponse(BaseModel):
    provider_type: str
    provider_id: str
    scope: Optional[str] = None


@router.get("/timezones")
async def timezones():
    """Supported UTC-offset timezones with example places."""
    return list_timezones()


@router.post("/oauth/{provider}/auth-url", response_model=AuthUrlResponse)
async def create_auth_url(
    provider: str,
    body: AuthUrlRequest,
    user_id: str = Depends(get_current_user),
    registry: ProviderRegistry = Depends(get_registry),
    states: OAuthStateManager = Depends(get_oauth_states),
):
    try:
        adapter = registry.get(provider)
        state = await states.generate_state(provider, user_id, body.redirect_uri)
        return AuthUrlResponse(auth_url=adapter.get_auth_url(state, body.redirect_uri), state=state)
    except UnknownProviderError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/oauth/{provider}/callback", response_model=CallbackResponse)
async def oauth_callback(
    provider: str,
    body: CallbackRequest,
    user_id: str = Depends(get_current_user),
    registry: ProviderRegistry = Depends(get_registry),
    states: OAuthStateManager = Depends(get_oauth_states),
    token_manager: TokenManager = Depends(get_token_manager),
):
    """Exchange an authorization code and store the resulting token."""
    try:
        adapter = registry.get(provider)
    except UnknownProviderError as e:
        raise HTTPException(status_code=404, detail=str(e))

    try:
        pending = await states.validate_and_consume_state(body.state, user_id)
    except OAuthStateError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if pending.provider != provider:
        raise HTTPException(status_code=400, detail="OAuth state was issued for another provider")

    try:
        response = await adapter.exchange_code_for_tokens(body.code, pending.redirect_uri)
    except ProviderError as e:
        logger.warning("Code exchange failed", provider=provider, error=str(e))
        raise HTTPException(status_code=502, detail=f"Token exchange failed: {e}")

    provider_id = body.provider_id or str(uuid.uuid4())
    record = await token_manager.save_token(user_id, provider, provider_id, response)
    return CallbackResponse(provider_type=provider, provider_id=provider_id, scope=record.scope)
