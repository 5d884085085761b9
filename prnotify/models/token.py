"""OAuth token and state models."""

from datetime import UTC, datetime, timedelta
from typing import Optional

from pydantic import BaseModel

EXPIRY_BUFFER = timedelta(minutes=5)


class TokenRecord(BaseModel):
    """Stored OAuth token for one (user, provider type, provider id)."""

    user_id: str
    provider_type: str
    provider_id: str
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    scope: Optional[str] = None
    token_type: str = "Bearer"

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Expired once within five minutes of expires_at. No expiry means never."""
        if self.expires_at is None:
            return False
        now = now or datetime.now(UTC)
        return now > self.expires_at - EXPIRY_BUFFER


class TokenResponse(BaseModel):
    """Token endpoint response, normalized across providers."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    scope: Optional[str] = None
    token_type: str = "Bearer"

    def expires_at(self, now: Optional[datetime] = None) -> Optional[datetime]:
        if self.expires_in is None:
            return None
        return (now or datetime.now(UTC)) + timedelta(seconds=self.expires_in)


class OAuthState(BaseModel):
    """Pending OAuth authorization, keyed by its random state value."""

    state: str
    provider: str
    user_id: str
    redirect_uri: str
    created_at: datetime
