"""OAuth CSRF state handling."""

import secrets
from datetime import UTC, datetime, timedelta
from typing import Optional

from prnotify.core.logging import get_logger
from prnotify.db.state import StateStore
from prnotify.models.token import OAuthState

logger = get_logger(__name__)

STATE_TTL = timedelta(minutes=10)


class OAuthStateError(ValueError):
    """Raised when an OAuth callback carries an unknown, expired or foreign state."""

    pass


class OAuthStateManager:
    """Issues single-use OAuth state values bound to a user."""

    def __init__(self, store: StateStore, ttl: timedelta = STATE_TTL):
        self.store = store
        self.ttl = ttl

    @staticmethod
    def _key(state: str) -> str:
        return f"oauth_state:{state}"

    async def generate_state(self, provider: str, user_id: str, redirect_uri: str) -> str:
        """Create and store a new state value for an authorization request."""
        state = secrets.token_urlsafe(32)
        record = OAuthState(
            state=state,
            provider=provider,
            user_id=user_id,
            redirect_uri=redirect_uri,
            created_at=datetime.now(UTC),
        )
        await self.store.set(
            self._key(state), record.model_dump(mode="json"), self.ttl.total_seconds()
        )
        logger.info("OAuth state generated", provider=provider, user_id=user_id)
        return state

    async def validate_and_consume_state(
        self,
        state: str,
        expected_user_id: str,
        now: Optional[datetime] = None,
    ) -> OAuthState:
        """
        Consume a state value from a callback.

        The entry is removed before it is checked, so a state can never be
        used twice, even by the rightful user.

        Raises:
            OAuthStateError: If the state is unknown, expired or belongs to another user
        """
        data = await self.store.pop(self._key(state))
        if data is None:
            raise OAuthStateError("Invalid or expired OAuth state")

        record = OAuthState.model_validate(data)
        if record.user_id != expected_user_id:
            logger.warning(
                "OAuth state user mismatch", provider=record.provider, user_id=expected_user_id
            )
            raise OAuthStateError("OAuth state does not belong to this user")

        now = now or datetime.now(UTC)
        if now - record.created_at > self.ttl:
            raise OAuthStateError("OAuth state has expired")

        return record
