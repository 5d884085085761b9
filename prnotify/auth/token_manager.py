"""Access token lifecycle: lookup, refresh and retry on rejection."""

import asyncio
from datetime import UTC, datetime
from typing import Awaitable, Callable, TypeVar

from prnotify.core.logging import get_logger
from prnotify.db.stores import TokenStore
from prnotify.models.token import TokenRecord, TokenResponse
from prnotify.providers.errors import NoTokenError, ProviderError, TokenExpiredError
from prnotify.providers.factory import ProviderRegistry

logger = get_logger(__name__)

T = TypeVar("T")


class TokenManager:
    """Answers "give me a currently valid token for (user, provider)"."""

    def __init__(
        self,
        token_store: TokenStore,
        registry: ProviderRegistry,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self.token_store = token_store
        self.registry = registry
        self.clock = clock
        self._locks: dict[tuple[str, str, str], asyncio.Lock] = {}

    def _lock(self, user_id: str, provider_type: str, provider_id: str) -> asyncio.Lock:
        return self._locks.setdefault((user_id, provider_type, provider_id), asyncio.Lock())

    async def save_token(
        self,
        user_id: str,
        provider_type: str,
        provider_id: str,
        response: TokenResponse,
    ) -> TokenRecord:
        """Store the result of a code exchange."""
        record = TokenRecord(
            user_id=user_id,
            provider_type=provider_type,
            provider_id=provider_id,
            access_token=response.access_token,
            refresh_token=response.refresh_token,
            expires_at=response.expires_at(self.clock()),
            scope=response.scope,
            token_type=response.token_type,
        )
        await self.token_store.save_token(record)
        logger.info("Token saved", provider=provider_type, user_id=user_id)
        return record

    async def _load(self, user_id: str, provider_type: str, provider_id: str) -> TokenRecord:
        record = await self.token_store.get_token(user_id, provider_type, provider_id)
        if record is None:
            raise NoTokenError(
                f"No {provider_type} token found. Please reconnect.", provider=provider_type
            )
        return record

    async def refresh(self, record: TokenRecord) -> TokenRecord:
        """
        Exchange the record's refresh token for a new access token.

        A failed refresh deletes the stored token so the user is asked to
        reconnect instead of failing on every run.

        Raises:
            TokenExpiredError: If there is no refresh token or the refresh fails
        """
        if not record.refresh_token:
            raise TokenExpiredError(
                f"{record.provider_type} token expired and cannot be refreshed",
                provider=record.provider_type,
            )

        provider = self.registry.get(record.provider_type)
        try:
            response = await provider.refresh_token(record.refresh_token)
        except ProviderError as e:
            logger.warning(
                "Token refresh failed, removing token",
                provider=record.provider_type,
                user_id=record.user_id,
                error=str(e),
            )
            await self.token_store.delete_token(
                record.user_id, record.provider_type, record.provider_id
            )
            raise TokenExpiredError(
                f"{record.provider_type} token refresh failed. Please reconnect.",
                provider=record.provider_type,
            ) from e

        refreshed = record.model_copy(
            update={
                "access_token": response.access_token,
                # Providers that do not rotate refresh tokens omit them
                "refresh_token": response.refresh_token or record.refresh_token,
                "expires_at": response.expires_at(self.clock()),
                "scope": response.scope or record.scope,
                "token_type": response.token_type,
            }
        )
        await self.token_store.save_token(refreshed)
        logger.info("Token refreshed", provider=record.provider_type, user_id=record.user_id)
        return refreshed

    async def get_valid_token(self, user_id: str, provider_type: str, provider_id: str) -> str:
        """
        Return an access token that is not within five minutes of expiry.

        Raises:
            NoTokenError: If nothing is stored for the provider
            TokenExpiredError: If the token is expired and cannot be refreshed
        """
        record = await self._load(user_id, provider_type, provider_id)
        if not record.is_expired(self.clock()):
            return record.access_token

        async with self._lock(user_id, provider_type, provider_id):
            # Another task may have refreshed while we waited
            record = await self._load(user_id, provider_type, provider_id)
            if not record.is_expired(self.clock()):
                return record.access_token
            return (await self.refresh(record)).access_token

    async def force_refresh(
        self, user_id: str, provider_type: str, provider_id: str, rejected_token: str
    ) -> str:
        """Refresh after the provider rejected ``rejected_token``."""
        async with self._lock(user_id, provider_type, provider_id):
            record = await self._load(user_id, provider_type, provider_id)
            if record.access_token != rejected_token:
                return record.access_token
            return (await self.refresh(record)).access_token

    async def execute_with_token(
        self,
        user_id: str,
        provider_type: str,
        provider_id: str,
        operation: Callable[[str], Awaitable[T]],
    ) -> T:
        """
        Run ``operation`` with a valid token, refreshing and retrying once on a 401.
        """
        token = await self.get_valid_token(user_id, provider_type, provider_id)
        try:
            return await operation(token)
        except TokenExpiredError:
            logger.info("Token rejected, refreshing and retrying", provider=provider_type)
            token = await self.force_refresh(user_id, provider_type, provider_id, token)
            return await operation(token)

    async def delete_token(self, user_id: str, provider_type: str, provider_id: str) -> None:
        await self.token_store.delete_token(user_id, provider_type, provider_id)

