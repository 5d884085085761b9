"""Registry of provider adapters keyed by provider type."""

from typing import Optional

import httpx

from prnotify.core.config import settings
from prnotify.core.logging import get_logger
from prnotify.core.rate_limit import SlidingWindowRateLimiter
from prnotify.providers.base import BaseGitProvider, BaseMessagingProvider, BaseProvider
from prnotify.providers.errors import UnknownProviderError
from prnotify.providers.git.bitbucket import BitbucketProvider
from prnotify.providers.git.github import GitHubProvider
from prnotify.providers.git.gitlab import GitLabProvider
from prnotify.providers.messaging.discord import DiscordProvider
from prnotify.providers.messaging.slack import SlackProvider
from prnotify.providers.messaging.teams import TeamsProvider

logger = get_logger(__name__)

PROVIDER_CLASSES: dict[str, type[BaseProvider]] = {
    "github": GitHubProvider,
    "gitlab": GitLabProvider,
    "bitbucket": BitbucketProvider,
    "slack": SlackProvider,
    "discord": DiscordProvider,
    "teams": TeamsProvider,
}


class ProviderRegistry:
    """
    Hands out one adapter instance per provider type.

    Adapters share a single HTTP client and rate limiter. Instances can be
    registered up front (tests register adapters backed by a mock transport);
    anything else is built on first use.
    """

    def __init__(
        self,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.rate_limiter = rate_limiter
        self._client = client
        self._owns_client = client is None
        self._instances: dict[str, BaseProvider] = {}

    def register(self, provider: BaseProvider) -> None:
        self._instances[provider.provider_type] = provider

    def _http_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=settings.http_timeout)
        return self._client

    def get(self, provider_type: str) -> BaseProvider:
        """
        Get the adapter for a provider type.

        Raises:
            UnknownProviderError: If no adapter exists for the type
        """
        provider = self._instances.get(provider_type)
        if provider is not None:
            return provider

        provider_class = PROVIDER_CLASSES.get(provider_type)
        if provider_class is None:
            raise UnknownProviderError(
                f"Unknown provider: {provider_type}. "
                f"Must be one of: {', '.join(PROVIDER_CLASSES)}",
                provider=provider_type,
            )

        logger.info("Initializing provider", provider=provider_type)
        provider = provider_class(client=self._http_client(), rate_limiter=self.rate_limiter)
        self._instances[provider_type] = provider
        return provider

    def git(self, provider_type: str) -> BaseGitProvider:
        provider = self.get(provider_type)
        if not isinstance(provider, BaseGitProvider):
            raise UnknownProviderError(
                f"{provider_type} is not a git provider", provider=provider_type
            )
        return provider

    def messaging(self, provider_type: str) -> BaseMessagingProvider:
        provider = self.get(provider_type)
        if not isinstance(provider, BaseMessagingProvider):
            raise UnknownProviderError(
                f"{provider_type} is not a messaging provider", provider=provider_type
            )
        return provider

    async def close(self) -> None:
        """Close adapters and the shared HTTP client."""
        for provider in self._instances.values():
            await provider.close()
        self._instances.clear()
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None


# Process-wide registry
_registry: Optional[ProviderRegistry] = None


def get_provider_registry(
    rate_limiter: Optional[SlidingWindowRateLimiter] = None,
) -> ProviderRegistry:
    """Get the shared provider registry, creating it on first use."""
    global _registry
    if _registry is None:
        _registry = ProviderRegistry(rate_limiter=rate_limiter)
    return _registry


async def reset_provider_registry() -> None:
    """Close and drop the shared registry (useful for testing)."""
    global _registry
    if _registry is not None:
        await _registry.close()
        _registry = None
