"""Base classes for git and messaging providers."""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional
from urllib.parse import urlencode

import httpx

from prnotify.core.config import settings
from prnotify.core.logging import get_logger
from prnotify.core.rate_limit import SlidingWindowRateLimiter
from prnotify.core.retry import with_retry
from prnotify.models.pull_request import (
    Channel,
    DeliveryResult,
    Message,
    NormalizedPullRequest,
    Repository,
)
from prnotify.models.schedule import PRFilters
from prnotify.models.token import TokenResponse
from prnotify.notifications.filters import apply_filters
from prnotify.notifications.formatter import (
    MessageStyle,
    build_escalation_message,
    build_message,
)
from prnotify.providers.errors import ProviderError, RateLimitError, TokenExpiredError

logger = get_logger(__name__)


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Seconds from a Retry-After header, ignoring HTTP-date values."""
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


class BaseProvider(ABC):
    """
    Shared HTTP plumbing and OAuth flow for every provider.

    Subclasses set the class attributes describing their API and OAuth
    endpoints. The httpx client and rate limiter are injectable so tests can
    swap in a mock transport.
    """

    provider_type: str = ""
    api_base: str = ""
    authorize_url: str = ""
    token_url: str = ""
    scopes: list[str] = []
    scope_separator: str = " "

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
    ):
        self.client = client or httpx.AsyncClient(timeout=settings.http_timeout)
        self._owns_client = client is None
        self.rate_limiter = rate_limiter
        self._client_id = client_id
        self._client_secret = client_secret

    # HTTP

    def _auth_headers(self, token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    def _raise_for_status(self, response: httpx.Response) -> None:
        """Translate an error response into the provider error hierarchy."""
        status = response.status_code
        if status < 400:
            return
        if status == 401:
            raise TokenExpiredError(
                f"{self.provider_type} rejected the access token", provider=self.provider_type
            )
        if status == 429:
            raise RateLimitError(
                f"{self.provider_type} rate limit exceeded",
                provider=self.provider_type,
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
            )
        raise ProviderError(
            f"{self.provider_type} API error {status} for "
            f"{response.request.method} {response.request.url.path}",
            provider=self.provider_type,
            status_code=status,
        )

    async def _request(
        self,
        method: str,
        url: str,
        token: Optional[str] = None,
        headers: Optional[dict[str, str]] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Make one rate-limited request and raise on error statuses."""
        if self.rate_limiter is not None:
            await self.rate_limiter.acquire(self.provider_type)

        request_headers = {"Accept": "application/json"}
        if token:
            request_headers.update(self._auth_headers(token))
        if headers:
            request_headers.update(headers)

        if not url.startswith("http"):
            url = f"{self.api_base}{url}"

        response = await self.client.request(method, url, headers=request_headers, **kwargs)
        self._raise_for_status(response)
        return response

    async def _get_json(self, url: str, token: Optional[str] = None, **kwargs: Any) -> Any:
        """GET with retries on rate limits, 5xx and transport errors."""

        async def call() -> Any:
            response = await self._request("GET", url, token=token, **kwargs)
            return response.json()

        return await with_retry(call, description=f"{self.provider_type} GET {url}")

    async def _get_all_pages(
        self, url: str, token: str, max_pages: int = 10, **kwargs: Any
    ) -> list[Any]:
        """GET a list endpoint, following ``Link: rel="next"`` headers."""
        items: list[Any] = []
        next_url: Optional[str] = url
        pages = 0
        while next_url and pages < max_pages:
            page_url = next_url

            async def call() -> httpx.Response:
                return await self._request("GET", page_url, token=token, **kwargs)

            response = await with_retry(call, description=f"{self.provider_type} GET {page_url}")
            items.extend(response.json())
            next_url = response.links.get("next", {}).get("url")
            # Subsequent pages carry their query string in the link itself
            kwargs.pop("params", None)
            pages += 1
        return items

    # OAuth

    def _credentials(self) -> tuple[str, str]:
        if self._client_id and self._client_secret:
            return self._client_id, self._client_secret
        creds = settings.get_provider_credentials(self.provider_type)
        return creds["client_id"], creds["client_secret"]

    def get_auth_url(self, state: str, redirect_uri: str) -> str:
        """Authorization URL the user is sent to when connecting this provider."""
        client_id, _ = self._credentials()
        params = {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "scope": self.scope_separator.join(self.scopes),
            "state": state,
            "response_type": "code",
        }
        params.update(self._extra_auth_params())
        return f"{self.authorize_url}?{urlencode(params)}"

    def _extra_auth_params(self) -> dict[str, str]:
        return {}

    def _parse_token_response(self, payload: dict) -> TokenResponse:
        if "error" in payload:
            raise ProviderError(
                f"{self.provider_type} token error: "
                f"{payload.get('error_description') or payload['error']}",
                provider=self.provider_type,
                status_code=400,
            )
        return TokenResponse.model_validate(payload)

    async def _token_request(self, data: dict[str, str]) -> TokenResponse:
        client_id, client_secret = self._credentials()
        form = {"client_id": client_id, "client_secret": client_secret, **data}

        async def call() -> TokenResponse:
            response = await self._request(
                "POST",
                self.token_url,
                data=form,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
            return self._parse_token_response(response.json())

        return await with_retry(call, description=f"{self.provider_type} token request")

    async def exchange_code_for_tokens(self, code: str, redirect_uri: str) -> TokenResponse:
        """Exchange an authorization code for tokens."""
        return await self._token_request(
            {"grant_type": "authorization_code", "code": code, "redirect_uri": redirect_uri}
        )

    async def refresh_token(self, refresh_token: str) -> TokenResponse:
        """Exchange a refresh token for a new access token."""
        return await self._token_request(
            {"grant_type": "refresh_token", "refresh_token": refresh_token}
        )

    async def close(self) -> None:
        """Close the HTTP client if this provider created it."""
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


class BaseGitProvider(BaseProvider):
    """Source-control provider: lists repositories and open pull requests."""

    def __init__(self, *args: Any, detail_concurrency: Optional[int] = None, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.detail_concurrency = detail_concurrency or settings.detail_concurrency

    @abstractmethod
    async def get_repositories(self, token: str) -> list[Repository]:
        """Repositories the token can see, excluding archived ones."""
        pass

    async def _get_optional_json(
        self, url: str, token: str, default: Any, **kwargs: Any
    ) -> Any:
        """GET per-PR detail, falling back to ``default`` unless the token is rejected."""
        try:
            return await self._get_json(url, token, **kwargs)
        except TokenExpiredError:
            raise
        except Exception as e:
            logger.warning(
                "Failed to fetch pull request detail",
                provider=self.provider_type,
                url=url,
                error=str(e),
            )
            return default

    @abstractmethod
    async def _fetch_repository_pull_requests(
        self, token: str, repository: str, limit: asyncio.Semaphore
    ) -> list[NormalizedPullRequest]:
        """Open pull requests of one repository, with review state and line counts."""
        pass

    async def get_pull_requests(
        self,
        token: str,
        repositories: Optional[list[str]] = None,
        filters: Optional[PRFilters] = None,
        now: Optional[datetime] = None,
    ) -> list[NormalizedPullRequest]:
        """
        Fetch open pull requests across repositories.

        Repositories are fetched concurrently, bounded by detail_concurrency.
        A repository that fails is logged and skipped; a rejected token fails
        the whole call.

        Args:
            token: Access token
            repositories: Repository full names; all accessible ones when None
            filters: Optional filters applied to the combined result
            now: Reference time for age filters

        Returns:
            Pull requests in repository order

        Raises:
            TokenExpiredError: If the provider rejects the token
        """
        if repositories is None:
            repositories = [repo.full_name for repo in await self.get_repositories(token)]

        repo_limit = asyncio.Semaphore(self.detail_concurrency)
        detail_limit = asyncio.Semaphore(self.detail_concurrency)

        async def fetch(repository: str) -> list[NormalizedPullRequest]:
            async with repo_limit:
                return await self._fetch_repository_pull_requests(token, repository, detail_limit)

        results = await asyncio.gather(
            *(fetch(repository) for repository in repositories), return_exceptions=True
        )

        pull_requests: list[NormalizedPullRequest] = []
        for repository, result in zip(repositories, results):
            if isinstance(result, TokenExpiredError):
                raise result
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning(
                    "Skipping repository after fetch failure",
                    provider=self.provider_type,
                    repository=repository,
                    error=str(result),
                )
                continue
            pull_requests.extend(result)

        logger.info(
            "Fetched pull requests",
            provider=self.provider_type,
            repositories=len(repositories),
            count=len(pull_requests),
        )
        return apply_filters(pull_requests, filters, now)


class BaseMessagingProvider(BaseProvider):
    """Chat provider: lists channels and delivers messages."""

    style: MessageStyle = MessageStyle()

    @abstractmethod
    async def get_channels(self, token: str) -> list[Channel]:
        pass

    @abstractmethod
    async def _deliver(self, credential: str, channel_id: str, message: Message) -> DeliveryResult:
        """Send a message once, using a token or a webhook URL."""
        pass

    @staticmethod
    def is_webhook(credential: str) -> bool:
        return credential.startswith("https://")

    async def send_message(
        self, credential: str, channel_id: str, message: Message
    ) -> DeliveryResult:
        """
        Deliver a message to a channel.

        Only rate-limit responses are retried: they guarantee the message was
        not posted, whereas a 5xx may have been.
        """
        result = await with_retry(
            lambda: self._deliver(credential, channel_id, message),
            should_retry=lambda e: isinstance(e, RateLimitError),
            description=f"{self.provider_type} send",
        )
        logger.info(
            "Message delivered",
            provider=self.provider_type,
            channel_id=channel_id,
            message_id=result.message_id,
        )
        return result

    def format_pull_requests(
        self,
        prs: list[NormalizedPullRequest],
        title: Optional[str] = None,
        repository_name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Message:
        return build_message(prs, self.style, title, repository_name, now)

    def format_escalation(
        self,
        prs: list[NormalizedPullRequest],
        days: int,
        mentions: Optional[list[str]] = None,
        title: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Message:
        return build_escalation_message(prs, self.style, days, mentions, title, now)
