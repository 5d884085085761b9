"""Custom exceptions for git and messaging providers."""


class ProviderError(Exception):
    """Base exception for provider errors."""

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class TokenExpiredError(ProviderError):
    """Raised when a provider rejects the access token (HTTP 401)."""

    def __init__(self, message: str, provider: str | None = None):
        super().__init__(message, provider=provider, status_code=401)


class NoTokenError(ProviderError):
    """Raised when no token is stored for the requested provider."""

    pass


class RateLimitError(ProviderError):
    """Raised when a provider API rate limit is exceeded (HTTP 429)."""

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        retry_after: float | None = None,
    ):
        super().__init__(message, provider=provider, status_code=429)
        self.retry_after = retry_after


class UnknownProviderError(ProviderError):
    """Raised when no adapter is registered for a provider type."""

    pass
