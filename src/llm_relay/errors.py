"""Package specific exception hierarchy."""

from __future__ import annotations


class LLMRelayError(Exception):
    """Base exception for llm_relay package."""


class UnsupportedProviderError(LLMRelayError):
    """Raised when a provider kind has no implementation."""

    def __init__(self, provider: str) -> None:
        super().__init__(f"Provider '{provider}' is not available.")
        self.provider = provider


class UnsupportedFeatureError(LLMRelayError):
    """Raised when a requested feature is unsupported by a provider."""

    def __init__(self, feature: str) -> None:
        super().__init__(f"Feature '{feature}' is not supported.")


class ProviderError(LLMRelayError):
    """Represents provider-specific HTTP or API errors."""

    code = "PROVIDER_ERROR"

    def __init__(
        self,
        provider: str,
        message: str,
        *,
        code: str | None = None,
        status_code: int | None = None,
    ) -> None:
        suffix = f" (status {status_code})" if status_code is not None else ""
        super().__init__(f"{provider}: {message}{suffix}")
        self.provider = provider
        self.message = message
        self.status_code = status_code
        if code is not None:
            self.code = code


class AuthenticationError(ProviderError):
    """Credentials were rejected. Never retried."""

    code = "AUTH_ERROR"

    def __init__(self, provider: str, message: str = "Authentication failed") -> None:
        super().__init__(provider, message, status_code=401)


class RateLimitError(ProviderError):
    """The backend asked us to slow down."""

    code = "RATE_LIMIT"

    def __init__(self, provider: str, retry_after: float | None = None) -> None:
        super().__init__(provider, "Rate limit exceeded", status_code=429)
        self.retry_after = retry_after


class NetworkError(ProviderError):
    """Connection, DNS or timeout failure before a usable response arrived."""

    code = "NETWORK_ERROR"

    def __init__(self, provider: str, original: BaseException) -> None:
        detail = str(original) or type(original).__name__
        super().__init__(provider, f"Network error: {detail}")
        self.original = original


class NoProviderError(ProviderError):
    """Raised when no registered provider matches a request."""

    code = "NO_PROVIDER"

    def __init__(self, requested: str | None = None) -> None:
        message = f"No provider named '{requested}'" if requested else "No available provider"
        super().__init__("manager", message)
        self.requested = requested


class AllProvidersFailedError(ProviderError):
    """Raised when retries and fallbacks are exhausted without a recorded error."""

    code = "ALL_FAILED"

    def __init__(self) -> None:
        super().__init__("manager", "All providers failed")
