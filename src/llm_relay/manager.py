"""Async manager orchestrating provider interactions."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable
from datetime import datetime, timezone
from typing import Any

import httpx

from llm_relay.config import ManagerConfig, ProviderConfig
from llm_relay.errors import (
    AllProvidersFailedError,
    AuthenticationError,
    NoProviderError,
    ProviderError,
    RateLimitError,
    UnsupportedFeatureError,
    UnsupportedProviderError,
)
from llm_relay.providers.anthropic import AnthropicProvider
from llm_relay.providers.base import BaseProvider
from llm_relay.providers.ollama import OllamaProvider
from llm_relay.providers.openai import OpenAIProvider
from llm_relay.providers.registry import create_provider
from llm_relay.types import ChatRequest, ChatResponse, ProviderStatus, StreamChunk, UsageStats

logger = logging.getLogger(__name__)


class LLMManager:
    """Routes requests to registered providers with retry and fallback.

    Owns the provider registry and the active provider. Providers keep their
    own config, status cache and usage stats; the manager only calls their
    public methods.
    """

    def __init__(self, config: ManagerConfig | None = None, **overrides: Any) -> None:
        data = config.model_dump() if config is not None else {}
        data.update(overrides)
        self._config = ManagerConfig.model_validate(data)
        self._providers: dict[str, BaseProvider] = {}
        self._active: str | None = None

    @classmethod
    def from_configs(
        cls,
        configs: Iterable[ProviderConfig],
        *,
        client: httpx.AsyncClient | None = None,
        **overrides: Any,
    ) -> LLMManager:
        """Build a manager whose default provider is the first enabled config."""
        configs = list(configs)
        default = next((c.name for c in configs if c.enabled), None)
        manager = cls(**{"default_provider": default, **overrides})
        manager.register_from_configs(configs, client=client)
        return manager

    @classmethod
    def with_defaults(cls, *, client: httpx.AsyncClient | None = None, **overrides: Any) -> LLMManager:
        """OpenAI and Anthropic without keys, plus a local Ollama host."""
        manager = cls(**overrides)
        manager.register_provider(OpenAIProvider(client=client))
        manager.register_provider(AnthropicProvider(client=client))
        manager.register_provider(OllamaProvider(client=client))
        return manager

    @property
    def config(self) -> ManagerConfig:
        return self._config.model_copy(deep=True)

    def update_config(self, **changes: Any) -> None:
        data = self._config.model_dump()
        data.update(changes)
        self._config = ManagerConfig.model_validate(data)

    async def aclose(self) -> None:
        """Close every provider's HTTP client."""
        await asyncio.gather(*(provider.aclose() for provider in self._providers.values()))

    # -- registry ------------------------------------------------------------

    def register_provider(self, provider: BaseProvider) -> None:
        if provider.name in self._providers:
            logger.warning("Replacing registered provider '%s'", provider.name)
        self._providers[provider.name] = provider

        if self._active is None or provider.name == self._config.default_provider:
            self._active = provider.name
        logger.debug("Registered provider '%s' (active: %s)", provider.name, self._active)

    def register_from_configs(
        self,
        configs: Iterable[ProviderConfig],
        *,
        client: httpx.AsyncClient | None = None,
    ) -> list[str]:
        """Create and register a provider per config; bad entries are skipped."""
        registered: list[str] = []
        for config in configs:
            try:
                provider = create_provider(config, client=client)
            except (UnsupportedProviderError, ValueError) as exc:
                logger.warning("Skipping provider '%s': %s", config.name, exc)
                continue
            self.register_provider(provider)
            registered.append(provider.name)
        return registered

    def unregister_provider(self, name: str) -> bool:
        if self._providers.pop(name, None) is None:
            return False
        if self._active == name:
            self._active = next(iter(self._providers), None)
            logger.info("Active provider '%s' removed, now '%s'", name, self._active)
        return True

    def get_provider(self, name: str) -> BaseProvider | None:
        return self._providers.get(name)

    def provider_names(self) -> list[str]:
        return list(self._providers)

    @property
    def active_provider_name(self) -> str | None:
        return self._active

    @property
    def active_provider(self) -> BaseProvider | None:
        return self._providers.get(self._active) if self._active else None

    def set_active_provider(self, name: str) -> bool:
        if name not in self._providers:
            return False
        self._active = name
        return True

    # -- requests ------------------------------------------------------------

    async def send_message(self, req: ChatRequest, provider_name: str | None = None) -> ChatResponse:
        """Send ``req`` with retries on the resolved provider, then fallbacks."""
        primary = self._resolve(provider_name)
        last_error: ProviderError | None = None

        try:
            return await self._send_with_retries(primary, req)
        except ProviderError as exc:
            last_error = exc

        if self._config.enable_fallback and self._config.fallback_providers:
            for name in self._config.fallback_providers:
                if name == primary.name:
                    continue
                fallback = self._providers.get(name)
                if fallback is None:
                    logger.debug("Fallback provider '%s' is not registered", name)
                    continue
                if not await fallback.is_available():
                    logger.info("Fallback provider '%s' is unavailable", name)
                    continue
                try:
                    response = await fallback.send_message(req)
                except ProviderError as exc:
                    logger.warning("Fallback provider '%s' failed: %s", name, exc)
                    last_error = exc
                    continue
                logger.info("Request served by fallback '%s' after '%s' failed", name, primary.name)
                return response

        logger.error("Request failed on '%s' and all fallbacks: %s", primary.name, last_error)
        if last_error is None:
            raise AllProvidersFailedError()
        raise last_error

    async def _send_with_retries(self, provider: BaseProvider, req: ChatRequest) -> ChatResponse:
        attempts = self._config.retry_attempts
        rate_limit_waits = 0
        attempt = 1
        error: ProviderError

        while True:
            try:
                return await provider.send_message(req)
            except AuthenticationError:
                logger.warning("Authentication failed for '%s', not retrying", provider.name)
                raise
            except ProviderError as exc:
                retry_after = exc.retry_after if isinstance(exc, RateLimitError) else None
                if retry_after is not None and rate_limit_waits < self._config.max_rate_limit_waits:
                    rate_limit_waits += 1
                    logger.warning("'%s' rate limited, waiting %.1fs", provider.name, retry_after)
                    await self._delay(retry_after)
                    continue
                if attempt >= attempts:
                    logger.warning("'%s' failed after %d attempt(s): %s", provider.name, attempt, exc)
                    raise
                error = exc

            delay = self._config.retry_delay_s * attempt
            logger.warning(
                "'%s' attempt %d/%d failed, retrying in %.1fs: %s",
                provider.name,
                attempt,
                attempts,
                delay,
                error,
            )
            await self._delay(delay)
            attempt += 1

    def stream_message(self, req: ChatRequest, provider_name: str | None = None) -> AsyncIterator[StreamChunk]:
        """Stream from the resolved provider.

        No retry or fallback: chunks already handed to the caller cannot be
        replayed or switched to another backend.
        """
        provider = self._resolve(provider_name)
        model = provider.get_model(req.model) if req.model else provider.default_model
        if model is not None and not model.supports_streaming:
            raise UnsupportedFeatureError("streaming")
        return provider.stream_message(req)

    async def _delay(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    def _resolve(self, provider_name: str | None) -> BaseProvider:
        provider = self._providers.get(provider_name) if provider_name else self.active_provider
        if provider is None:
            raise NoProviderError(provider_name)
        return provider

    # -- status, config and stats ----------------------------------------------

    async def get_provider_statuses(self) -> dict[str, ProviderStatus]:
        """Probe every provider concurrently; one failure does not affect the rest."""
        names = list(self._providers)
        results = await asyncio.gather(
            *(self._providers[name].get_status() for name in names),
            return_exceptions=True,
        )

        statuses: dict[str, ProviderStatus] = {}
        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                logger.warning("Status check for '%s' failed: %s", name, result)
                statuses[name] = ProviderStatus(
                    available=False,
                    error=str(result) or type(result).__name__,
                    last_checked=datetime.now(timezone.utc),
                )
            else:
                statuses[name] = result
        return statuses

    def update_provider_config(self, name: str, **changes: Any) -> bool:
        provider = self._providers.get(name)
        if provider is None:
            return False
        provider.update_config(**changes)
        return True

    async def validate_provider_config(self, name: str) -> bool:
        provider = self._providers.get(name)
        return await provider.validate_config() if provider else False

    def get_usage_stats(self, provider_name: str | None = None) -> dict[str, UsageStats]:
        if provider_name:
            provider = self._providers.get(provider_name)
            return {provider_name: provider.get_usage_stats()} if provider else {}
        return {name: provider.get_usage_stats() for name, provider in self._providers.items()}

    def reset_usage_stats(self, provider_name: str | None = None) -> None:
        if provider_name:
            provider = self._providers.get(provider_name)
            if provider:
                provider.reset_usage_stats()
            return
        for provider in self._providers.values():
            provider.reset_usage_stats()

    def estimate_cost(self, req: ChatRequest, provider_name: str | None = None) -> float:
        try:
            provider = self._resolve(provider_name)
        except NoProviderError:
            return 0.0
        return provider.estimate_cost(req)
