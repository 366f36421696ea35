"""Backend kinds and the factory that builds providers from configuration."""

from __future__ import annotations

from enum import Enum

import httpx

from llm_relay.config import ProviderConfig
from llm_relay.errors import UnsupportedProviderError
from llm_relay.providers.anthropic import AnthropicProvider
from llm_relay.providers.base import BaseProvider
from llm_relay.providers.ollama import OllamaProvider
from llm_relay.providers.openai import OpenAIProvider


class ProviderKind(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    OLLAMA = "ollama"


PROVIDER_CLASSES: dict[ProviderKind, type[BaseProvider]] = {
    ProviderKind.OPENAI: OpenAIProvider,
    ProviderKind.ANTHROPIC: AnthropicProvider,
    ProviderKind.OLLAMA: OllamaProvider,
}


def create_provider(config: ProviderConfig, *, client: httpx.AsyncClient | None = None) -> BaseProvider:
    """Instantiate the provider class matching ``config.kind``."""
    try:
        kind = ProviderKind(config.kind)
    except ValueError:
        raise UnsupportedProviderError(config.kind) from None
    return PROVIDER_CLASSES[kind](config, client=client)
