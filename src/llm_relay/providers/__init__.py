"""Provider definitions for llm_relay."""

from .anthropic import AnthropicProvider
from .base import BaseProvider, StreamPiece
from .ollama import OllamaProvider
from .openai import OpenAIProvider
from .registry import PROVIDER_CLASSES, ProviderKind, create_provider

__all__ = [
    "BaseProvider",
    "StreamPiece",
    "OpenAIProvider",
    "AnthropicProvider",
    "OllamaProvider",
    "ProviderKind",
    "PROVIDER_CLASSES",
    "create_provider",
]
