"""Uniform async access to several LLM backends with retry and fallback."""

from llm_relay.config import ManagerConfig, ProviderConfig
from llm_relay.errors import (
    AllProvidersFailedError,
    AuthenticationError,
    LLMRelayError,
    NetworkError,
    NoProviderError,
    ProviderError,
    RateLimitError,
)
from llm_relay.manager import LLMManager
from llm_relay.types import ChatRequest, ChatResponse, Message, ModelInfo, StreamChunk

__all__ = [
    "LLMManager",
    "ManagerConfig",
    "ProviderConfig",
    "ChatRequest",
    "ChatResponse",
    "Message",
    "ModelInfo",
    "StreamChunk",
    "LLMRelayError",
    "ProviderError",
    "AuthenticationError",
    "RateLimitError",
    "NetworkError",
    "NoProviderError",
    "AllProvidersFailedError",
]
