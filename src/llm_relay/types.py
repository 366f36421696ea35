"""Provider-agnostic request/response models."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

Role = Literal["system", "user", "assistant"]
FinishReason = Literal["stop", "length", "content_filter", "tool_calls"]


class Message(BaseModel):
    """Single chat message."""

    role: Role
    content: str
    timestamp: datetime | None = None


class ChatRequest(BaseModel):
    """Normalized request shared by all providers."""

    messages: list[Message]
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    system_prompt: str | None = None
    stream: bool = False

    def text(self) -> str:
        """Concatenated message content, used for rough token estimates."""
        return "".join(m.content for m in self.messages)


class TokenCost(BaseModel):
    """Price per 1000 tokens in the provider's billing unit."""

    input: float
    output: float


class ModelInfo(BaseModel):
    """Describes one model a provider can serve."""

    id: str
    name: str = ""
    context_window: int = 4096
    max_tokens: int = 2048
    supports_streaming: bool = True
    supports_images: bool = False
    cost_per_1k_tokens: TokenCost | None = None


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_counts(cls, prompt: int, completion: int) -> TokenUsage:
        return cls(prompt_tokens=prompt, completion_tokens=completion, total_tokens=prompt + completion)


class ChatResponse(BaseModel):
    """Simplified chat response."""

    content: str
    model: str
    provider: str
    usage: TokenUsage | None = None
    finish_reason: FinishReason | None = None
    # provider-specific payload kept for debugging or advanced use
    raw: dict[str, Any] = Field(default_factory=dict)


class StreamChunk(BaseModel):
    """Streaming chunk emitted by providers.

    ``content`` is everything produced so far, ``delta`` only the new part.
    The last chunk of every stream has ``finished=True`` and an empty delta.
    """

    content: str
    delta: str
    finished: bool = False
    model: str


class ProviderStatus(BaseModel):
    available: bool
    error: str | None = None
    last_checked: datetime
    response_time_ms: float | None = None


class UsageStats(BaseModel):
    """Snapshot of a provider's cumulative usage."""

    total_requests: int = 0
    total_errors: int = 0
    total_tokens: int = 0
    total_cost: float = 0.0
    average_response_time_ms: float = 0.0
    error_rate: float = 0.0


class PullProgress(BaseModel):
    """One progress event from a local model download."""

    status: str
    digest: str | None = None
    total: int | None = None
    completed: int | None = None

    @property
    def done(self) -> bool:
        return self.status == "success"
