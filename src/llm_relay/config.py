"""Configuration models for providers and the manager."""

from __future__ import annotations

from pydantic import BaseModel, Field

from llm_relay.types import ModelInfo


class ProviderConfig(BaseModel):
    """Runtime configuration of one provider.

    ``name`` is the routing key inside a manager. ``provider_type`` selects the
    backend implementation and falls back to ``name`` when unset, so a second
    OpenAI-compatible endpoint can be registered as ``name="azure",
    provider_type="openai"``.
    """

    name: str
    display_name: str | None = None
    provider_type: str | None = None
    api_key: str = ""
    base_url: str | None = None
    enabled: bool = True
    models: list[ModelInfo] = Field(default_factory=list)
    temperature: float | None = None
    timeout_s: float | None = None
    retry_attempts: int | None = None
    max_tokens: int | None = None

    @property
    def kind(self) -> str:
        return self.provider_type or self.name


class ManagerConfig(BaseModel):
    """Cross-provider request policy."""

    default_provider: str | None = None
    fallback_providers: list[str] = Field(default_factory=list)
    retry_attempts: int = Field(default=3, ge=1)
    retry_delay_s: float = Field(default=1.0, ge=0)
    enable_fallback: bool = True
    # hinted 429 waits that do not consume a retry slot, per request
    max_rate_limit_waits: int = Field(default=5, ge=0)
