"""OpenAI provider implementation."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

from llm_relay.config import ProviderConfig
from llm_relay.errors import ProviderError
from llm_relay.providers.base import BaseProvider, StreamPiece
from llm_relay.types import ChatRequest, ChatResponse, FinishReason, ModelInfo, TokenCost, TokenUsage

_DEFAULT_BASE_URL = "https://api.openai.com/v1"
_CHAT_PATH = "/chat/completions"
_MODELS_PATH = "/models"
_DEFAULT_TEMPERATURE = 0.7

DEFAULT_MODELS = (
    ModelInfo(
        id="gpt-4-turbo-preview",
        name="GPT-4 Turbo",
        context_window=128000,
        max_tokens=4096,
        supports_images=True,
        cost_per_1k_tokens=TokenCost(input=0.01, output=0.03),
    ),
    ModelInfo(
        id="gpt-4",
        name="GPT-4",
        context_window=8192,
        max_tokens=4096,
        cost_per_1k_tokens=TokenCost(input=0.03, output=0.06),
    ),
    ModelInfo(
        id="gpt-3.5-turbo",
        name="GPT-3.5 Turbo",
        context_window=16385,
        max_tokens=4096,
        cost_per_1k_tokens=TokenCost(input=0.0015, output=0.002),
    ),
    ModelInfo(
        id="gpt-3.5-turbo-16k",
        name="GPT-3.5 Turbo 16K",
        context_window=16385,
        max_tokens=4096,
        cost_per_1k_tokens=TokenCost(input=0.003, output=0.004),
    ),
)

_FINISH_REASONS: dict[str, FinishReason] = {
    "stop": "stop",
    "length": "length",
    "content_filter": "content_filter",
    "tool_calls": "tool_calls",
    "function_call": "tool_calls",
}


class OpenAIProvider(BaseProvider):
    """Async wrapper for the OpenAI Chat Completions API."""

    _logger = logging.getLogger(__name__)

    @classmethod
    def default_config(cls) -> ProviderConfig:
        return ProviderConfig(
            name="openai",
            display_name="OpenAI",
            base_url=_DEFAULT_BASE_URL,
            models=list(DEFAULT_MODELS),
            temperature=_DEFAULT_TEMPERATURE,
            timeout_s=30.0,
            retry_attempts=3,
        )

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._config.api_key}",
            "Content-Type": "application/json",
        }

    async def _probe(self) -> None:
        response = await self._client.get(
            self._url(_MODELS_PATH),
            headers=self._headers(),
            timeout=self._probe_timeout(),
        )
        if response.status_code >= 400:
            raise self.error_from_response(response)

    async def _send(self, req: ChatRequest) -> ChatResponse:
        payload = self._build_payload(req, stream=False)
        response = await self._client.post(
            self._url(_CHAT_PATH),
            headers=self._headers(),
            json=payload,
            timeout=self._timeout(),
        )
        data = self._json_or_error(response)

        choices = data.get("choices", [])
        choice = choices[0] if choices else {}
        message = choice.get("message") or {}

        return ChatResponse(
            content=message.get("content") or "",
            model=data.get("model") or payload["model"],
            provider=self.name,
            usage=self._parse_usage(data.get("usage")),
            finish_reason=_FINISH_REASONS.get(choice.get("finish_reason") or ""),
            raw=data,
        )

    async def _stream(self, req: ChatRequest) -> AsyncIterator[StreamPiece]:
        payload = self._build_payload(req, stream=True)

        async with self._post_stream(_CHAT_PATH, payload) as response:
            async for line in response.aiter_lines():
                line = line.strip()

                # OpenAI streaming uses SSE. We only care about "data:" lines.
                if not line.startswith("data:"):
                    continue

                data_str = line[len("data:") :].strip()
                if data_str == "[DONE]":
                    yield StreamPiece(done=True)
                    return

                try:
                    event = json.loads(data_str)
                except json.JSONDecodeError:
                    self._logger.debug("Skipping non-JSON streaming chunk: %s", data_str)
                    continue
                if not isinstance(event, dict):
                    continue

                error = event.get("error")
                if isinstance(error, dict):
                    raise ProviderError(self.name, error.get("message") or "Stream error", code=error.get("type"))

                yield StreamPiece(
                    text=self._extract_delta_text(event),
                    model=event.get("model"),
                    usage=self._parse_usage(event.get("usage")),
                )

    def _build_payload(self, req: ChatRequest, *, stream: bool) -> dict[str, Any]:
        messages = [{"role": m.role, "content": m.content} for m in req.messages]
        if req.system_prompt:
            messages.insert(0, {"role": "system", "content": req.system_prompt})

        temperature = req.temperature
        if temperature is None:
            temperature = self._config.temperature
        if temperature is None:
            temperature = _DEFAULT_TEMPERATURE

        payload: dict[str, Any] = {
            "model": self.resolve_model_id(req),
            "messages": messages,
            "temperature": temperature,
            "stream": stream,
        }

        max_tokens = req.max_tokens or self._config.max_tokens
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        if stream:
            payload["stream_options"] = {"include_usage": True}
        return payload

    @staticmethod
    def _parse_usage(usage: Any) -> TokenUsage | None:
        if not isinstance(usage, dict):
            return None
        prompt = usage.get("prompt_tokens") or 0
        completion = usage.get("completion_tokens") or 0
        return TokenUsage(
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=usage.get("total_tokens") or prompt + completion,
        )

    @staticmethod
    def _extract_delta_text(event: dict[str, Any]) -> str:
        """Extract the standard OpenAI streaming text delta (delta.content)."""
        choices = event.get("choices") or []
        if not choices:
            return ""
        delta = choices[0].get("delta") or {}
        content = delta.get("content")
        return content if isinstance(content, str) else ""
