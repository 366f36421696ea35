"""Anthropic provider implementation."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

from llm_relay.config import ProviderConfig
from llm_relay.errors import ProviderError
from llm_relay.providers.base import BaseProvider, StreamPiece
from llm_relay.types import ChatRequest, ChatResponse, FinishReason, Message, ModelInfo, TokenCost, TokenUsage

_DEFAULT_BASE_URL = "https://api.anthropic.com/v1"
_MESSAGES_PATH = "/messages"
_API_VERSION = "2023-06-01"
_DEFAULT_MAX_TOKENS = 4096

DEFAULT_MODELS = (
    ModelInfo(
        id="claude-3-opus-20240229",
        name="Claude 3 Opus",
        context_window=200000,
        max_tokens=4096,
        supports_images=True,
        cost_per_1k_tokens=TokenCost(input=0.015, output=0.075),
    ),
    ModelInfo(
        id="claude-3-sonnet-20240229",
        name="Claude 3 Sonnet",
        context_window=200000,
        max_tokens=4096,
        supports_images=True,
        cost_per_1k_tokens=TokenCost(input=0.003, output=0.015),
    ),
    ModelInfo(
        id="claude-3-haiku-20240307",
        name="Claude 3 Haiku",
        context_window=200000,
        max_tokens=4096,
        supports_images=True,
        cost_per_1k_tokens=TokenCost(input=0.00025, output=0.00125),
    ),
    ModelInfo(
        id="claude-2.1",
        name="Claude 2.1",
        context_window=200000,
        max_tokens=4096,
        cost_per_1k_tokens=TokenCost(input=0.008, output=0.024),
    ),
)

_STOP_REASONS: dict[str, FinishReason] = {
    "end_turn": "stop",
    "stop_sequence": "stop",
    "max_tokens": "length",
    "tool_use": "tool_calls",
}


class AnthropicProvider(BaseProvider):
    """Async wrapper for the Anthropic Messages API."""

    _logger = logging.getLogger(__name__)

    @classmethod
    def default_config(cls) -> ProviderConfig:
        return ProviderConfig(
            name="anthropic",
            display_name="Anthropic",
            base_url=_DEFAULT_BASE_URL,
            models=list(DEFAULT_MODELS),
            temperature=0.7,
            timeout_s=30.0,
            retry_attempts=3,
        )

    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self._config.api_key,
            "anthropic-version": _API_VERSION,
            "content-type": "application/json",
        }

    async def _probe(self) -> None:
        # No health endpoint; a one-token request is enough. 400 still proves
        # the key was accepted.
        default = self.default_model
        payload = {
            "model": default.id if default else "",
            "max_tokens": 1,
            "messages": [{"role": "user", "content": "Hi"}],
        }
        response = await self._client.post(
            self._url(_MESSAGES_PATH),
            headers=self._headers(),
            json=payload,
            timeout=self._probe_timeout(),
        )
        if response.status_code > 400:
            raise self.error_from_response(response)

    async def _send(self, req: ChatRequest) -> ChatResponse:
        payload = self._build_payload(req, stream=False)
        response = await self._client.post(
            self._url(_MESSAGES_PATH),
            headers=self._headers(),
            json=payload,
            timeout=self._timeout(),
        )
        data = self._json_or_error(response)

        return ChatResponse(
            content=self._extract_text(data),
            model=data.get("model") or payload["model"],
            provider=self.name,
            usage=self._parse_usage(data.get("usage")),
            finish_reason=_STOP_REASONS.get(data.get("stop_reason") or ""),
            raw=data,
        )

    async def _stream(self, req: ChatRequest) -> AsyncIterator[StreamPiece]:
        payload = self._build_payload(req, stream=True)
        input_tokens = 0
        output_tokens: int | None = None

        async with self._post_stream(_MESSAGES_PATH, payload) as response:
            async for line in response.aiter_lines():
                line = line.strip()

                # Typed SSE: the "event:" line repeats the JSON "type" field.
                if not line.startswith("data:"):
                    continue

                try:
                    event = json.loads(line[len("data:") :].strip())
                except json.JSONDecodeError:
                    self._logger.debug("Skipping non-JSON streaming chunk: %s", line)
                    continue
                if not isinstance(event, dict):
                    continue

                kind = event.get("type")
                if kind == "message_start":
                    message = event.get("message") or {}
                    usage = message.get("usage") or {}
                    input_tokens = usage.get("input_tokens") or 0
                    yield StreamPiece(model=message.get("model"))
                elif kind == "content_block_delta":
                    delta = event.get("delta") or {}
                    text = delta.get("text")
                    if isinstance(text, str):
                        yield StreamPiece(text=text)
                elif kind == "message_delta":
                    usage = event.get("usage") or {}
                    if "output_tokens" in usage:
                        output_tokens = usage["output_tokens"]
                elif kind == "message_stop":
                    reported = None
                    if output_tokens is not None:
                        reported = TokenUsage.from_counts(input_tokens, output_tokens)
                    yield StreamPiece(usage=reported, done=True)
                    return
                elif kind == "error":
                    error = event.get("error") or {}
                    raise ProviderError(self.name, error.get("message") or "Stream error", code=error.get("type"))

    def _build_payload(self, req: ChatRequest, *, stream: bool) -> dict[str, Any]:
        system_text, msgs = self._split_system(req)

        payload: dict[str, Any] = {
            "model": self.resolve_model_id(req),
            "messages": [{"role": m.role, "content": m.content} for m in msgs],
            "max_tokens": req.max_tokens or self._config.max_tokens or _DEFAULT_MAX_TOKENS,
            "stream": stream,
        }

        if system_text:
            payload["system"] = system_text

        temperature = req.temperature if req.temperature is not None else self._config.temperature
        if temperature is not None:
            payload["temperature"] = temperature
        return payload

    @staticmethod
    def _split_system(req: ChatRequest) -> tuple[str, list[Message]]:
        """Pull every system instruction into the top-level ``system`` field."""
        system_parts: list[str] = [req.system_prompt] if req.system_prompt else []
        rest: list[Message] = []
        for m in req.messages:
            if m.role == "system":
                if m.content:
                    system_parts.append(m.content)
            else:
                rest.append(m)
        return ("\n\n".join(system_parts), rest)

    @staticmethod
    def _parse_usage(usage: Any) -> TokenUsage | None:
        if not isinstance(usage, dict):
            return None
        return TokenUsage.from_counts(usage.get("input_tokens") or 0, usage.get("output_tokens") or 0)

    @staticmethod
    def _extract_text(data: dict[str, Any]) -> str:
        blocks = data.get("content") or []
        parts: list[str] = []
        for b in blocks:
            if b.get("type") == "text":
                parts.append(b.get("text", ""))
        return "".join(parts)
