"""Ollama provider: local model host, no API key, no cost."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

from llm_relay.config import ProviderConfig
from llm_relay.errors import ProviderError
from llm_relay.providers.base import BaseProvider, StreamPiece
from llm_relay.types import ChatRequest, ChatResponse, FinishReason, ModelInfo, PullProgress, TokenUsage

_DEFAULT_BASE_URL = "http://localhost:11434"
_CHAT_PATH = "/api/chat"
_TAGS_PATH = "/api/tags"
_PULL_PATH = "/api/pull"

DEFAULT_MODELS = (
    ModelInfo(id="llama2", name="Llama 2", context_window=4096, max_tokens=2048),
    ModelInfo(id="codellama", name="Code Llama", context_window=16384, max_tokens=4096),
    ModelInfo(id="mistral", name="Mistral", context_window=8192, max_tokens=4096),
    ModelInfo(id="neural-chat", name="Neural Chat", context_window=8192, max_tokens=4096),
    ModelInfo(id="starling-lm", name="Starling LM", context_window=8192, max_tokens=4096),
)

_DONE_REASONS: dict[str, FinishReason] = {"stop": "stop", "length": "length"}


class OllamaProvider(BaseProvider):
    """Backend for a local Ollama instance using its native chat API."""

    requires_api_key = False
    stream_timeout_s = 120.0
    _logger = logging.getLogger(__name__)

    @classmethod
    def default_config(cls) -> ProviderConfig:
        return ProviderConfig(
            name="ollama",
            display_name="Ollama (Local)",
            base_url=_DEFAULT_BASE_URL,
            models=list(DEFAULT_MODELS),
            temperature=0.7,
            # Local models can be slow to load
            timeout_s=60.0,
            retry_attempts=2,
        )

    def calculate_cost(self, usage: TokenUsage | None, model_id: str) -> float:
        return 0.0

    async def _probe(self) -> None:
        entries = await self._fetch_tags(self._probe_timeout())
        self._apply_installed(entries)

    async def _send(self, req: ChatRequest) -> ChatResponse:
        payload = self._build_payload(req, stream=False)
        response = await self._client.post(self._url(_CHAT_PATH), json=payload, timeout=self._timeout())
        data = self._json_or_error(response)

        message = data.get("message") or {}
        finish_reason = _DONE_REASONS.get(data.get("done_reason") or "")
        if finish_reason is None and data.get("done"):
            finish_reason = "stop"

        return ChatResponse(
            content=message.get("content") or "",
            model=data.get("model") or payload["model"],
            provider=self.name,
            usage=self._parse_usage(data),
            finish_reason=finish_reason,
            raw=data,
        )

    async def _stream(self, req: ChatRequest) -> AsyncIterator[StreamPiece]:
        payload = self._build_payload(req, stream=True)

        async with self._post_stream(_CHAT_PATH, payload) as response:
            # Newline-delimited JSON, one object per line.
            async for line in response.aiter_lines():
                event = self._decode_line(line)
                if event is None:
                    continue
                if event.get("error"):
                    raise ProviderError(self.name, str(event["error"]))

                message = event.get("message") or {}
                text = message.get("content")
                yield StreamPiece(text=text if isinstance(text, str) else "", model=event.get("model"))

                if event.get("done"):
                    yield StreamPiece(usage=self._parse_usage(event), done=True)
                    return

    def _build_payload(self, req: ChatRequest, *, stream: bool) -> dict[str, Any]:
        messages = [{"role": m.role, "content": m.content} for m in req.messages]
        if req.system_prompt:
            messages.insert(0, {"role": "system", "content": req.system_prompt})

        options: dict[str, Any] = {}
        temperature = req.temperature if req.temperature is not None else self._config.temperature
        if temperature is not None:
            options["temperature"] = temperature
        if req.max_tokens:
            options["num_predict"] = req.max_tokens

        return {
            "model": self.resolve_model_id(req),
            "messages": messages,
            "stream": stream,
            "options": options,
        }

    # -- local model management ---------------------------------------------

    async def list_installed_models(self) -> list[str]:
        """Names of the models currently installed on the host, or ``[]`` if it can't be reached."""
        try:
            entries = await self._fetch_tags(self._timeout())
        except (ProviderError, ValueError) as exc:
            self._logger.warning("Could not list models on %s: %s", self.name, exc)
            return []
        return [name for name in (e.get("name") for e in entries) if name]

    async def refresh_models(self) -> list[ModelInfo]:
        """Replace the model catalog with what the host actually has installed."""
        entries = await self._fetch_tags(self._timeout())
        self._apply_installed(entries)
        return self.models

    async def pull_model(self, name: str) -> AsyncIterator[PullProgress]:
        """Download ``name`` onto the host, yielding progress until it succeeds."""
        completed = False
        try:
            async with self._post_stream(_PULL_PATH, {"model": name, "stream": True}) as response:
                async for line in response.aiter_lines():
                    event = self._decode_line(line)
                    if event is None:
                        continue
                    if event.get("error"):
                        raise ProviderError(self.name, str(event["error"]), code="PULL_FAILED")

                    progress = PullProgress(
                        status=str(event.get("status") or ""),
                        digest=event.get("digest"),
                        total=event.get("total"),
                        completed=event.get("completed"),
                    )
                    yield progress
                    if progress.done:
                        completed = True
                        break
        except httpx.HTTPError as exc:
            raise self.classify_error(exc, "pull_model") from exc

        if not completed:
            raise ProviderError(self.name, f"Pull of '{name}' ended before completion", code="PULL_INCOMPLETE")
        self._logger.info("Pulled model '%s' on %s", name, self.name)
        await self.refresh_models()

    async def _fetch_tags(self, timeout: float) -> list[dict[str, Any]]:
        try:
            response = await self._client.get(self._url(_TAGS_PATH), timeout=timeout)
        except httpx.HTTPError as exc:
            raise self.classify_error(exc, "fetch_tags") from exc
        data = self._json_or_error(response)
        models = data.get("models")
        if not isinstance(models, list):
            return []
        return [m for m in models if isinstance(m, dict)]

    def _apply_installed(self, entries: list[dict[str, Any]]) -> None:
        known = {m.id: m for m in self._config.models}
        known.update({m.id: m for m in DEFAULT_MODELS if m.id not in known})

        models: list[ModelInfo] = []
        for entry in entries:
            name = entry.get("name")
            if not name:
                continue
            existing = known.get(name) or known.get(name.split(":", 1)[0])
            if existing is not None:
                models.append(existing.model_copy(update={"id": name}))
            else:
                models.append(ModelInfo(id=name, name=name, context_window=4096, max_tokens=2048))
        self._replace_models(models)

    def _decode_line(self, line: str) -> dict[str, Any] | None:
        line = line.strip()
        if not line:
            return None
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            self._logger.debug("Skipping non-JSON line: %s", line)
            return None
        return event if isinstance(event, dict) else None

    @staticmethod
    def _parse_usage(data: dict[str, Any]) -> TokenUsage | None:
        prompt = data.get("prompt_eval_count")
        completion = data.get("eval_count")
        if not prompt and not completion:
            return None
        return TokenUsage.from_counts(prompt or 0, completion or 0)
