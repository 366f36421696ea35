"""Provider-agnostic base interfaces and helpers."""

from __future__ import annotations

import asyncio
import logging
import math
import time
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import aclosing, asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, ClassVar, cast

import httpx

from llm_relay.config import ProviderConfig
from llm_relay.errors import AuthenticationError, NetworkError, ProviderError, RateLimitError
from llm_relay.types import (
    ChatRequest,
    ChatResponse,
    ModelInfo,
    ProviderStatus,
    StreamChunk,
    TokenUsage,
    UsageStats,
)
from llm_relay.usage import UsageTracker

STATUS_TTL_S = 300.0
_PROBE_TIMEOUT_S = 10.0
_DEFAULT_TIMEOUT_S = 30.0


@dataclass(frozen=True)
class StreamPiece:
    """One decoded backend event, handed from a provider parser to the base class."""

    text: str = ""
    model: str | None = None
    usage: TokenUsage | None = None
    done: bool = False


def estimate_tokens(text: str) -> int:
    """Rough token count: about four characters per token."""
    return math.ceil(len(text) / 4)


def _elapsed_ms(started: float) -> float:
    return (time.monotonic() - started) * 1000


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        # HTTP-date form is not worth supporting here
        return None
    if not math.isfinite(seconds) or seconds < 0:
        return None
    return seconds


class BaseProvider(ABC):
    """Abstract base class for provider implementations.

    Subclasses implement the network specifics (``_probe``, ``_send``,
    ``_stream``) and inherit status caching, usage accounting, cost estimation
    and error classification.
    """

    requires_api_key: ClassVar[bool] = True
    stream_timeout_s: ClassVar[float] = 60.0
    _logger = logging.getLogger(__name__)

    def __init__(
        self,
        config: ProviderConfig | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        **overrides: Any,
    ) -> None:
        data = self.default_config().model_dump()
        if config is not None:
            data.update(config.model_dump(exclude_unset=True))
        data.update(overrides)
        self._config = ProviderConfig.model_validate(data)
        if not self._config.name:
            raise ValueError("Provider configuration requires a name")

        self._client = client or httpx.AsyncClient()
        self._usage = UsageTracker()
        self._status: ProviderStatus | None = None
        self._status_checked_at = 0.0

    @classmethod
    def default_config(cls) -> ProviderConfig:
        """Configuration used for every field the caller leaves unset."""
        return ProviderConfig(name="")

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def display_name(self) -> str:
        return self._config.display_name or self._config.name

    @property
    def models(self) -> list[ModelInfo]:
        return list(self._config.models)

    @property
    def config(self) -> ProviderConfig:
        """A copy of the current configuration."""
        return self._config.model_copy(deep=True)

    @property
    def default_model(self) -> ModelInfo | None:
        return self._config.models[0] if self._config.models else None

    def get_model(self, model_id: str) -> ModelInfo | None:
        for model in self._config.models:
            if model.id == model_id:
                return model
        return None

    def resolve_model_id(self, request: ChatRequest) -> str:
        if request.model:
            return request.model
        default = self.default_model
        if default is None:
            raise ProviderError(self.name, "No model configured", code="NO_MODEL")
        return default.id

    # -- configuration -----------------------------------------------------

    def update_config(self, **changes: Any) -> None:
        """Merge ``changes`` into the configuration and drop the cached status."""
        if "name" in changes and changes["name"] != self._config.name:
            raise ValueError(f"Provider name '{self._config.name}' cannot be changed")
        data = self._config.model_dump()
        data.update(changes)
        self._config = ProviderConfig.model_validate(data)
        self._status = None

    def _replace_models(self, models: list[ModelInfo]) -> None:
        self._config = self._config.model_copy(update={"models": list(models)})

    async def validate_config(self) -> bool:
        """Return True when the configuration is complete and the backend answers."""
        if self.requires_api_key and not self._config.api_key:
            return False
        try:
            await self._probe()
        except Exception as exc:
            self._logger.info("%s config validation failed: %s", self.name, exc)
            return False
        return True

    # -- status --------------------------------------------------------------

    async def is_available(self) -> bool:
        try:
            status = await self.get_status()
        except Exception:
            return False
        return status.available

    async def get_status(self) -> ProviderStatus:
        """Return the cached status if it is fresh, otherwise probe the backend."""
        if self._status is not None and time.monotonic() - self._status_checked_at < STATUS_TTL_S:
            return self._status

        started = time.monotonic()
        try:
            await self._probe()
        except Exception as exc:
            self._logger.info("%s is unavailable: %s", self.name, exc)
            status = ProviderStatus(
                available=False,
                error=str(exc) or type(exc).__name__,
                last_checked=datetime.now(timezone.utc),
            )
        else:
            status = ProviderStatus(
                available=True,
                last_checked=datetime.now(timezone.utc),
                response_time_ms=_elapsed_ms(started),
            )

        self._status = status
        self._status_checked_at = time.monotonic()
        return status

    # -- requests ------------------------------------------------------------

    async def send_message(self, req: ChatRequest) -> ChatResponse:
        """Execute a chat request and record its outcome in the usage stats."""
        started = time.monotonic()
        try:
            response = await self._send(req)
        except asyncio.CancelledError:
            self._usage.record(0, 0.0, _elapsed_ms(started), is_error=True)
            raise
        except Exception as exc:
            self._usage.record(0, 0.0, _elapsed_ms(started), is_error=True)
            error = self.classify_error(exc, "send_message")
            if error is exc:
                raise
            raise error from exc

        tokens = response.usage.total_tokens if response.usage else 0
        cost = self.calculate_cost(response.usage, self.resolve_model_id(req))
        self._usage.record(tokens, cost, _elapsed_ms(started))
        return response

    async def stream_message(self, req: ChatRequest) -> AsyncIterator[StreamChunk]:
        """Yield cumulative chunks, ending with exactly one ``finished`` chunk.

        Usage is recorded once per stream: at completion, on failure, or when
        the consumer abandons the stream early (counted as an error).
        """
        started = time.monotonic()
        content = ""
        model = req.model or ""
        reported: TokenUsage | None = None
        try:
            model = self.resolve_model_id(req)
            async with aclosing(self._stream(req)) as pieces:
                async for piece in pieces:
                    if piece.model:
                        model = piece.model
                    if piece.usage is not None:
                        reported = piece.usage
                    if piece.text:
                        content += piece.text
                        yield StreamChunk(content=content, delta=piece.text, model=model)
                    if piece.done:
                        break
        except (asyncio.CancelledError, GeneratorExit):
            self._usage.record(0, 0.0, _elapsed_ms(started), is_error=True)
            raise
        except Exception as exc:
            self._usage.record(0, 0.0, _elapsed_ms(started), is_error=True)
            error = self.classify_error(exc, "stream_message")
            if error is exc:
                raise
            raise error from exc

        usage = reported or TokenUsage.from_counts(estimate_tokens(req.text()), estimate_tokens(content))
        cost = self.calculate_cost(usage, self.resolve_model_id(req))
        self._usage.record(usage.total_tokens, cost, _elapsed_ms(started))
        yield StreamChunk(content=content, delta="", finished=True, model=model)

    @abstractmethod
    async def _probe(self) -> None:
        """Cheapest call that proves the backend is reachable; raise on failure."""
        raise NotImplementedError

    @abstractmethod
    async def _send(self, req: ChatRequest) -> ChatResponse:
        raise NotImplementedError

    @abstractmethod
    def _stream(self, req: ChatRequest) -> AsyncIterator[StreamPiece]:
        """Decode the backend's event stream into pieces, ending with ``done``."""
        raise NotImplementedError

    # -- cost and usage ------------------------------------------------------

    def estimate_cost(self, req: ChatRequest) -> float:
        """Estimate the price of ``req`` before sending it."""
        model = self.get_model(req.model) if req.model else self.default_model
        if model is None or model.cost_per_1k_tokens is None:
            return 0.0

        input_tokens = estimate_tokens(req.text())
        output_tokens = req.max_tokens if req.max_tokens else model.max_tokens * 0.1
        price = model.cost_per_1k_tokens
        return (input_tokens / 1000) * price.input + (output_tokens / 1000) * price.output

    def calculate_cost(self, usage: TokenUsage | None, model_id: str) -> float:
        if usage is None:
            return 0.0
        model = self.get_model(model_id)
        if model is None or model.cost_per_1k_tokens is None:
            return 0.0
        price = model.cost_per_1k_tokens
        return (usage.prompt_tokens / 1000) * price.input + (usage.completion_tokens / 1000) * price.output

    def get_usage_stats(self) -> UsageStats:
        return self._usage.snapshot()

    def reset_usage_stats(self) -> None:
        self._usage.reset()

    # -- errors --------------------------------------------------------------

    def classify_error(self, exc: BaseException, context: str) -> ProviderError:
        """Map a raw failure onto the package error taxonomy."""
        self._logger.warning("%s error in %s: %s", self.name, context, exc)
        if isinstance(exc, ProviderError):
            return exc
        if isinstance(exc, httpx.HTTPStatusError):
            return self.error_from_response(exc.response)
        if isinstance(exc, httpx.TransportError):
            return NetworkError(self.name, exc)
        return ProviderError(self.name, str(exc) or type(exc).__name__, code="UNKNOWN_ERROR")

    def error_from_response(self, response: httpx.Response) -> ProviderError:
        if response.status_code == 401:
            return AuthenticationError(self.name)
        if response.status_code == 429:
            return RateLimitError(self.name, _parse_retry_after(response.headers.get("retry-after")))
        return ProviderError(self.name, self._error_message(response), status_code=response.status_code)

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            data = None
        if isinstance(data, dict):
            error = data.get("error")
            if isinstance(error, dict) and error.get("message"):
                return str(error["message"])
            if isinstance(error, str) and error:
                return error
        return response.text or response.reason_phrase or f"HTTP {response.status_code}"

    # -- http helpers --------------------------------------------------------

    def _url(self, path: str) -> str:
        return f"{(self._config.base_url or '').rstrip('/')}{path}"

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    def _timeout(self) -> float:
        return self._config.timeout_s or _DEFAULT_TIMEOUT_S

    def _probe_timeout(self) -> float:
        return min(self._timeout(), _PROBE_TIMEOUT_S)

    def _stream_timeout(self) -> float:
        return max(self._timeout(), self.stream_timeout_s)

    def _json_or_error(self, response: httpx.Response) -> dict[str, Any]:
        if response.status_code >= 400:
            raise self.error_from_response(response)
        return cast(dict[str, Any], response.json())

    @asynccontextmanager
    async def _post_stream(self, path: str, payload: dict[str, Any]) -> AsyncIterator[httpx.Response]:
        async with self._client.stream(
            "POST",
            self._url(path),
            headers=self._headers(),
            json=payload,
            timeout=self._stream_timeout(),
        ) as response:
            if response.status_code >= 400:
                await response.aread()
                raise self.error_from_response(response)
            yield response
