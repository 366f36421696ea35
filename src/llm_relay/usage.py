"""Running usage statistics for a single provider."""

from __future__ import annotations

from llm_relay.types import UsageStats


class UsageTracker:
    """Accumulates request outcomes.

    Errors are counted explicitly and the error rate is derived on read, so
    long runs do not drift. ``record`` never awaits, which keeps each update
    atomic on a single event loop.
    """

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self._requests = 0
        self._errors = 0
        self._tokens = 0
        self._cost = 0.0
        self._avg_response_ms = 0.0

    def record(
        self,
        tokens: int,
        cost: float,
        response_time_ms: float,
        *,
        is_error: bool = False,
    ) -> None:
        previous = self._requests
        self._requests = previous + 1
        self._tokens += max(tokens, 0)
        self._cost += max(cost, 0.0)
        self._avg_response_ms = (self._avg_response_ms * previous + response_time_ms) / self._requests
        if is_error:
            self._errors += 1

    def snapshot(self) -> UsageStats:
        return UsageStats(
            total_requests=self._requests,
            total_errors=self._errors,
            total_tokens=self._tokens,
            total_cost=self._cost,
            average_response_time_ms=self._avg_response_ms,
            error_rate=self._errors / self._requests if self._requests else 0.0,
        )
