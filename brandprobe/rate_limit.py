"""Per-provider pacing and retry-with-backoff helpers."""

from __future__ import annotations

import asyncio
import random
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from .config import Settings, settings as default_settings

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]
RetryHook = Callable[[int, BaseException, int], Awaitable[None]]

_RETRYABLE_MARKERS = ("429", "503", "overloaded")
_RETRY_HINT_RE = re.compile(r"retry in (\d+)", re.IGNORECASE)


@dataclass(frozen=True)
class RateLimitPolicy:
    """Steady-state pacing and retry budget for one provider."""

    provider: str
    inter_call_delay_ms: int
    max_retries: int

    @classmethod
    def for_provider(cls, provider: str, settings: Settings | None = None) -> RateLimitPolicy:
        limits = (settings or default_settings).rate_limit_for(provider)
        return cls(provider=provider, **limits)

    def describe(self) -> str:
        return f"{self.provider}: {self.inter_call_delay_ms / 1000:g}s between calls, {self.max_retries} retries"


def is_retryable_error(error: BaseException | str) -> bool:
    """Only rate-limit / overload signals are worth another attempt."""
    message = str(error).lower()
    return any(marker in message for marker in _RETRYABLE_MARKERS)


def retry_delay_ms(
    error: BaseException | str,
    attempt: int,
    *,
    base_ms: int = 5000,
    cap_ms: int = 120_000,
    jitter_ratio: float = 0.2,
    rand: Callable[[], float] = random.random,
) -> int:
    """Delay before retrying after a failed attempt (0-based).

    An explicit "retry in N" hint from the provider wins; otherwise
    exponential backoff with +/- jitter_ratio jitter, capped at cap_ms.
    """
    match = _RETRY_HINT_RE.search(str(error))
    if match:
        return int(match.group(1)) * 1000

    exponential = base_ms * (2**attempt)
    jitter = exponential * jitter_ratio * (2 * rand() - 1)
    return min(int(exponential + jitter), cap_ms)


class RetryController:
    """Runs one provider call with bounded retries on transient failures."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        sleep: Sleep = asyncio.sleep,
        rand: Callable[[], float] = random.random,
    ) -> None:
        self.settings = settings or default_settings
        self._sleep = sleep
        self._rand = rand

    def policy(self, provider: str) -> RateLimitPolicy:
        return RateLimitPolicy.for_provider(provider, self.settings)

    def delay_for(self, error: BaseException, attempt: int) -> int:
        return retry_delay_ms(
            error,
            attempt,
            base_ms=self.settings.retry_base_delay_ms,
            cap_ms=self.settings.retry_max_delay_ms,
            jitter_ratio=self.settings.retry_jitter_ratio,
            rand=self._rand,
        )

    async def call(
        self,
        policy: RateLimitPolicy,
        operation: Callable[[], Awaitable[T]],
        *,
        on_retry: RetryHook | None = None,
    ) -> T:
        """Invoke operation, retrying transient errors up to policy.max_retries times.

        Non-retryable errors propagate immediately; once retries are
        exhausted the last error propagates.
        """
        attempt = 0
        while True:
            try:
                return await operation()
            except Exception as exc:
                if not is_retryable_error(exc) or attempt >= policy.max_retries:
                    raise
                delay = self.delay_for(exc, attempt)
                if on_retry is not None:
                    await on_retry(attempt, exc, delay)
                await self._sleep(delay / 1000)
                attempt += 1

    async def pace(self, policy: RateLimitPolicy, *, floor_ms: int = 0) -> None:
        """Mandatory gap after an attempt before the next task starts."""
        delay = max(policy.inter_call_delay_ms, floor_ms)
        if delay > 0:
            await self._sleep(delay / 1000)
