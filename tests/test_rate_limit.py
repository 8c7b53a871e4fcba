import pytest

from brandprobe.config import Settings
from brandprobe.errors import PermanentProviderError, TransientProviderError
from brandprobe.rate_limit import RateLimitPolicy, RetryController, is_retryable_error, retry_delay_ms


def no_jitter() -> float:
    return 0.5


def test_backoff_sequence_without_jitter() -> None:
    delays = [retry_delay_ms("503 Service Unavailable", attempt, rand=no_jitter) for attempt in range(5)]
    assert delays == [5000, 10000, 20000, 40000, 80000]


def test_backoff_never_exceeds_cap() -> None:
    for attempt in range(20):
        for rand in (0.0, 0.5, 0.999):
            assert retry_delay_ms("429", attempt, rand=lambda r=rand: r) <= 120_000
    assert retry_delay_ms("429", 5, rand=no_jitter) == 120_000


def test_jitter_stays_within_twenty_percent() -> None:
    assert retry_delay_ms("overloaded", 0, rand=lambda: 0.0) == 4000
    assert retry_delay_ms("overloaded", 0, rand=lambda: 1.0) == 6000


@pytest.mark.parametrize("attempt", [0, 3, 9])
def test_retry_hint_wins_over_backoff(attempt: int) -> None:
    error = TransientProviderError("google", "429 quota exceeded, please retry in 34 seconds")
    assert retry_delay_ms(error, attempt, rand=lambda: 0.9) == 34_000


def test_retryable_classification() -> None:
    assert is_retryable_error("openai API error: 429 - Too Many Requests")
    assert is_retryable_error(RuntimeError("upstream 503"))
    assert is_retryable_error("Model is OVERLOADED right now")
    assert not is_retryable_error("openai API error: 401 - invalid api key")
    assert not is_retryable_error(ValueError("bad request"))


def test_policy_defaults_and_overrides() -> None:
    settings = Settings(database_url_override="sqlite+aiosqlite://")
    google = RateLimitPolicy.for_provider("google", settings)
    assert (google.inter_call_delay_ms, google.max_retries) == (2500, 5)
    unknown = RateLimitPolicy.for_provider("somebody-else", settings)
    assert (unknown.inter_call_delay_ms, unknown.max_retries) == (1000, 3)

    tuned = Settings(
        database_url_override="sqlite+aiosqlite://",
        rate_limits={"google": {"inter_call_delay_ms": 12000, "max_retries": 2}},
    )
    assert RateLimitPolicy.for_provider("google", tuned) == RateLimitPolicy("google", 12000, 2)
    assert "12s" in RateLimitPolicy.for_provider("google", tuned).describe()


@pytest.mark.asyncio
async def test_call_retries_transient_errors_then_succeeds(test_settings, sleep) -> None:
    controller = RetryController(test_settings, sleep=sleep, rand=no_jitter)
    attempts: list[int] = []
    retries: list[tuple[int, int]] = []

    async def operation() -> str:
        attempts.append(len(attempts))
        if len(attempts) <= 2:
            raise TransientProviderError("openai", "openai API error: 503 - overloaded")
        return "ok"

    async def on_retry(attempt: int, error: BaseException, delay_ms: int) -> None:
        retries.append((attempt, delay_ms))

    result = await controller.call(controller.policy("openai"), operation, on_retry=on_retry)

    assert result == "ok"
    assert len(attempts) == 3
    assert retries == [(0, 5000), (1, 10000)]
    assert sleep.calls == [5.0, 10.0]


@pytest.mark.asyncio
async def test_call_gives_up_after_max_retries(test_settings, sleep) -> None:
    controller = RetryController(test_settings, sleep=sleep, rand=no_jitter)
    calls = 0

    async def operation() -> str:
        nonlocal calls
        calls += 1
        raise TransientProviderError("openai", "429 rate limited")

    with pytest.raises(TransientProviderError):
        await controller.call(RateLimitPolicy("openai", 1000, 2), operation)

    assert calls == 3
    assert sleep.calls == [5.0, 10.0]


@pytest.mark.asyncio
async def test_call_does_not_retry_permanent_errors(test_settings, sleep) -> None:
    controller = RetryController(test_settings, sleep=sleep, rand=no_jitter)
    calls = 0

    async def operation() -> str:
        nonlocal calls
        calls += 1
        raise PermanentProviderError("openai", "openai API error: 400 - bad request")

    with pytest.raises(PermanentProviderError):
        await controller.call(controller.policy("openai"), operation)

    assert calls == 1
    assert sleep.calls == []


@pytest.mark.asyncio
async def test_pace_applies_inter_call_delay_with_floor(test_settings, sleep) -> None:
    controller = RetryController(test_settings, sleep=sleep)

    await controller.pace(RateLimitPolicy("google", 2500, 5))
    await controller.pace(RateLimitPolicy("openai", 1000, 3), floor_ms=500)
    await controller.pace(RateLimitPolicy("fast", 0, 3), floor_ms=500)
    await controller.pace(RateLimitPolicy("fast", 0, 3))

    assert sleep.calls == [2.5, 1.0, 0.5]
