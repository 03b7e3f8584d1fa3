import httpx
import pytest

from reviewbot.config.settings import Settings
from reviewbot.v1.core.exceptions import NonRetryableError, TenantConfigurationError
from reviewbot.v1.infra.jobs.backoff import (
    RetryPolicy,
    compute_backoff_delay,
    is_retryable_error,
    with_retry,
)


def _status_error(code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://api.github.com/repos/acme/widgets")
    response = httpx.Response(code, request=request)
    return httpx.HTTPStatusError(f"HTTP {code}", request=request, response=response)


def test_backoff_delays_double_until_capped():
    """Delays follow initial * 2^(n-1) and stop growing at the cap."""
    delays = [
        compute_backoff_delay(n, initial_delay_ms=1000, max_delay_ms=10000)
        for n in range(1, 7)
    ]
    assert delays == [1000, 2000, 4000, 8000, 10000, 10000]


def test_backoff_never_exceeds_cap_for_large_attempts():
    assert compute_backoff_delay(60, initial_delay_ms=1000, max_delay_ms=10000) == 10000


def test_backoff_rejects_attempt_below_one():
    with pytest.raises(ValueError, match="attempt must be >= 1"):
        compute_backoff_delay(0)


def test_backoff_jitter_stays_within_bounds():
    for _ in range(50):
        delay = compute_backoff_delay(
            3, initial_delay_ms=1000, max_delay_ms=10000, jitter=0.25
        )
        assert 3000 <= delay <= 5000

    for _ in range(50):
        delay = compute_backoff_delay(
            10, initial_delay_ms=1000, max_delay_ms=10000, jitter=0.25
        )
        assert delay <= 10000


def test_retry_policy_from_settings():
    settings = Settings(
        retry_max_attempts=5, retry_initial_delay_ms=200, retry_max_delay_ms=800
    )
    policy = RetryPolicy.from_settings(settings)

    assert policy.max_attempts == 5
    assert [policy.delay_ms(n) for n in range(1, 5)] == [200, 400, 800, 800]


@pytest.mark.parametrize(
    "error",
    [
        RuntimeError("Rate limit exceeded"),
        RuntimeError("request timed out"),
        RuntimeError("ECONNRESET while reading"),
        RuntimeError("socket hang up"),
        RuntimeError("upstream returned 503"),
        TimeoutError(),
        ConnectionResetError("connection reset by peer"),
        httpx.ConnectError("connection refused"),
    ],
)
def test_transient_errors_are_retryable(error):
    assert is_retryable_error(error) is True


@pytest.mark.parametrize(
    "error",
    [
        ValueError("invalid diff"),
        KeyError("summary"),
        RuntimeError("Bad credentials"),
    ],
)
def test_other_errors_are_not_retryable(error):
    assert is_retryable_error(error) is False


def test_http_status_classification():
    assert is_retryable_error(_status_error(429)) is True
    assert is_retryable_error(_status_error(500)) is True
    assert is_retryable_error(_status_error(502)) is True
    assert is_retryable_error(_status_error(404)) is False
    assert is_retryable_error(_status_error(422)) is False


def test_non_retryable_error_wins_over_message():
    """An explicitly permanent error is never retried, whatever it says."""
    assert is_retryable_error(NonRetryableError("timeout talking to vault")) is False
    assert (
        is_retryable_error(TenantConfigurationError("No API key configured", 5))
        is False
    )


class _Flaky:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.mark.asyncio
async def test_with_retry_recovers_from_transient_failures():
    sleeps: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    fn = _Flaky(TimeoutError(), RuntimeError("503 Service Unavailable"), "diff")
    policy = RetryPolicy(max_attempts=3, initial_delay_ms=1000, max_delay_ms=10000)

    result = await with_retry(fn, policy=policy, sleep=fake_sleep)

    assert result == "diff"
    assert fn.calls == 3
    assert sleeps == [1.0, 2.0]


@pytest.mark.asyncio
async def test_with_retry_raises_last_error_when_exhausted():
    sleeps: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    fn = _Flaky(TimeoutError(), TimeoutError(), ConnectionError("still down"))
    policy = RetryPolicy(max_attempts=3, initial_delay_ms=100)

    with pytest.raises(ConnectionError, match="still down"):
        await with_retry(fn, policy=policy, sleep=fake_sleep)

    assert fn.calls == 3
    assert len(sleeps) == 2


@pytest.mark.asyncio
async def test_with_retry_does_not_retry_permanent_errors():
    async def fake_sleep(seconds: float) -> None:
        raise AssertionError("should not sleep")

    fn = _Flaky(ValueError("malformed response"), "unused")

    with pytest.raises(ValueError, match="malformed response"):
        await with_retry(fn, policy=RetryPolicy(max_attempts=5), sleep=fake_sleep)

    assert fn.calls == 1


@pytest.mark.asyncio
async def test_with_retry_custom_classifier():
    async def fake_sleep(seconds: float) -> None:
        pass

    fn = _Flaky(ValueError("try again"), "ok")

    result = await with_retry(
        fn,
        policy=RetryPolicy(max_attempts=2, initial_delay_ms=0),
        should_retry=lambda e: isinstance(e, ValueError),
        sleep=fake_sleep,
    )

    assert result == "ok"
    assert fn.calls == 2
