"""
Backoff policy and failure classification for calls to external systems.

This is the inner retry layer: it retries a single external call in place,
within one execution attempt, and never touches the job's attempt counter.
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

import httpx
from pydantic import BaseModel, Field

from reviewbot.config.logging import get_logger
from reviewbot.config.settings import Settings
from reviewbot.v1.core.exceptions import NonRetryableError

logger = get_logger(__name__)

T = TypeVar("T")

RETRYABLE_PATTERNS: tuple[str, ...] = (
    "rate limit",
    "timeout",
    "timed out",
    "econnreset",
    "econnrefused",
    "connection reset",
    "connection refused",
    "connection error",
    "socket hang up",
    "502",
    "503",
    "504",
    "429",
)


class RetryPolicy(BaseModel):
    """Inner retry settings for one external call."""

    max_attempts: int = Field(default=3, ge=1)
    initial_delay_ms: int = Field(default=1000, ge=0)
    max_delay_ms: int = Field(default=10000, ge=0)
    base: float = Field(default=2.0, ge=1.0)
    jitter: float = Field(default=0.0, ge=0.0, le=1.0)

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.retry_max_attempts,
            initial_delay_ms=settings.retry_initial_delay_ms,
            max_delay_ms=settings.retry_max_delay_ms,
            base=settings.retry_backoff_base,
        )

    def delay_ms(self, attempt: int) -> float:
        return compute_backoff_delay(
            attempt,
            initial_delay_ms=self.initial_delay_ms,
            max_delay_ms=self.max_delay_ms,
            base=self.base,
            jitter=self.jitter,
        )


def compute_backoff_delay(
    attempt: int,
    initial_delay_ms: float = 1000,
    max_delay_ms: float = 10000,
    base: float = 2.0,
    jitter: float = 0.0,
) -> float:
    """
    Delay in milliseconds before retrying after the given attempt (1-indexed).

    Exponential backoff: initial * base^(attempt - 1), capped at max_delay_ms.
    A non-zero jitter adds up to +/- that fraction of random variation and
    never lets the result exceed the cap.
    """
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got: {attempt}")

    delay = min(max_delay_ms, initial_delay_ms * (base ** (attempt - 1)))

    if jitter:
        delay = delay + delay * jitter * (2 * random.random() - 1)
        delay = min(max_delay_ms, max(0.0, delay))

    return delay


def is_retryable_error(error: BaseException) -> bool:
    """Classify a failure as transient (worth another call) or permanent."""
    if isinstance(error, NonRetryableError):
        return False

    if isinstance(error, httpx.HTTPStatusError):
        code = error.response.status_code
        return code == 429 or code >= 500

    if isinstance(
        error,
        (httpx.TransportError, asyncio.TimeoutError, TimeoutError, ConnectionError),
    ):
        return True

    message = str(error).lower()
    return any(pattern in message for pattern in RETRYABLE_PATTERNS)


def is_retryable_unsent_error(error: BaseException) -> bool:
    """
    Narrower classifier for calls that must not be repeated once received.

    Only rate limiting and failures that happen before the request reaches
    the server qualify. A 5xx or a read timeout may follow an accepted write.
    """
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code == 429

    return isinstance(error, (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout))


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    should_retry: Callable[[BaseException], bool] = is_retryable_error,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    operation: str | None = None,
) -> T:
    """
    Await fn(), retrying transient failures with exponential backoff.

    The last error is re-raised once the policy's attempts are exhausted or
    the error is classified as permanent.
    """
    policy = policy or RetryPolicy()

    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await fn()
        except Exception as e:
            if attempt == policy.max_attempts or not should_retry(e):
                raise

            delay_ms = policy.delay_ms(attempt)
            logger.warning(
                "External call failed, retrying",
                operation=operation,
                attempt=attempt,
                max_attempts=policy.max_attempts,
                delay_ms=delay_ms,
                error=str(e),
            )
            await sleep(delay_ms / 1000)

    # range() is never empty because max_attempts >= 1
    raise AssertionError("unreachable")
