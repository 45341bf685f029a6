"""Retry policies for transient failures of remote secret backends.

Remote vaults throttle clients that read too aggressively. The providers
talking to them wrap each interaction in a :class:`RetryPolicy` that retries
only the errors its :class:`RetryConfig` considers transient, waiting with an
exponential backoff between attempts. When the attempts are exhausted the
last error is re-raised unchanged so callers keep seeing the backend's own
exception type.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

R = TypeVar("R")

THROTTLED_STATUS_CODE = 429


def is_too_many_requests(error: BaseException) -> bool:
    """Check whether an error is an HTTP 429 response from a backend.

    Azure SDK errors carry ``status_code``; other HTTP errors may carry a
    ``response`` with a ``status_code``.
    """
    status_code = getattr(error, "status_code", None)
    if status_code is None:
        response = getattr(error, "response", None)
        status_code = getattr(response, "status_code", None)
    return status_code == THROTTLED_STATUS_CODE


@dataclass(frozen=True)
class RetryConfig:
    """Retry configuration.

    Attributes:
        max_attempts: Total attempts, including the first one.
        base_delay: Delay in seconds before the first retry.
        exponential_base: Multiplier applied to the delay per retry.
        max_delay: Upper bound for a single delay.
        retry_on: Predicate deciding whether an error is transient.
    """

    max_attempts: int = 3
    base_delay: float = 0.1
    exponential_base: float = 2.0
    max_delay: float = 30.0
    retry_on: Callable[[BaseException], bool] = field(default=lambda error: True)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("Requires at least one attempt")
        if self.base_delay < 0:
            raise ValueError("Requires a positive or zero base delay")
        if self.max_delay < self.base_delay:
            raise ValueError("Requires a maximum delay not smaller than the base delay")

    @classmethod
    def throttling(cls, retries: int = 5, base_delay: float = 1.0) -> "RetryConfig":
        """Retry HTTP 429 responses, doubling the delay on each retry."""
        return cls(
            max_attempts=retries + 1,
            base_delay=base_delay,
            exponential_base=2.0,
            max_delay=base_delay * (2.0 ** max(retries - 1, 0)),
            retry_on=is_too_many_requests,
        )

    def is_retryable(self, error: BaseException) -> bool:
        return bool(self.retry_on(error))


@dataclass
class ExponentialBackoff:
    """Exponential backoff strategy.

    Delay = base_delay * (multiplier ^ attempt)

    Example:
        backoff = ExponentialBackoff(base_delay=1.0, multiplier=2.0)
        # Attempt 0: 1s
        # Attempt 1: 2s
        # Attempt 2: 4s
    """

    base_delay: float = 0.1
    multiplier: float = 2.0
    max_delay: float = 30.0

    def get_delay(self, attempt: int) -> float:
        delay = self.base_delay * (self.multiplier ** attempt)
        return min(delay, self.max_delay)


class RetryPolicy:
    """Retry policy with exponential backoff.

    Example:
        policy = RetryPolicy(RetryConfig.throttling())
        secret = await policy.execute_async(client.get_secret, "my-secret")
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        async_sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._config = config or RetryConfig()
        self._backoff = ExponentialBackoff(
            base_delay=self._config.base_delay,
            multiplier=self._config.exponential_base,
            max_delay=self._config.max_delay,
        )
        self._sleep = sleep
        self._async_sleep = async_sleep

    @property
    def config(self) -> RetryConfig:
        return self._config

    def get_delay(self, attempt: int) -> float:
        """Get delay before the retry following the given attempt (0-indexed)."""
        return self._backoff.get_delay(attempt)

    def _should_retry(self, attempt: int, error: Exception) -> bool:
        if not self._config.is_retryable(error):
            return False
        return attempt < self._config.max_attempts - 1

    def execute(self, func: Callable[..., R], *args: Any, **kwargs: Any) -> R:
        """Execute a blocking function with the retry policy."""
        attempt = 0
        while True:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                if not self._should_retry(attempt, e):
                    raise

                delay = self.get_delay(attempt)
                logger.info(
                    f"Retry policy: attempt {attempt + 1} failed, "
                    f"retrying in {delay:.2f}s: {type(e).__name__}"
                )
                self._sleep(delay)
                attempt += 1

    async def execute_async(
        self, func: Callable[..., Awaitable[R]], *args: Any, **kwargs: Any
    ) -> R:
        """Execute a coroutine function with the retry policy."""
        attempt = 0
        while True:
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                if not self._should_retry(attempt, e):
                    raise

                delay = self.get_delay(attempt)
                logger.info(
                    f"Retry policy: attempt {attempt + 1} failed, "
                    f"retrying in {delay:.2f}s: {type(e).__name__}"
                )
                await self._async_sleep(delay)
                attempt += 1
