"""Bounded retry with growing delay for fallible async calls."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Literal, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_DELAY = 1.5

Backoff = Literal["linear", "exponential"]
Sleeper = Callable[[float], Awaitable[None]]


class RetryExhaustedError(Exception):
    """Raised when all retry attempts are exhausted.

    Distinguished from transient failures by `fatal = True`; callers decide
    whether that aborts the whole run or only the current unit of work.
    """

    fatal = True

    def __init__(self, message: str, *, attempts: int, last_exception: BaseException | None = None) -> None:
        super().__init__(f"fatal: {message}")
        self.attempts = attempts
        self.last_exception = last_exception


class RetryPolicy:
    """Retry an operation up to `max_retries` times after the first attempt.

    The delay before retry k (1-based) is `base_delay * k` for linear backoff
    or `base_delay * 2**(k-1)` for exponential backoff. Only exceptions in
    `retry_on` are retried; anything else propagates on the first attempt.

    The wrapped operation must be safe to repeat (reads, upserts).

    Example:
        ```python
        policy = RetryPolicy(max_retries=3, base_delay=1.5)
        page = await policy.execute(lambda: source.fetch_page(collection, cursor))
        ```
    """

    def __init__(
        self,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay: float = DEFAULT_RETRY_BASE_DELAY,
        backoff: Backoff = "linear",
        retry_on: tuple[type[BaseException], ...] = (Exception,),
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if base_delay < 0:
            raise ValueError("base_delay must be >= 0")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.backoff = backoff
        self.retry_on = retry_on
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, retry: int) -> float:
        """Delay before the given 1-based retry."""
        if self.backoff == "exponential":
            return self.base_delay * (2 ** (retry - 1))
        return self.base_delay * retry

    async def execute(self, operation: Callable[[], Awaitable[T]], *, description: str = "operation") -> T:
        last_exception: BaseException | None = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                return await operation()
            except self.retry_on as e:
                last_exception = e
                if attempt == self.max_attempts:
                    break
                delay = self.delay_for(attempt)
                logger.warning(
                    "%s failed (attempt %d/%d): %s. Retrying in %.1f seconds...",
                    description,
                    attempt,
                    self.max_attempts,
                    e,
                    delay,
                )
                await self._sleep(delay)

        raise RetryExhaustedError(
            f"{description} failed after {self.max_attempts} attempts: {last_exception}",
            attempts=self.max_attempts,
            last_exception=last_exception,
        )
