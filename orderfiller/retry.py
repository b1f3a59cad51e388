"""Retry policy applied around single-attempt coroutines."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

from .exceptions import FillError

T = TypeVar("T")

LINEAR = "linear"
EXPONENTIAL = "exponential"


def is_retryable_error(error: BaseException) -> bool:
    return isinstance(error, FillError) and error.retryable


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 3.0
    backoff: str = LINEAR
    is_retryable: Callable[[BaseException], bool] = is_retryable_error
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)
    logger: Optional[logging.Logger] = field(default=None, repr=False)

    def __post_init__(self):
        self.max_attempts = max(1, int(self.max_attempts))
        self.base_delay = max(0.0, float(self.base_delay))
        if self.backoff not in (LINEAR, EXPONENTIAL):
            raise ValueError(f"Unknown backoff mode: {self.backoff}")

    def delay_for(self, attempt: int) -> float:
        """Delay after the ``attempt``-th failure (1-based)."""
        if self.backoff == EXPONENTIAL:
            return self.base_delay * (2 ** (attempt - 1))
        return self.base_delay * attempt

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        return attempt < self.max_attempts and self.is_retryable(error)

    async def run(
        self,
        fn: Callable[[int], Awaitable[T]],
        on_failure: Optional[Callable[[BaseException, int], None]] = None,
    ) -> T:
        """Call ``fn(attempt)`` until it succeeds or the budget is spent.

        Non-retryable errors propagate at once; after the last attempt the
        last error propagates.
        """
        logger = self.logger or logging.getLogger(__name__)
        attempt = 0
        while True:
            attempt += 1
            try:
                return await fn(attempt)
            except Exception as e:
                if on_failure is not None:
                    on_failure(e, attempt)
                if not self.should_retry(e, attempt):
                    raise
                delay = self.delay_for(attempt)
                logger.info(f"Attempt {attempt}/{self.max_attempts} failed: {e}; retrying in {delay:.1f}s")
                await self.sleep(delay)
