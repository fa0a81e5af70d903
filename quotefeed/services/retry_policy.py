from __future__ import annotations

import random
import time
from typing import Callable, TypeVar

from pydantic import BaseModel, Field

from quotefeed.errors import RETRYABLE_ERRORS

T = TypeVar("T")


class RetryPolicy(BaseModel):
    max_attempts: int = Field(default=4, ge=1)
    base_delay_sec: float = Field(default=0.5, ge=0)
    multiplier: float = Field(default=2.0, ge=1)
    jitter_sec: float = Field(default=0.2, ge=0)

    def delay_for(self, attempt: int, *, rand_fn: Callable[[], float] = random.random) -> float:
        """Delay to wait after the given failed attempt (1-based)."""
        backoff = self.base_delay_sec * (self.multiplier ** (attempt - 1))
        return backoff + rand_fn() * self.jitter_sec


def call_with_retry(
    fn: Callable[[], T],
    *,
    policy: RetryPolicy,
    retry_on: tuple[type[BaseException], ...] = RETRYABLE_ERRORS,
    sleep_fn: Callable[[float], None] = time.sleep,
    rand_fn: Callable[[], float] = random.random,
    on_retry: Callable[[int, BaseException, float], None] | None = None,
) -> T:
    """Call ``fn`` until it succeeds or ``policy.max_attempts`` is spent.

    Only exceptions listed in ``retry_on`` are retried; anything else
    propagates immediately. The last retryable error is re-raised once the
    attempts run out, and there is no sleep after the final attempt.
    """
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return fn()
        except retry_on as exc:
            if attempt == policy.max_attempts:
                raise
            delay = policy.delay_for(attempt, rand_fn=rand_fn)
            if on_retry is not None:
                on_retry(attempt, exc, delay)
            sleep_fn(delay)

    raise AssertionError("unreachable")  # pragma: no cover
