from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..errors import FailureCategory

if TYPE_CHECKING:
    from ..config import RetryConfig


def compute_backoff(
    attempt: int,
    base: float = 1.0,
    multiplier: float = 2.0,
    max_delay: float = 30.0,
    jitter: float = 0.5,
) -> float:
    """Compute capped exponential backoff with jitter for ``attempt`` (1-based)."""
    delay = min(max_delay, base * multiplier ** max(0, attempt - 1))
    return delay + random.uniform(0, jitter)


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget and delay schedule for retryable failures."""

    max_attempts: int = 4
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0
    jitter: float = 0.5
    unknown_policy: str = "retry_once"

    @classmethod
    def from_config(cls, config: "RetryConfig") -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            base_delay=config.base_delay,
            multiplier=config.multiplier,
            max_delay=config.max_delay,
            jitter=config.jitter,
            unknown_policy=config.unknown_policy,
        )

    def attempt_limit(self, category: FailureCategory) -> int:
        if category is FailureCategory.UNKNOWN:
            if self.unknown_policy == "fatal":
                return 1
            if self.unknown_policy == "retry_once":
                return min(2, self.max_attempts)
        return self.max_attempts

    def delay_for(self, attempt: int) -> float:
        return compute_backoff(
            attempt,
            base=self.base_delay,
            multiplier=self.multiplier,
            max_delay=self.max_delay,
            jitter=self.jitter,
        )


async def schedule_retry(delay: float) -> None:
    """Sleep for the remaining backoff delay before retrying."""
    if delay > 0:
        await asyncio.sleep(delay)
