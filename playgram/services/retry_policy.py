"""
Retry policies.

Synchronous webhook delivery waits a fixed delay between attempts; queued
jobs back off exponentially. Both answer the same question: how long to wait
after a given attempt fails.
"""
from dataclasses import dataclass
from typing import Protocol


class RetryPolicy(Protocol):
    def next_delay(self, attempt: int) -> float:
        """Seconds to wait after `attempt` (1-based) fails."""
        ...


@dataclass(frozen=True)
class FixedDelay:
    delay_seconds: float

    def next_delay(self, attempt: int) -> float:
        return self.delay_seconds


@dataclass(frozen=True)
class ExponentialBackoff:
    """base * factor ** (attempt - 1), optionally capped."""
    base_seconds: float
    factor: float = 2.0
    max_seconds: float | None = None

    def next_delay(self, attempt: int) -> float:
        delay = self.base_seconds * self.factor ** (max(attempt, 1) - 1)
        if self.max_seconds is not None:
            delay = min(delay, self.max_seconds)
        return delay
