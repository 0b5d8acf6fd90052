from __future__ import annotations

from dataclasses import dataclass
import time
from typing import Callable

from searchpulse.providers.errors import ProviderRateLimitError


@dataclass
class _TokenBucketState:
    capacity: int
    refill_rate_per_second: float
    tokens: float
    last_refill_at: float


class TokenBucket:
    """Call budget for one client instance (30 calls per minute by default)."""

    def __init__(self, state: _TokenBucketState, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.state = state
        self._clock = clock

    @classmethod
    def per_minute(cls, calls_per_minute: int, *, clock: Callable[[], float] = time.monotonic) -> "TokenBucket":
        if calls_per_minute <= 0:
            raise ValueError("calls_per_minute must be greater than zero")
        state = _TokenBucketState(
            capacity=calls_per_minute,
            refill_rate_per_second=calls_per_minute / 60.0,
            tokens=float(calls_per_minute),
            last_refill_at=clock(),
        )
        return cls(state, clock=clock)

    def refill(self, *, now: float) -> None:
        if now <= self.state.last_refill_at:
            return
        elapsed = now - self.state.last_refill_at
        self.state.tokens = min(float(self.state.capacity), self.state.tokens + elapsed * self.state.refill_rate_per_second)
        self.state.last_refill_at = now

    def try_consume(self, *, amount: float = 1.0) -> bool:
        if amount <= 0:
            raise ValueError("amount must be greater than zero")
        self.refill(now=self._clock())
        if self.state.tokens < amount:
            return False
        self.state.tokens -= amount
        return True

    def acquire(self) -> None:
        if not self.try_consume():
            raise ProviderRateLimitError("Local search analytics call budget exhausted.")
