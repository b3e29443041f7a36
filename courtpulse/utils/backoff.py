"""Exponential backoff for upstream retries."""

from dataclasses import dataclass
from typing import Optional


@dataclass
class ExponentialBackoff:
    """
    Doubling delay with a ceiling.

    delay(n) = min(base * 2**(n - 1), cap) for the n-th consecutive failure.
    """
    base_seconds: float
    cap_seconds: float
    failures: int = 0

    def next_delay(self, retry_after: Optional[float] = None) -> float:
        """Record a failure and return how long to wait before retrying."""
        self.failures += 1
        delay = min(self.base_seconds * 2 ** (self.failures - 1), self.cap_seconds)
        if retry_after is not None:
            # Upstream told us when to come back
            delay = max(delay, retry_after)
        return delay

    def reset(self) -> None:
        self.failures = 0
