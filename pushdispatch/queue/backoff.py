"""
Retry policy: exponential backoff with jitter, bounded by the message TTL.
"""

import random
from dataclasses import dataclass, field

from pushdispatch.config import RetryConfig

# keeps base * 2**n finite for any attempt number
MAX_EXPONENT = 62


@dataclass
class RetryPolicy:
    max_attempts: int = 5
    base_delay: float = 1.0
    max_delay: float = 60.0
    jitter: float = 0.2  # fraction of the delay that may be shaved off
    rng: random.Random = field(default_factory=random.Random, repr=False)

    @classmethod
    def from_config(cls, config: RetryConfig, rng: random.Random | None = None) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            base_delay=config.base_delay_seconds,
            max_delay=config.max_delay_seconds,
            jitter=config.jitter,
            rng=rng or random.Random(),
        )

    def backoff(self, attempt: int) -> float:
        """
        Delay before the attempt following ``attempt`` (1-based).

        min(max_delay, base * 2**(attempt-1)) scaled into [1 - jitter, 1].
        """
        exponent = min(max(attempt - 1, 0), MAX_EXPONENT)
        raw = min(self.max_delay, self.base_delay * (2 ** exponent))
        return raw * (1.0 - self.jitter * self.rng.random())

    def next_delay(
        self,
        attempt: int,
        remaining_ttl: float,
        retry_after: float | None = None,
    ) -> float | None:
        """
        Delay before the next attempt, or None when no retry should happen.

        None means the attempt budget is spent or the next attempt would not
        start before the TTL runs out.
        """
        if attempt >= self.max_attempts:
            return None
        delay = self.backoff(attempt)
        if retry_after is not None:
            delay = max(delay, retry_after)
        if delay >= remaining_ttl:
            return None
        return delay


__all__ = ["RetryPolicy"]
