"""
Backoff for the status-event channel.

Both sides of the channel retry with the same shape: the delay doubles per
attempt up to a cap, then a random spread is applied so gateways that lost
Redis together do not come back in lockstep.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from shared.config.settings import Settings


@dataclass(frozen=True, slots=True)
class Backoff:
    """
    Doubling delay with a cap and a +-``jitter`` spread.

    Attributes:
        initial_delay: Delay before the first retry, in seconds.
        max_delay: Cap applied before the spread.
        jitter: Spread as a fraction of the capped delay (0.25 = +-25%).
        max_attempts: Attempts allowed before the caller gives up.
    """

    initial_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.25
    max_attempts: int = 10

    def __post_init__(self) -> None:
        if self.initial_delay <= 0:
            raise ValueError("initial_delay must be positive")
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must be >= initial_delay")
        if not 0 <= self.jitter <= 1:
            raise ValueError("jitter must be between 0 and 1")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    def delay(self, attempt: int) -> float:
        """Seconds to wait after the 0-indexed ``attempt`` failed."""
        capped = min(self.initial_delay * 2 ** attempt, self.max_delay)
        spread = capped * self.jitter
        return max(0.0, capped + random.uniform(-spread, spread))

    @classmethod
    def for_subscriber(cls, settings: "Settings") -> "Backoff":
        """Reconnect schedule for the gateway's status subscriber."""
        return cls(
            initial_delay=1.0,
            max_delay=max(1.0, settings.redis_max_reconnect_delay),
            max_attempts=settings.redis_max_reconnect_attempts,
        )

    @classmethod
    def for_publisher(cls, settings: "Settings") -> "Backoff":
        """Republish schedule for status notices."""
        attempts = max(1, settings.redis_publish_max_retries)
        return cls(
            initial_delay=settings.redis_publish_retry_delay,
            max_delay=settings.redis_publish_retry_delay * 2 ** (attempts - 1),
            max_attempts=attempts,
        )
