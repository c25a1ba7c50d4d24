"""
Connection Rate Limiter.

Per-connection rate limiting using a sliding window over message
timestamps. Prevents a single client from flooding the relay.
"""

from __future__ import annotations

import asyncio
import time

from shared.config.logging import get_logger
from chat_gateway.components.core.constants import WSConstants

logger = get_logger(__name__)


class ConnectionRateLimiter:
    """
    Sliding window limiter keyed by connection ID.

    - Each connection has a list of message timestamps
    - Timestamps outside the window are discarded on every check
    - If the remaining count reaches the limit, the message is rejected

    Memory is bounded by max_tracked; at capacity the connections with the
    oldest activity are evicted.
    """

    def __init__(
        self,
        max_messages: int,
        window_seconds: float,
        max_tracked: int = WSConstants.MAX_TRACKED_CONNECTIONS,
    ):
        self._max_messages = max_messages
        self._window_seconds = window_seconds
        self._max_tracked = max_tracked

        self._counters: dict[str, list[float]] = {}
        self._lock = asyncio.Lock()
        self._overflow_warning_logged = False

        self._total_allowed = 0
        self._total_rejected = 0
        self._evictions = 0

    @property
    def max_messages(self) -> int:
        return self._max_messages

    @property
    def window_seconds(self) -> float:
        return self._window_seconds

    @property
    def tracked_count(self) -> int:
        return len(self._counters)

    async def is_allowed(self, connection_id: str, now: float | None = None) -> bool:
        """
        Check (and record) one message from this connection.

        Returns:
            True if the message is allowed, False if rate limited.
        """
        now = now if now is not None else time.time()
        window_start = now - self._window_seconds

        async with self._lock:
            if connection_id not in self._counters and len(self._counters) >= self._max_tracked:
                self._evict_oldest()

            timestamps = [t for t in self._counters.get(connection_id, []) if t > window_start]
            if len(timestamps) >= self._max_messages:
                self._counters[connection_id] = timestamps
                self._total_rejected += 1
                return False

            timestamps.append(now)
            self._counters[connection_id] = timestamps
            self._total_allowed += 1
            return True

    def _evict_oldest(self) -> None:
        """Evict a tenth of the tracked connections, least recently active first."""
        if not self._overflow_warning_logged:
            logger.warning(
                "Rate limiter at capacity, evicting oldest entries",
                max_tracked=self._max_tracked,
            )
            self._overflow_warning_logged = True

        to_remove = max(1, self._max_tracked // 10)
        by_age = sorted(
            self._counters.items(),
            key=lambda item: item[1][-1] if item[1] else 0,
        )
        for connection_id, _ in by_age[:to_remove]:
            del self._counters[connection_id]
            self._evictions += 1

    async def remove_connection(self, connection_id: str) -> None:
        async with self._lock:
            self._counters.pop(connection_id, None)

    async def cleanup_stale(self, now: float | None = None) -> int:
        """
        Drop entries with no timestamps inside the window.

        Returns:
            Number of entries removed.
        """
        now = now if now is not None else time.time()
        window_start = now - self._window_seconds

        async with self._lock:
            stale = [
                conn_id
                for conn_id, timestamps in self._counters.items()
                if not any(t > window_start for t in timestamps)
            ]
            for conn_id in stale:
                del self._counters[conn_id]

            if len(self._counters) < self._max_tracked * 0.9:
                self._overflow_warning_logged = False

        return len(stale)

    def get_stats(self) -> dict[str, int | float]:
        return {
            "tracked_connections": len(self._counters),
            "max_tracked": self._max_tracked,
            "max_messages_per_window": self._max_messages,
            "window_seconds": self._window_seconds,
            "total_allowed": self._total_allowed,
            "total_rejected": self._total_rejected,
            "evictions": self._evictions,
        }
