"""
Connection Cleanup Management.

Reaps connections that went quiet (no heartbeat within the timeout) or
failed a send. Both kinds are closed and run through the normal,
idempotent disconnect path so presence stays consistent.
"""

from __future__ import annotations

import time
from typing import Awaitable, Callable, TYPE_CHECKING

from shared.config.logging import get_logger
from chat_gateway.components.core.constants import WSCloseCode, WSConstants

if TYPE_CHECKING:
    from chat_gateway.components.connection.heartbeat import HeartbeatTracker
    from chat_gateway.components.connection.index import ConnectionIndex
    from chat_gateway.components.metrics.collector import MetricsCollector

logger = get_logger(__name__)


class ConnectionCleanup:
    """
    Tracks dead connections and reaps stale ones.

    Dead connection tracking:
    - Dict of connection ID -> mark time, for FIFO eviction
    - Size limited; at capacity the oldest mark is evicted
    """

    def __init__(
        self,
        index: "ConnectionIndex",
        heartbeat_tracker: "HeartbeatTracker",
        metrics: "MetricsCollector",
        disconnect_callback: Callable[[str, str], Awaitable[bool]],
        max_dead_connections: int = WSConstants.MAX_DEAD_CONNECTIONS,
    ) -> None:
        """
        Args:
            index: Connection ID -> ClientConnection lookup (for closing sockets).
            heartbeat_tracker: Source of staleness.
            metrics: Collects reap counts.
            disconnect_callback: ``(connection_id, reason) -> bool`` disconnect.
            max_dead_connections: Maximum dead connections tracked.
        """
        self._index = index
        self._heartbeat_tracker = heartbeat_tracker
        self._metrics = metrics
        self._disconnect = disconnect_callback
        self._max_dead_connections = max_dead_connections
        self._dead_connections: dict[str, float] = {}

    @property
    def dead_connections_count(self) -> int:
        return len(self._dead_connections)

    def mark_dead_connection(self, connection_id: str) -> None:
        """Mark a connection whose send failed. Synchronous, safe from any handler."""
        if connection_id in self._dead_connections:
            return

        if len(self._dead_connections) >= self._max_dead_connections:
            oldest = min(self._dead_connections, key=self._dead_connections.__getitem__)
            del self._dead_connections[oldest]
            logger.warning(
                "Dead connections at capacity, evicting oldest",
                max_size=self._max_dead_connections,
            )

        self._dead_connections[connection_id] = time.time()

    async def _close_quietly(self, connection_id: str, code: int, reason: str) -> None:
        connection = self._index.get(connection_id)
        if connection is None:
            return
        try:
            await connection.websocket.close(code=code, reason=reason)
        except Exception as e:
            logger.debug("Close failed during cleanup", connection_id=connection_id, error=str(e))

    async def cleanup_dead_connections(self) -> int:
        """
        Disconnect connections marked dead during sends.

        Returns:
            Number of connections cleaned up.
        """
        if not self._dead_connections:
            return 0
        dead = list(self._dead_connections)
        self._dead_connections.clear()

        cleaned = 0
        for connection_id in dead:
            await self._close_quietly(connection_id, WSCloseCode.GOING_AWAY, "Send failed")
            if await self._disconnect(connection_id, "send_failed"):
                cleaned += 1
        return cleaned

    async def cleanup_stale_connections(self, now: float | None = None) -> int:
        """
        Close and disconnect connections with no heartbeat within the timeout.

        Returns:
            Number of connections cleaned up.
        """
        stale = self._heartbeat_tracker.get_stale_connections(now)
        cleaned = 0
        for connection_id in stale:
            await self._close_quietly(connection_id, WSCloseCode.NORMAL, "Heartbeat timeout")
            if await self._disconnect(connection_id, "heartbeat_timeout"):
                cleaned += 1
            else:
                # Tracked but never registered (or already gone)
                self._heartbeat_tracker.remove(connection_id)

        if cleaned:
            self._metrics.add_stale_reaped_sync(cleaned)
        return cleaned

    def forget(self, connection_id: str) -> None:
        self._dead_connections.pop(connection_id, None)
