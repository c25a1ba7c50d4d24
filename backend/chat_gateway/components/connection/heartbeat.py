"""
Heartbeat Tracker for the Chat Gateway.

Tracks last activity time for each connection and identifies stale
connections that have stopped sending anything (frames or pings).
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from shared.config.logging import get_logger
from chat_gateway.components.core.constants import MSG_PING_PLAIN, MSG_PING_JSON, MSG_PONG_JSON

if TYPE_CHECKING:
    from fastapi import WebSocket

logger = get_logger(__name__)


class HeartbeatTracker:
    """
    Tracks heartbeat timestamps keyed by connection ID.

    Activity is recorded when:
    - The connection is registered
    - Any frame is received (including heartbeats)

    Connections without recent activity are considered stale and are
    reaped by the cleanup loop.
    """

    def __init__(self, timeout_seconds: float = 60.0):
        """
        Args:
            timeout_seconds: Seconds without activity before a connection is stale.
        """
        self._timeout = timeout_seconds
        self._last_seen: dict[str, float] = {}

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def tracked_count(self) -> int:
        return len(self._last_seen)

    def record(self, connection_id: str, timestamp: float | None = None) -> None:
        """
        Record activity from a connection.

        Args:
            connection_id: Connection to record.
            timestamp: Unix timestamp; defaults to now.
        """
        self._last_seen[connection_id] = timestamp if timestamp is not None else time.time()

    def remove(self, connection_id: str) -> None:
        """Stop tracking a connection."""
        self._last_seen.pop(connection_id, None)

    def get_last_activity(self, connection_id: str) -> float | None:
        return self._last_seen.get(connection_id)

    def is_stale(self, connection_id: str, now: float | None = None) -> bool:
        """Unknown connections are considered stale."""
        last = self._last_seen.get(connection_id)
        if last is None:
            return True
        now = now if now is not None else time.time()
        return now - last > self._timeout

    def get_stale_connections(self, now: float | None = None) -> list[str]:
        """Connection IDs with no activity within the timeout."""
        now = now if now is not None else time.time()
        return [
            conn_id
            for conn_id, last in list(self._last_seen.items())
            if now - last > self._timeout
        ]

    def get_stats(self) -> dict[str, float | int]:
        now = time.time()
        ages = [now - t for t in self._last_seen.values()]
        return {
            "tracked_connections": len(ages),
            "timeout_seconds": self._timeout,
            "oldest_heartbeat_age": max(ages) if ages else 0,
            "average_heartbeat_age": sum(ages) / len(ages) if ages else 0,
        }


async def handle_heartbeat(ws: "WebSocket", data: str) -> bool:
    """
    Respond to ping frames with pong.

    Supports both plain text and JSON formatted pings.

    Returns:
        True if the frame was a heartbeat and was handled, False otherwise.
    """
    if data == MSG_PING_PLAIN or data == MSG_PING_JSON:
        try:
            await ws.send_text(MSG_PONG_JSON)
        except (ConnectionError, RuntimeError, OSError) as e:
            # Connection may have closed; the message loop handles cleanup
            logger.debug("Heartbeat response not delivered", error=type(e).__name__)
        return True
    return False
