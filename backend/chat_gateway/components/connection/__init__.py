"""
Connection management components.

Handles connection lifecycle: index, heartbeat, rate limiting, cleanup.
"""

from chat_gateway.components.connection.index import (
    ClientConnection,
    ConnectionIndex,
    new_connection_id,
)
from chat_gateway.components.connection.heartbeat import HeartbeatTracker, handle_heartbeat
from chat_gateway.components.connection.rate_limiter import ConnectionRateLimiter
from chat_gateway.components.connection.cleanup import ConnectionCleanup
from chat_gateway.components.connection.locks import PresenceLockManager

__all__ = [
    "ClientConnection",
    "ConnectionIndex",
    "new_connection_id",
    "HeartbeatTracker",
    "handle_heartbeat",
    "ConnectionRateLimiter",
    "ConnectionCleanup",
    "PresenceLockManager",
]
