"""
Broadcast components: per-connection delivery and presence announcements.
"""

from chat_gateway.components.broadcast.delivery import ConnectionBroadcaster, is_ws_connected
from chat_gateway.components.broadcast.presence import PresenceBroadcaster

__all__ = [
    "ConnectionBroadcaster",
    "is_ws_connected",
    "PresenceBroadcaster",
]
