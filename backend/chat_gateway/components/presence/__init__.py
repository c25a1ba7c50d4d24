"""
Presence components: who is online, and which connections are in which room.
"""

from chat_gateway.components.presence.registry import PresenceRegistry
from chat_gateway.components.presence.rooms import RoomAuthorizationError, RoomMembership

__all__ = [
    "PresenceRegistry",
    "RoomAuthorizationError",
    "RoomMembership",
]
