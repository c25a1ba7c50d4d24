"""
Presence Broadcaster.

Turns presence transitions into notifications:
- a joining connection gets the full online set privately
- everyone else gets the delta (user-online / user-offline)

The full online set is never re-broadcast to every connection.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from shared.config.logging import get_logger, mask_user_id
from chat_gateway.components.events.types import OutboundEventType, outbound

if TYPE_CHECKING:
    from chat_gateway.components.broadcast.delivery import ConnectionBroadcaster
    from chat_gateway.components.presence.registry import PresenceRegistry
    from chat_gateway.components.presence.rooms import RoomMembership

logger = get_logger(__name__)


class PresenceBroadcaster:
    """
    Presence notifications over a ConnectionBroadcaster.

    Usage:
        presence = PresenceBroadcaster(registry, rooms, delivery)
        await presence.announce_join(connection_id, user_id)
        ...
        if not registry.is_online(user_id):
            await presence.announce_leave(user_id)
    """

    def __init__(
        self,
        registry: "PresenceRegistry",
        rooms: "RoomMembership",
        delivery: "ConnectionBroadcaster",
    ) -> None:
        self._registry = registry
        self._rooms = rooms
        self._delivery = delivery

    def online_snapshot(self) -> list[str]:
        """De-duplicated online identities, sorted for stable output."""
        return sorted(self._registry.online_identities())

    async def send_snapshot(self, connection_id: str) -> bool:
        """Send the online set to one connection."""
        frame = outbound(OutboundEventType.ONLINE_USERS, self.online_snapshot())
        return await self._delivery.send_to_connection(connection_id, frame)

    async def announce_join(self, connection_id: str, user_id: str) -> int:
        """
        Snapshot to the joining connection, then user-online to everyone.

        The snapshot is computed once, after the registry already holds the
        new connection, so it includes the joiner.

        Returns:
            Number of connections that received the user-online delta.
        """
        await self.send_snapshot(connection_id)
        sent = await self._delivery.broadcast(
            outbound(OutboundEventType.USER_ONLINE, user_id)
        )
        logger.debug("Announced user online", user_id=mask_user_id(user_id), recipients=sent)
        return sent

    async def announce_leave(self, user_id: str) -> int:
        """
        Broadcast user-offline.

        Callers invoke this only after the user's last connection is gone.
        """
        sent = await self._delivery.broadcast(
            outbound(OutboundEventType.USER_OFFLINE, user_id)
        )
        logger.debug("Announced user offline", user_id=mask_user_id(user_id), recipients=sent)
        return sent

    async def refresh_rooms(self, *user_ids: str) -> int:
        """Send the current online set to every connection in each named room."""
        frame = outbound(OutboundEventType.ONLINE_USERS, self.online_snapshot())
        sent = 0
        for user_id in dict.fromkeys(user_ids):
            members = self._rooms.members(user_id)
            if members:
                sent += await self._delivery.send_to_connections(
                    members, frame, f"room:{user_id}"
                )
        return sent
