"""
Room Membership.

A room is named after a user identity and holds every connection
authenticated as that identity. Rooms are the addressing unit for directed
delivery. A connection can only ever join its own identity's room.
"""

from __future__ import annotations


class RoomAuthorizationError(Exception):
    """Raised when a connection asks to join a room other than its own."""

    def __init__(self, connection_id: str, claimed_user_id: str) -> None:
        super().__init__("Not authorized to join this room")
        self.connection_id = connection_id
        self.claimed_user_id = claimed_user_id


class RoomMembership:
    """
    Room name -> set of connection IDs, plus the reverse mapping.

    Rooms appear on first join and are dropped as soon as they are empty;
    there is no explicit create/destroy.

    Usage:
        rooms = RoomMembership()
        rooms.join("c1", claimed_user_id="u1", authenticated_user_id="u1")
        rooms.members("u1")  # -> frozenset({"c1"})
        rooms.join("c1", "u2", "u1")  # raises RoomAuthorizationError
    """

    def __init__(self) -> None:
        self._rooms: dict[str, set[str]] = {}
        self._by_connection: dict[str, set[str]] = {}

    def join(
        self,
        connection_id: str,
        claimed_user_id: str,
        authenticated_user_id: str,
    ) -> bool:
        """
        Subscribe a connection to its identity's room.

        Returns:
            True if the membership is new, False if already a member.

        Raises:
            RoomAuthorizationError: If claimed_user_id != authenticated_user_id.
                Membership is left unchanged.
        """
        if not authenticated_user_id or claimed_user_id != authenticated_user_id:
            raise RoomAuthorizationError(connection_id, claimed_user_id)

        members = self._rooms.setdefault(authenticated_user_id, set())
        if connection_id in members:
            return False

        members.add(connection_id)
        self._by_connection.setdefault(connection_id, set()).add(authenticated_user_id)
        return True

    def leave_all(self, connection_id: str) -> list[str]:
        """
        Remove a connection from every room it belongs to.

        Returns:
            Names of the rooms it left (empty for unknown connections).
        """
        rooms = self._by_connection.pop(connection_id, set())
        for room in rooms:
            members = self._rooms.get(room)
            if members is None:
                continue
            members.discard(connection_id)
            if not members:
                del self._rooms[room]
        return sorted(rooms)

    def members(self, room: str) -> frozenset[str]:
        """Snapshot of the connections in a room (empty if the room does not exist)."""
        return frozenset(self._rooms.get(room, ()))

    def rooms_for(self, connection_id: str) -> frozenset[str]:
        """Rooms a connection belongs to."""
        return frozenset(self._by_connection.get(connection_id, ()))

    def is_member(self, connection_id: str, room: str) -> bool:
        return connection_id in self._rooms.get(room, ())

    @property
    def room_count(self) -> int:
        return len(self._rooms)

    def clear(self) -> None:
        self._rooms.clear()
        self._by_connection.clear()

    def get_stats(self) -> dict[str, int]:
        """Membership statistics."""
        return {
            "rooms": len(self._rooms),
            "memberships": sum(len(m) for m in self._rooms.values()),
        }
