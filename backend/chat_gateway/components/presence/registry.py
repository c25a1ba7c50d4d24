"""
Presence Registry.

Source of truth for "who is online": a map of live connection IDs to user
identities. A user may hold any number of connections (multi-device); the
online set is the set of distinct identities across all entries.

Mutations are synchronous and never await, so under the single event loop
each add/remove runs to completion before any other handler observes the
registry.
"""

from __future__ import annotations

from collections import Counter
from types import MappingProxyType
from typing import Mapping


class PresenceRegistry:
    """
    Connection ID -> user ID map with an online-set view.

    "Is this user still online" is answered by scanning the remaining
    entries (O(n) in connection count). With ``track_reference_counts=True``
    a per-user counter is maintained on add/remove and the check is O(1),
    at the cost of one more map to keep in step.

    Usage:
        registry = PresenceRegistry()
        registry.add("c1", "u1")
        registry.add("c2", "u1")
        registry.remove("c1")   # -> "u1"
        registry.is_online("u1")  # -> True (c2 remains)
    """

    def __init__(self, track_reference_counts: bool = False) -> None:
        self._entries: dict[str, str] = {}
        self._track_counts = track_reference_counts
        self._counts: Counter[str] = Counter()

    @property
    def tracks_reference_counts(self) -> bool:
        return self._track_counts

    @property
    def entries(self) -> Mapping[str, str]:
        """Read-only view of connection ID -> user ID."""
        return MappingProxyType(self._entries)

    def add(self, connection_id: str, user_id: str) -> bool:
        """
        Record a live connection for a user.

        Idempotent per connection ID: adding the same pair again is a no-op.

        Returns:
            True if the entry was added, False if it already existed.

        Raises:
            ValueError: If the connection ID is already bound to another user.
        """
        existing = self._entries.get(connection_id)
        if existing is not None:
            if existing != user_id:
                raise ValueError(
                    f"Connection {connection_id!r} is already bound to another user"
                )
            return False

        self._entries[connection_id] = user_id
        if self._track_counts:
            self._counts[user_id] += 1
        return True

    def remove(self, connection_id: str) -> str | None:
        """
        Remove a connection.

        Unknown IDs are a no-op, so duplicate disconnect events are harmless.

        Returns:
            The user ID the connection belonged to, or None if unknown.
        """
        user_id = self._entries.pop(connection_id, None)
        if user_id is not None and self._track_counts:
            self._counts[user_id] -= 1
            if self._counts[user_id] <= 0:
                del self._counts[user_id]
        return user_id

    def online_identities(self) -> set[str]:
        """Distinct user IDs with at least one live connection."""
        if self._track_counts:
            return set(self._counts)
        return set(self._entries.values())

    def is_online(self, user_id: str) -> bool:
        """Whether any connection for the user remains."""
        if self._track_counts:
            return self._counts.get(user_id, 0) > 0
        return any(uid == user_id for uid in self._entries.values())

    def connection_count(self, user_id: str) -> int:
        """Number of live connections for the user."""
        if self._track_counts:
            return self._counts.get(user_id, 0)
        return sum(1 for uid in self._entries.values() if uid == user_id)

    def user_for(self, connection_id: str) -> str | None:
        """User ID bound to the connection, if any."""
        return self._entries.get(connection_id)

    def clear(self) -> int:
        """Drop all entries (shutdown). Returns the number removed."""
        count = len(self._entries)
        self._entries.clear()
        self._counts.clear()
        return count

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._entries

    def get_stats(self) -> dict[str, int | bool]:
        """Registry statistics."""
        return {
            "connections": len(self._entries),
            "online_users": len(self.online_identities()),
            "reference_counting": self._track_counts,
        }
