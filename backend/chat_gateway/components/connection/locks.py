"""
Per-user presence locks.

Presence transitions for one identity (register + user-online, remove +
user-offline) run under that identity's lock, so a reconnect cannot
announce user-online while an earlier user-offline fan-out for the same
identity is still being delivered. Different identities never contend.

A lock lives only while someone holds or waits for it; the last holder
removes it, so the map stays bounded by concurrently transitioning users.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

from shared.config.logging import get_logger

logger = get_logger(__name__)


class PresenceLockManager:
    """
    One asyncio.Lock per user ID, created on demand.

    Usage:
        locks = PresenceLockManager()
        async with locks.user_lock(user_id):
            registry.add(connection_id, user_id)
            await presence.announce_join(connection_id, user_id)
    """

    def __init__(self) -> None:
        self._user_locks: dict[str, asyncio.Lock] = {}
        # Holders plus waiters per user; the entry goes when this reaches zero
        self._pending: dict[str, int] = {}
        self._contended = 0

    @property
    def user_lock_count(self) -> int:
        """Number of user locks currently cached."""
        return len(self._user_locks)

    @property
    def contended_total(self) -> int:
        """Acquisitions that had to wait for another transition."""
        return self._contended

    def get_user_lock(self, user_id: str) -> asyncio.Lock:
        """Get or create the lock for a user."""
        lock = self._user_locks.get(user_id)
        if lock is None:
            lock = self._user_locks[user_id] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def user_lock(self, user_id: str) -> AsyncIterator[None]:
        """Hold the user's lock for the duration of the block."""
        lock = self.get_user_lock(user_id)
        self._pending[user_id] = self._pending.get(user_id, 0) + 1
        if lock.locked():
            self._contended += 1
            logger.debug("Waiting for presence transition", user_lock_count=len(self._user_locks))
        try:
            async with lock:
                yield
        finally:
            remaining = self._pending[user_id] - 1
            if remaining:
                self._pending[user_id] = remaining
            else:
                del self._pending[user_id]
                del self._user_locks[user_id]

    def get_stats(self) -> dict[str, int]:
        return {
            "user_locks": len(self._user_locks),
            "contended_total": self._contended,
        }
