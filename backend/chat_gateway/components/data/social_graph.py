"""
Social Graph Gateway.

Read-only access to the persisted social graph: public user profiles and
friendship state between two users. The router talks to the Protocol; the
SQL repository is the production implementation.

Lookups run in a worker thread with a timeout so a slow database never
blocks the event loop. Failures surface as SocialGraphLookupError and only
ever cost the one delivery that needed the lookup.
"""

from __future__ import annotations

import asyncio
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Hashable, Protocol, TYPE_CHECKING

from sqlalchemy import or_, and_, select

from shared.config.logging import get_logger, mask_user_id
from shared.infrastructure.models import Friendship, FriendshipStatus, User
from chat_gateway.components.core.constants import WSConstants

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = get_logger(__name__)


# =============================================================================
# Domain types
# =============================================================================


@dataclass(frozen=True, slots=True)
class UserProfile:
    """Public profile fields attached to relayed messages."""

    user_id: str
    name: str
    avatar: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return {"id": self.user_id, "name": self.name, "avatar": self.avatar}


@dataclass(frozen=True, slots=True)
class FriendshipState:
    """Friendship record between two users, in either direction."""

    requester_id: str
    recipient_id: str
    status: FriendshipStatus
    blocked_by: str | None = None

    @property
    def is_blocked(self) -> bool:
        return self.status == FriendshipStatus.BLOCKED

    @property
    def is_accepted(self) -> bool:
        return self.status == FriendshipStatus.ACCEPTED


class SocialGraphLookupError(Exception):
    """A profile or friendship lookup failed (database error or timeout)."""


class SocialGraphGateway(Protocol):
    """Read interface the router depends on."""

    async def get_profile(self, user_id: str) -> UserProfile | None:
        """Profile for a user, or None if the user does not exist."""
        ...

    async def get_friendship(
        self, user_a: str, user_b: str, fresh: bool = False
    ) -> FriendshipState | None:
        """
        Friendship between two users (either direction), or None.

        ``fresh`` bypasses any cache (used where a just-written state matters).
        """
        ...


# =============================================================================
# Cache Implementation
# =============================================================================


@dataclass
class CacheEntry:
    """Single cache entry with value and expiration time."""

    value: Any
    expires_at: float
    created_at: float = field(default_factory=time.time)

    def is_expired(self, now: float | None = None) -> bool:
        return (now if now is not None else time.time()) > self.expires_at


_MISSING = object()


class TTLCache:
    """
    Time-based cache with a size bound.

    Negative results (unknown user, no friendship) are cached too, so the
    cache distinguishes "not cached" from "cached None" via a default.

    Usage:
        cache = TTLCache(ttl_seconds=60.0)
        cache.set(("profile", "u1"), profile)
        cache.get(("profile", "u1"))
    """

    def __init__(
        self,
        ttl_seconds: float = 60.0,
        max_size: int = 1000,
        cleanup_threshold: float = 0.8,
    ) -> None:
        self._ttl = ttl_seconds
        self._max_size = max_size
        self._cleanup_threshold = cleanup_threshold
        self._entries: dict[Hashable, CacheEntry] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def hit_ratio(self) -> float:
        total = self._hits + self._misses
        return self._hits / total if total > 0 else 0.0

    def get(self, key: Hashable, default: Any = None) -> Any:
        """Cached value, or ``default`` if absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return default
            if entry.is_expired():
                del self._entries[key]
                self._misses += 1
                return default
            self._hits += 1
            return entry.value

    def set(self, key: Hashable, value: Any) -> None:
        with self._lock:
            if len(self._entries) >= self._max_size * self._cleanup_threshold:
                self._cleanup_expired()
            if len(self._entries) >= self._max_size:
                self._evict_oldest()
            self._entries[key] = CacheEntry(value=value, expires_at=time.time() + self._ttl)

    def invalidate(self, key: Hashable) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    def _cleanup_expired(self) -> int:
        """Remove expired entries (must hold lock)."""
        now = time.time()
        expired = [k for k, v in self._entries.items() if v.expires_at < now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def _evict_oldest(self) -> None:
        """Evict oldest entry (must hold lock)."""
        if not self._entries:
            return
        oldest = min(self._entries, key=lambda k: self._entries[k].created_at)
        del self._entries[oldest]

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "size": len(self._entries),
                "max_size": self._max_size,
                "ttl_seconds": self._ttl,
                "hits": self._hits,
                "misses": self._misses,
                "hit_ratio": round(self.hit_ratio, 3),
            }


def _pair_key(user_a: str, user_b: str) -> tuple[str, str, str]:
    first, second = sorted((user_a, user_b))
    return ("pair", first, second)


# =============================================================================
# SQL repository
# =============================================================================


class SqlSocialGraphRepository:
    """
    SocialGraphGateway backed by SQLAlchemy.

    Usage:
        repo = SqlSocialGraphRepository(timeout=2.0, cache_ttl=60.0)
        profile = await repo.get_profile("u1")
        state = await repo.get_friendship("u1", "u2")
        repo.invalidate_pair("u1", "u2")  # after a block/unblock
    """

    def __init__(
        self,
        session_factory: Callable[[], "Session"] | None = None,
        timeout: float = WSConstants.PROFILE_LOOKUP_TIMEOUT,
        cache_ttl: float = 60.0,
        cache_max_size: int = 5000,
    ):
        """
        Args:
            session_factory: Callable returning a new Session (default: shared engine).
            timeout: Seconds before a lookup is abandoned.
            cache_ttl: Cache entry time-to-live; 0 disables caching.
            cache_max_size: Maximum cache entries.
        """
        self._session_factory = session_factory
        self._timeout = timeout
        self._cache_enabled = cache_ttl > 0
        self._cache = TTLCache(ttl_seconds=cache_ttl, max_size=cache_max_size)
        self._lookup_success = 0
        self._lookup_timeouts = 0
        self._lookup_errors = 0

    @property
    def cache(self) -> TTLCache:
        return self._cache

    def _new_session(self) -> "Session":
        if self._session_factory is None:
            from shared.infrastructure.db import get_session_factory
            self._session_factory = get_session_factory()
        return self._session_factory()

    async def _run(self, fn: Callable[..., Any], *args: Any, what: str) -> Any:
        try:
            result = await asyncio.wait_for(
                asyncio.to_thread(fn, *args),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as e:
            self._lookup_timeouts += 1
            logger.error(
                "Social graph lookup timed out",
                lookup=what,
                timeout=self._timeout,
                total_timeouts=self._lookup_timeouts,
            )
            raise SocialGraphLookupError(f"{what} lookup timed out") from e
        except Exception as e:
            self._lookup_errors += 1
            logger.error(
                "Social graph lookup failed",
                lookup=what,
                error=str(e),
                total_errors=self._lookup_errors,
            )
            raise SocialGraphLookupError(f"{what} lookup failed") from e

        self._lookup_success += 1
        return result

    async def get_profile(self, user_id: str) -> UserProfile | None:
        key = ("profile", user_id)
        if self._cache_enabled:
            cached = self._cache.get(key, _MISSING)
            if cached is not _MISSING:
                return cached

        profile = await self._run(self._get_profile_sync, user_id, what="profile")
        if self._cache_enabled:
            self._cache.set(key, profile)
        return profile

    async def get_friendship(
        self, user_a: str, user_b: str, fresh: bool = False
    ) -> FriendshipState | None:
        key = _pair_key(user_a, user_b)
        if self._cache_enabled and not fresh:
            cached = self._cache.get(key, _MISSING)
            if cached is not _MISSING:
                return cached

        state = await self._run(self._get_friendship_sync, user_a, user_b, what="friendship")
        if self._cache_enabled:
            self._cache.set(key, state)
        return state

    def invalidate_pair(self, user_a: str, user_b: str) -> None:
        """Drop the cached friendship for a pair (after block/unblock)."""
        self._cache.invalidate(_pair_key(user_a, user_b))
        logger.debug(
            "Friendship cache invalidated",
            user_a=mask_user_id(user_a),
            user_b=mask_user_id(user_b),
        )

    def invalidate_profile(self, user_id: str) -> None:
        self._cache.invalidate(("profile", user_id))

    def _get_profile_sync(self, user_id: str) -> UserProfile | None:
        with self._new_session() as db:
            row = db.execute(
                select(User.id, User.name, User.avatar).where(User.id == user_id)
            ).first()
        if row is None:
            return None
        return UserProfile(user_id=row.id, name=row.name, avatar=row.avatar)

    def _get_friendship_sync(self, user_a: str, user_b: str) -> FriendshipState | None:
        with self._new_session() as db:
            records = db.execute(
                select(Friendship).where(
                    or_(
                        and_(Friendship.requester_id == user_a, Friendship.recipient_id == user_b),
                        and_(Friendship.requester_id == user_b, Friendship.recipient_id == user_a),
                    )
                )
            ).scalars().all()
            states = [
                FriendshipState(
                    requester_id=r.requester_id,
                    recipient_id=r.recipient_id,
                    status=FriendshipStatus(r.status),
                    blocked_by=r.blocked_by,
                )
                for r in records
            ]
        if not states:
            return None
        # A block in either direction wins over any other record for the pair
        for state in states:
            if state.is_blocked:
                return state
        return states[0]

    def clear_cache(self) -> int:
        count = self._cache.clear()
        logger.info("Social graph cache cleared", entries_cleared=count)
        return count

    def get_stats(self) -> dict[str, Any]:
        total = self._lookup_success + self._lookup_timeouts + self._lookup_errors
        return {
            "timeout": self._timeout,
            "cache": self._cache.get_stats(),
            "lookups": {
                "success": self._lookup_success,
                "timeouts": self._lookup_timeouts,
                "errors": self._lookup_errors,
                "total": total,
            },
        }
