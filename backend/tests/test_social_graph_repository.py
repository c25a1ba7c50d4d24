"""
Tests for the SQL-backed social graph repository.

Uses an in-memory SQLite database shared across threads, since lookups run
in a worker thread.
"""

import time

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from shared.infrastructure.models import Base, Friendship, FriendshipStatus, User
from chat_gateway.components.data.social_graph import (
    SocialGraphLookupError,
    SqlSocialGraphRepository,
    TTLCache,
    UserProfile,
)


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False)

    with factory() as db:
        db.add_all([
            User(id="alice", name="Alice", email="alice@example.com", avatar="/a.png"),
            User(id="bob", name="Bob", email="bob@example.com"),
            User(id="carol", name="Carol", email="carol@example.com"),
        ])
        db.add(Friendship(requester_id="alice", recipient_id="bob", status=FriendshipStatus.ACCEPTED.value))
        db.commit()

    yield factory
    engine.dispose()


@pytest.fixture
def repo(session_factory):
    return SqlSocialGraphRepository(session_factory=session_factory, timeout=5.0, cache_ttl=60.0)


def set_status(factory, requester, recipient, status, blocked_by=None):
    with factory() as db:
        record = db.query(Friendship).filter_by(requester_id=requester, recipient_id=recipient).one_or_none()
        if record is None:
            record = Friendship(requester_id=requester, recipient_id=recipient)
            db.add(record)
        record.status = status.value
        record.blocked_by = blocked_by
        db.commit()


class TestProfiles:

    @pytest.mark.asyncio
    async def test_profile_lookup(self, repo):
        assert await repo.get_profile("alice") == UserProfile(user_id="alice", name="Alice", avatar="/a.png")

    @pytest.mark.asyncio
    async def test_unknown_user(self, repo):
        assert await repo.get_profile("nobody") is None

    @pytest.mark.asyncio
    async def test_profile_cached(self, repo):
        await repo.get_profile("bob")
        await repo.get_profile("bob")
        stats = repo.get_stats()
        assert stats["lookups"]["success"] == 1
        assert stats["cache"]["hits"] == 1

    @pytest.mark.asyncio
    async def test_negative_result_cached(self, repo):
        await repo.get_profile("nobody")
        await repo.get_profile("nobody")
        assert repo.get_stats()["lookups"]["success"] == 1

    @pytest.mark.asyncio
    async def test_cache_disabled(self, session_factory):
        repo = SqlSocialGraphRepository(session_factory=session_factory, cache_ttl=0)
        await repo.get_profile("bob")
        await repo.get_profile("bob")
        assert repo.get_stats()["lookups"]["success"] == 2


class TestFriendships:

    @pytest.mark.asyncio
    async def test_lookup_in_either_direction(self, repo):
        forward = await repo.get_friendship("alice", "bob")
        backward = await repo.get_friendship("bob", "alice")
        assert forward.is_accepted
        assert backward == forward

    @pytest.mark.asyncio
    async def test_no_friendship(self, repo):
        assert await repo.get_friendship("alice", "carol") is None

    @pytest.mark.asyncio
    async def test_block_wins_over_other_records(self, repo, session_factory):
        set_status(session_factory, "bob", "alice", FriendshipStatus.BLOCKED, blocked_by="bob")

        state = await repo.get_friendship("alice", "bob")

        assert state.is_blocked
        assert state.blocked_by == "bob"

    @pytest.mark.asyncio
    async def test_cached_state_until_invalidated(self, repo, session_factory):
        assert (await repo.get_friendship("alice", "bob")).is_accepted
        set_status(session_factory, "alice", "bob", FriendshipStatus.BLOCKED, blocked_by="alice")

        assert (await repo.get_friendship("alice", "bob")).is_accepted
        repo.invalidate_pair("bob", "alice")
        assert (await repo.get_friendship("alice", "bob")).is_blocked

    @pytest.mark.asyncio
    async def test_fresh_read_bypasses_cache(self, repo, session_factory):
        set_status(session_factory, "alice", "carol", FriendshipStatus.PENDING)
        assert not (await repo.get_friendship("alice", "carol")).is_accepted

        set_status(session_factory, "alice", "carol", FriendshipStatus.ACCEPTED)

        assert (await repo.get_friendship("carol", "alice", fresh=True)).is_accepted
        # The fresh result refreshed the cache
        assert (await repo.get_friendship("alice", "carol")).is_accepted


class TestFailures:

    @pytest.mark.asyncio
    async def test_database_error_raises_lookup_error(self):
        def broken_session():
            raise OSError("connection refused")

        repo = SqlSocialGraphRepository(session_factory=broken_session)
        with pytest.raises(SocialGraphLookupError):
            await repo.get_profile("alice")
        assert repo.get_stats()["lookups"]["errors"] == 1

    @pytest.mark.asyncio
    async def test_timeout_raises_lookup_error(self):
        def slow_session():
            time.sleep(0.2)
            raise OSError("too late")

        repo = SqlSocialGraphRepository(session_factory=slow_session, timeout=0.01)
        with pytest.raises(SocialGraphLookupError, match="timed out"):
            await repo.get_friendship("alice", "bob")
        assert repo.get_stats()["lookups"]["timeouts"] == 1


class TestTTLCache:

    def test_expired_entries_miss(self):
        cache = TTLCache(ttl_seconds=0.01)
        cache.set("k", "v")
        time.sleep(0.02)
        assert cache.get("k", "default") == "default"

    def test_size_bound_evicts_oldest(self):
        cache = TTLCache(ttl_seconds=60, max_size=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("c", 3)
        assert cache.size == 2
        assert cache.get("a") is None
        assert cache.get("c") == 3

    def test_cached_none_distinguished_from_missing(self):
        cache = TTLCache()
        missing = object()
        cache.set("k", None)
        assert cache.get("k", missing) is None
        assert cache.get("other", missing) is missing
