"""
Tests for block / unblock status notices over Redis pub/sub.

Redis is replaced with in-memory doubles; no server is needed.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest
import redis.exceptions

from shared.config.settings import Settings
from shared.infrastructure.events import redis_pool
from shared.infrastructure.events.backoff import Backoff
from shared.infrastructure.events.publisher import (
    build_status_update,
    publish_friend_status_update,
)
from chat_gateway.redis_subscriber import make_status_update_handler, run_subscriber


FAST_RETRY = Backoff(initial_delay=0.001, max_delay=0.001, max_attempts=2)


class FakePubSub:
    """Serves queued messages, then idles; optionally fails every read."""

    def __init__(self, messages=(), fail_with: Exception | None = None):
        self.messages = list(messages)
        self.fail_with = fail_with
        self.subscribed: list[str] = []
        self.closed = False

    async def subscribe(self, *channels):
        self.subscribed.extend(channels)

    async def unsubscribe(self, *channels):
        self.subscribed = [c for c in self.subscribed if c not in channels]

    async def get_message(self, ignore_subscribe_messages=True, timeout=1.0):
        if self.fail_with is not None:
            raise self.fail_with
        if self.messages:
            return self.messages.pop(0)
        await asyncio.sleep(0.001)
        return None

    async def aclose(self):
        self.closed = True


class FakeRedis:
    def __init__(self, *pubsubs: FakePubSub):
        self._pubsubs = list(pubsubs)
        self.created: list[FakePubSub] = []

    def pubsub(self):
        pubsub = self._pubsubs.pop(0) if len(self._pubsubs) > 1 else self._pubsubs[0]
        self.created.append(pubsub)
        return pubsub


def pubsub_message(payload, channel=b"social:status"):
    return {"type": "message", "channel": channel, "data": payload}


async def wait_for(predicate, timeout=1.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.001)


class TestBuildStatusUpdate:

    def test_payload(self):
        assert build_status_update("u2", "u1", "blocked") == {
            "type": "blocked",
            "targetUserId": "u2",
            "actorUserId": "u1",
        }

    @pytest.mark.parametrize("args", [
        ("u2", "u1", "muted"),
        ("", "u1", "blocked"),
        ("u2", "", "unblocked"),
    ])
    def test_invalid(self, args):
        with pytest.raises(ValueError):
            build_status_update(*args)


class TestPublishFriendStatusUpdate:

    @pytest.mark.asyncio
    async def test_publishes_json_payload(self):
        client = AsyncMock()
        client.publish.return_value = 1

        receivers = await publish_friend_status_update("u2", "u1", "blocked", redis_client=client, channel="chan")

        assert receivers == 1
        channel, message = client.publish.await_args.args
        assert channel == "chan"
        assert json.loads(message) == {"type": "blocked", "targetUserId": "u2", "actorUserId": "u1"}

    @pytest.mark.asyncio
    async def test_retries_transient_failure(self):
        client = AsyncMock()
        client.publish.side_effect = [redis.exceptions.ConnectionError("down"), 2]

        assert await publish_friend_status_update("u2", "u1", "unblocked", redis_client=client) == 2
        assert client.publish.await_count == 2

    @pytest.mark.asyncio
    async def test_invalid_payload_not_published(self):
        client = AsyncMock()
        with pytest.raises(ValueError):
            await publish_friend_status_update("u2", "u1", "muted", redis_client=client)
        client.publish.assert_not_awaited()


class TestStatusUpdateHandler:

    @pytest.mark.asyncio
    async def test_forwards_notice_to_target(self, manager, connect):
        _, bob_ws = await connect("bob")
        bob_ws.clear()
        handler = make_status_update_handler(manager)

        await handler(json.dumps({"type": "blocked", "targetUserId": "bob", "actorUserId": "alice"}))

        assert bob_ws.sent == [{"event": "friend-status-update", "data": {"type": "blocked", "userId": "alice"}}]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", [
        "not json",
        json.dumps({"type": "muted", "targetUserId": "bob", "actorUserId": "alice"}),
        json.dumps(["blocked"]),
    ])
    async def test_malformed_notice_ignored(self, manager, connect, raw):
        _, bob_ws = await connect("bob")
        bob_ws.clear()

        await make_status_update_handler(manager)(raw)

        assert bob_ws.sent == []


class TestRunSubscriber:

    @pytest.mark.asyncio
    async def test_delivers_messages_in_order(self):
        pubsub = FakePubSub([
            {"type": "subscribe", "channel": b"social:status", "data": 1},
            pubsub_message(b'{"n": 1}'),
            pubsub_message('{"n": 2}'),
        ])
        received: list[str] = []

        async def on_message(raw):
            received.append(raw)

        task = asyncio.create_task(run_subscriber(["social:status"], on_message, redis_client=FakeRedis(pubsub)))
        await wait_for(lambda: len(received) == 2)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert received == ['{"n": 1}', '{"n": 2}']
        assert pubsub.closed

    @pytest.mark.asyncio
    async def test_handler_error_does_not_stop_subscriber(self):
        pubsub = FakePubSub([pubsub_message("first"), pubsub_message("second")])
        received: list[str] = []

        async def on_message(raw):
            received.append(raw)
            if raw == "first":
                raise ValueError("boom")

        task = asyncio.create_task(run_subscriber(["c"], on_message, redis_client=FakeRedis(pubsub)))
        await wait_for(lambda: len(received) == 2)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    @pytest.mark.asyncio
    async def test_resubscribes_after_connection_error(self):
        broken = FakePubSub(fail_with=redis.exceptions.ConnectionError("reset"))
        healthy = FakePubSub([pubsub_message("after-reconnect")])
        client = FakeRedis(broken, healthy)
        received: list[str] = []

        async def on_message(raw):
            received.append(raw)

        task = asyncio.create_task(
            run_subscriber(["c"], on_message, redis_client=client, backoff=FAST_RETRY)
        )
        await wait_for(lambda: received == ["after-reconnect"])
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert broken.closed
        assert healthy.subscribed == []  # unsubscribed on shutdown

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        broken = FakePubSub(fail_with=redis.exceptions.ConnectionError("down"))

        with pytest.raises(RuntimeError, match="reconnection attempts"):
            await run_subscriber(["c"], AsyncMock(), redis_client=FakeRedis(broken), backoff=FAST_RETRY)


class TestBackoff:

    def test_delay_doubles_and_is_capped(self):
        backoff = Backoff(initial_delay=1.0, max_delay=8.0, jitter=0.0)
        assert [backoff.delay(a) for a in range(5)] == [1.0, 2.0, 4.0, 8.0, 8.0]

    def test_jitter_within_bounds(self):
        backoff = Backoff(initial_delay=1.0, max_delay=30.0, jitter=0.25)
        for _ in range(50):
            assert 0.75 <= backoff.delay(0) <= 1.25

    @pytest.mark.parametrize("kwargs", [
        {"initial_delay": 0},
        {"initial_delay": 2.0, "max_delay": 1.0},
        {"jitter": 1.5},
        {"max_attempts": 0},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            Backoff(**kwargs)

    def test_subscriber_schedule_from_settings(self):
        backoff = Backoff.for_subscriber(
            Settings(redis_max_reconnect_attempts=4, redis_max_reconnect_delay=12.0)
        )
        assert backoff.max_attempts == 4
        assert backoff.max_delay == 12.0

    def test_publisher_schedule_from_settings(self):
        backoff = Backoff.for_publisher(
            Settings(redis_publish_max_retries=3, redis_publish_retry_delay=0.5)
        )
        assert backoff.max_attempts == 3
        assert backoff.initial_delay == 0.5
        assert backoff.max_delay == 2.0


class TestRedisClient:

    @pytest.mark.asyncio
    async def test_created_once_and_closed(self, monkeypatch):
        monkeypatch.setattr(redis_pool, "_client", None)

        first = await redis_pool.get_redis_pool()
        assert await redis_pool.get_redis_pool() is first

        await redis_pool.close_redis_pool()
        assert redis_pool._client is None
        # Closing again is a no-op
        await redis_pool.close_redis_pool()
