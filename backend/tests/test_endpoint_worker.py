"""
Tests for the endpoint's per-connection worker.

Frames from one connection are handled one at a time in arrival order, and
a close while a handler is still running leaves presence consistent.
"""

import asyncio
import json

import pytest
from fastapi import WebSocketDisconnect

from shared.config.settings import Settings
from chat_gateway.connection_manager import ConnectionManager
from chat_gateway.components.auth.strategies import BearerTokenAuthStrategy
from chat_gateway.components.core.constants import MSG_PONG_JSON
from chat_gateway.components.endpoints.handlers import ChatEndpoint
from tests.conftest import FakeSocialGraph, FakeWebSocket, token_for


class ScriptedWebSocket(FakeWebSocket):
    """FakeWebSocket whose inbound frames are pushed by the test."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.accepted = False
        self._inbox: asyncio.Queue[str | None] = asyncio.Queue()

    async def accept(self) -> None:
        self.accepted = True

    def push(self, frame: str) -> None:
        self._inbox.put_nowait(frame)

    def hang_up(self) -> None:
        self._inbox.put_nowait(None)

    async def receive_text(self) -> str:
        frame = await self._inbox.get()
        if frame is None:
            raise WebSocketDisconnect(code=1000)
        return frame


class SlowProfileGraph(FakeSocialGraph):
    """Profile lookups take ``delay`` seconds and record how many overlap."""

    def __init__(self, delay: float = 0.02):
        super().__init__()
        self.delay = delay
        self.active = 0
        self.max_active = 0
        self.entered = asyncio.Event()

    async def get_profile(self, user_id):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        self.entered.set()
        try:
            await asyncio.sleep(self.delay)
            return await super().get_profile(user_id)
        finally:
            self.active -= 1


def make_manager(graph):
    return ConnectionManager(
        graph,
        rate_limit=100,
        auth_strategy=BearerTokenAuthStrategy(claim_names=["id"], secret=""),
    )


def open_session(manager, user_id):
    """Run a ChatEndpoint for ``user_id`` in a task; return (socket, task)."""
    ws = ScriptedWebSocket()
    endpoint = ChatEndpoint(ws, manager, token_for(user_id), Settings(social_events_enabled=False))
    return ws, asyncio.create_task(endpoint.run())


def message(receiver, text):
    return json.dumps({"event": "send-message", "data": {"receiverId": receiver, "message": text}})


async def wait_until(predicate, timeout=1.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.001)


async def wait_for_online(observer, user_id):
    """Wait until the observer saw user_id come online."""
    await wait_until(lambda: {"event": "user-online", "data": user_id} in observer.sent)


class TestPerConnectionOrdering:

    @pytest.mark.asyncio
    async def test_frames_handled_in_order_without_overlap(self):
        graph = SlowProfileGraph()
        manager = make_manager(graph)
        bob_ws = FakeWebSocket()
        await manager.connect(bob_ws, "bob")

        alice_ws, session = open_session(manager, "alice")
        await wait_for_online(bob_ws, "alice")
        bob_ws.clear()

        alice_ws.push(message("bob", "first"))
        alice_ws.push(message("bob", "second"))
        await wait_until(lambda: len(bob_ws.events("receive-message")) == 2)

        assert [f["data"]["message"] for f in bob_ws.events("receive-message")] == ["first", "second"]
        # The second lookup started only after the first finished
        assert graph.max_active == 1

        alice_ws.hang_up()
        await asyncio.wait_for(session, timeout=1)
        assert alice_ws.accepted

    @pytest.mark.asyncio
    async def test_other_connections_not_blocked_by_slow_handler(self):
        graph = SlowProfileGraph(delay=10)
        manager = make_manager(graph)
        carol_ws = FakeWebSocket()
        await manager.connect(carol_ws, "carol")

        alice_ws, alice_session = open_session(manager, "alice")
        bob_ws, bob_session = open_session(manager, "bob")
        await wait_for_online(carol_ws, "alice")
        await wait_for_online(carol_ws, "bob")

        alice_ws.push(message("carol", "slow"))
        await asyncio.wait_for(graph.entered.wait(), timeout=1)

        bob_ws.clear()
        bob_ws.push("ping")
        await wait_until(lambda: MSG_PONG_JSON in bob_ws.sent)
        assert graph.active == 1

        alice_ws.hang_up()
        bob_ws.hang_up()
        await asyncio.wait_for(asyncio.gather(alice_session, bob_session), timeout=2)


class TestCloseDuringHandler:

    @pytest.mark.asyncio
    async def test_disconnect_runs_once_and_offline_sent_once(self):
        graph = SlowProfileGraph(delay=10)
        manager = make_manager(graph)
        bob_ws = FakeWebSocket()
        await manager.connect(bob_ws, "bob")

        disconnects: list[str] = []
        disconnect = manager.disconnect

        async def counting_disconnect(connection_id, reason="client_disconnect"):
            disconnects.append(connection_id)
            return await disconnect(connection_id, reason)

        manager.disconnect = counting_disconnect

        alice_ws, session = open_session(manager, "alice")
        await wait_for_online(bob_ws, "alice")
        bob_ws.clear()

        alice_ws.push(message("bob", "never delivered"))
        await asyncio.wait_for(graph.entered.wait(), timeout=1)
        alice_ws.hang_up()
        await asyncio.wait_for(session, timeout=2)

        assert len(disconnects) == 1
        assert bob_ws.sent == [{"event": "user-offline", "data": "alice"}]
        assert not manager.registry.is_online("alice")
        assert manager.total_connections == 1
        # The in-flight handler was cancelled, not left running
        assert graph.active == 0
