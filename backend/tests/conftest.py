"""
Pytest configuration and fixtures for the chat gateway tests.
"""

import os

# Settings are read at import time; pin a hermetic environment first.
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("SOCIAL_EVENTS_ENABLED", "false")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "")

import time
from collections.abc import Iterable
from typing import Any

import jwt
import pytest
from starlette.websockets import WebSocketState

from shared.infrastructure.models import FriendshipStatus
from chat_gateway.connection_manager import ConnectionManager
from chat_gateway.components.data.social_graph import (
    FriendshipState,
    SocialGraphLookupError,
    UserProfile,
)


SIGNING_SECRET = "test-signing-secret-with-at-least-32-bytes"


def make_token(claims: dict[str, Any] | None = None, secret: str = SIGNING_SECRET, **extra: Any) -> str:
    """Encode a bearer token the way the REST layer issues them."""
    payload = dict(claims or {})
    payload.update(extra)
    return jwt.encode(payload, secret, algorithm="HS256")


def token_for(user_id: str, claim: str = "id", ttl: int = 3600) -> str:
    return make_token({claim: user_id, "exp": int(time.time()) + ttl})


class FakeWebSocket:
    """In-memory stand-in for a Starlette WebSocket."""

    def __init__(self, origin: str | None = None, fail_send: bool = False, headers: dict | None = None):
        self.sent: list[Any] = []
        self.closed: tuple[int, str | None] | None = None
        self.fail_send = fail_send
        self.headers: dict[str, str] = dict(headers or {})
        if origin:
            self.headers["origin"] = origin
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED

    async def send_json(self, data: Any) -> None:
        if self.fail_send:
            raise RuntimeError("socket closed")
        self.sent.append(data)

    async def send_text(self, data: str) -> None:
        if self.fail_send:
            raise RuntimeError("socket closed")
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.closed = (code, reason)
        self.application_state = WebSocketState.DISCONNECTED

    def events(self, name: str | None = None) -> list[dict[str, Any]]:
        """Sent event frames, optionally filtered by event name."""
        return [
            frame for frame in self.sent
            if isinstance(frame, dict) and (name is None or frame.get("event") == name)
        ]

    def event_names(self) -> list[str]:
        return [frame["event"] for frame in self.events()]

    def clear(self) -> None:
        self.sent.clear()


class FakeSocialGraph:
    """
    SocialGraphGateway double.

    Every user has a profile unless listed in ``unknown``; friendships are
    looked up by unordered pair.
    """

    def __init__(
        self,
        friendships: Iterable[FriendshipState] = (),
        unknown: Iterable[str] = (),
        fail: bool = False,
    ):
        self.friendships: dict[frozenset[str], FriendshipState] = {}
        for state in friendships:
            self.set_friendship(state)
        self.unknown = set(unknown)
        self.fail = fail
        self.profile_calls: list[str] = []
        self.friendship_calls: list[tuple[str, str, bool]] = []
        self.invalidated: list[tuple[str, str]] = []

    def set_friendship(self, state: FriendshipState) -> None:
        self.friendships[frozenset((state.requester_id, state.recipient_id))] = state

    def block(self, blocker: str, blocked: str) -> None:
        self.set_friendship(FriendshipState(blocker, blocked, FriendshipStatus.BLOCKED, blocked_by=blocker))

    def accept(self, requester: str, recipient: str) -> None:
        self.set_friendship(FriendshipState(requester, recipient, FriendshipStatus.ACCEPTED))

    async def get_profile(self, user_id: str) -> UserProfile | None:
        self.profile_calls.append(user_id)
        if self.fail:
            raise SocialGraphLookupError("profile lookup failed")
        if user_id in self.unknown:
            return None
        return UserProfile(user_id=user_id, name=f"User {user_id}", avatar=f"/avatars/{user_id}.png")

    async def get_friendship(self, user_a: str, user_b: str, fresh: bool = False) -> FriendshipState | None:
        self.friendship_calls.append((user_a, user_b, fresh))
        if self.fail:
            raise SocialGraphLookupError("friendship lookup failed")
        return self.friendships.get(frozenset((user_a, user_b)))

    def invalidate_pair(self, user_a: str, user_b: str) -> None:
        self.invalidated.append((user_a, user_b))


@pytest.fixture
def social_graph():
    return FakeSocialGraph()


@pytest.fixture
def manager(social_graph):
    """Manager with generous limits and no origin checks."""
    from chat_gateway.components.auth.strategies import BearerTokenAuthStrategy

    return ConnectionManager(
        social_graph,
        max_connections_per_user=5,
        max_total_connections=100,
        rate_limit=100,
        auth_strategy=BearerTokenAuthStrategy(claim_names=["id", "userId", "sub"], secret=""),
    )


@pytest.fixture
def connect(manager):
    """Connect a FakeWebSocket as the given user and return (connection, socket)."""

    async def _connect(user_id: str, **ws_kwargs: Any):
        ws = FakeWebSocket(**ws_kwargs)
        connection = await manager.connect(ws, user_id)
        return connection, ws

    return _connect
