"""
End-to-end tests through the FastAPI application with Starlette's TestClient.

The social graph is an in-memory double and Redis events are disabled, so
only the gateway process itself is exercised.
"""

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from shared.config.settings import Settings
from shared.security.auth import MSG_TOKEN_MISSING
from chat_gateway.main import create_app
from chat_gateway.components.core.constants import MSG_PONG_JSON, WSCloseCode
from tests.conftest import FakeSocialGraph, make_token, token_for


def chat_url(user_id: str | None = None, token: str | None = None) -> str:
    token = token or (token_for(user_id) if user_id else None)
    return f"/ws/chat?token={token}" if token else "/ws/chat"


def gateway(**overrides) -> TestClient:
    settings = Settings(social_events_enabled=False, **overrides)
    return TestClient(create_app(settings=settings, social_graph=FakeSocialGraph()))


def read_join(ws) -> list[str]:
    """Consume the join frames (snapshot + own user-online); return the snapshot."""
    snapshot = ws.receive_json()
    assert snapshot["event"] == "online-users"
    assert ws.receive_json()["event"] == "user-online"
    return snapshot["data"]


class TestConnect:

    def test_connect_receives_snapshot_then_own_online(self):
        with gateway() as client:
            with client.websocket_connect(chat_url("alice")) as ws:
                assert ws.receive_json() == {"event": "online-users", "data": ["alice"]}
                assert ws.receive_json() == {"event": "user-online", "data": "alice"}

    def test_missing_token_rejected(self):
        with gateway() as client:
            with client.websocket_connect(chat_url()) as ws:
                assert ws.receive_json() == {
                    "event": "connect_error",
                    "data": {"message": MSG_TOKEN_MISSING},
                }
                with pytest.raises(WebSocketDisconnect) as exc:
                    ws.receive_json()
                assert exc.value.code == WSCloseCode.AUTH_FAILED

    def test_token_without_identity_rejected(self):
        with gateway() as client:
            with client.websocket_connect(chat_url(token=make_token({"name": "Nobody"}))) as ws:
                assert ws.receive_json()["event"] == "connect_error"
                with pytest.raises(WebSocketDisconnect) as exc:
                    ws.receive_json()
                assert exc.value.code == WSCloseCode.AUTH_FAILED

    def test_authorization_header_accepted(self):
        with gateway() as client:
            headers = {"Authorization": f"Bearer {token_for('alice')}"}
            with client.websocket_connect("/ws/chat", headers=headers) as ws:
                assert read_join(ws) == ["alice"]

    def test_per_user_capacity(self):
        with gateway(ws_max_connections_per_user=1) as client:
            with client.websocket_connect(chat_url("alice")) as first:
                read_join(first)
                with client.websocket_connect(chat_url("alice")) as second:
                    assert second.receive_json()["event"] == "connect_error"
                    with pytest.raises(WebSocketDisconnect) as exc:
                        second.receive_json()
                    assert exc.value.code == WSCloseCode.SERVER_OVERLOADED


class TestRelay:

    def test_message_relay_and_offline_notice(self):
        with gateway() as client:
            with client.websocket_connect(chat_url("bob")) as bob:
                read_join(bob)
                with client.websocket_connect(chat_url("alice")) as alice:
                    assert read_join(alice) == ["alice", "bob"]
                    assert bob.receive_json() == {"event": "user-online", "data": "alice"}

                    alice.send_json({
                        "event": "send-message",
                        "data": {"receiverId": "bob", "message": "hi bob"},
                    })
                    received = bob.receive_json()
                    assert received["event"] == "receive-message"
                    assert received["data"]["senderId"] == "alice"
                    assert received["data"]["message"] == "hi bob"
                    assert received["data"]["sender"]["name"] == "User alice"

                assert bob.receive_json() == {"event": "user-offline", "data": "alice"}

    def test_invalid_frame_keeps_connection_open(self):
        with gateway() as client:
            with client.websocket_connect(chat_url("alice")) as ws:
                read_join(ws)
                ws.send_text("{not json")
                ws.send_json({"event": "typing", "data": {}})
                ws.send_text("ping")
                assert ws.receive_text() == MSG_PONG_JSON

    def test_join_room_for_other_user_gets_error(self):
        with gateway() as client:
            with client.websocket_connect(chat_url("mallory")) as ws:
                read_join(ws)
                ws.send_json({"event": "join-room", "data": "alice"})
                assert ws.receive_json() == {
                    "event": "error",
                    "data": {"message": "Not authorized to join this room", "code": "unauthorized_room"},
                }


class TestTransportLimits:

    def test_rate_limit_closes_connection(self):
        with gateway(ws_message_rate_limit=2) as client:
            with client.websocket_connect(chat_url("alice")) as ws:
                read_join(ws)
                for _ in range(3):
                    ws.send_text("ping")
                assert ws.receive_text() == MSG_PONG_JSON
                assert ws.receive_text() == MSG_PONG_JSON
                with pytest.raises(WebSocketDisconnect) as exc:
                    ws.receive_text()
                assert exc.value.code == WSCloseCode.RATE_LIMITED

    def test_oversized_frame_closes_connection(self):
        with gateway(ws_max_message_size=50) as client:
            with client.websocket_connect(chat_url("alice")) as ws:
                read_join(ws)
                ws.send_text("x" * 100)
                with pytest.raises(WebSocketDisconnect) as exc:
                    ws.receive_text()
                assert exc.value.code == WSCloseCode.MESSAGE_TOO_BIG


class TestHttpEndpoints:

    def test_health(self):
        with gateway() as client:
            with client.websocket_connect(chat_url("alice")) as ws:
                read_join(ws)
                body = client.get("/ws/health").json()
        assert body["status"] == "healthy"
        assert body["service"] == "chat-gateway"
        assert body["total_connections"] == 1
        assert body["users_online"] == 1

    def test_metrics(self):
        with gateway() as client:
            response = client.get("/ws/metrics")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "chatgateway_connections_total 0" in response.text

    def test_production_config_validated_on_startup(self):
        settings = Settings(environment="production", debug=True, social_events_enabled=False)
        app = create_app(settings=settings, social_graph=FakeSocialGraph())
        with pytest.raises(RuntimeError, match="Invalid production configuration"):
            with TestClient(app):
                pass
