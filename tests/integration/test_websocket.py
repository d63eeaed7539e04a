"""
Integration Tests: WebSocket

End-to-end tests through the FastAPI application: cookie handshake,
message routing, server pushes, HTTP endpoints and shutdown.
"""

import time

import pytest
from unittest.mock import AsyncMock
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from app import create_app
from config.settings import Settings
from ws.notifications import broadcast_announcement, notify_user
from ws.registry import POLICY_VIOLATION, UNAUTHORIZED_REASON


VALID_COOKIE = {"cookie": "auth_token=valid-token"}


@pytest.fixture
def chat_generator() -> AsyncMock:
    return AsyncMock(return_value={"text_response": "Hello, human!"})


@pytest.fixture
def client(verifier, chat_generator):
    """Started application; startup and shutdown events run around the test."""
    app = create_app(
        verifier=verifier,
        generator=chat_generator,
        settings=Settings(environment="test"),
    )
    with TestClient(app) as test_client:
        yield test_client


def wait_for(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


# =============================================================================
# Handshake Tests
# =============================================================================

class TestHandshake:
    """Test cookie authentication on connect."""

    @pytest.mark.integration
    def test_connect_with_valid_cookie(self, client):
        with client.websocket_connect("/ws", headers=VALID_COOKIE) as ws:
            welcome = ws.receive_json()

            assert welcome["type"] == "connected"
            assert welcome["message"] == "Connected to Chatline WebSocket"
            assert welcome["timestamp"].endswith("Z")
            assert client.app.state.hub.get_client_count() == 1

    @pytest.mark.integration
    @pytest.mark.parametrize("headers", [
        {},
        {"cookie": "theme=dark"},
        {"cookie": "auth_token=forged"},
    ])
    def test_rejected_with_policy_violation(self, client, headers):
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect("/ws", headers=headers) as ws:
                ws.receive_json()

        assert exc.value.code == POLICY_VIOLATION
        assert exc.value.reason == UNAUTHORIZED_REASON
        assert client.app.state.hub.get_client_count() == 0

    @pytest.mark.integration
    def test_disconnect_removes_session(self, client):
        with client.websocket_connect("/ws", headers=VALID_COOKIE) as ws:
            ws.receive_json()

        hub = client.app.state.hub
        assert wait_for(lambda: hub.get_client_count() == 0)


# =============================================================================
# Message Routing Tests
# =============================================================================

class TestMessageRouting:
    """Test chat, ping and error replies."""

    @pytest.mark.integration
    def test_chat_round_trip(self, client, chat_generator):
        with client.websocket_connect("/ws", headers=VALID_COOKIE) as ws:
            ws.receive_json()

            ws.send_json({"type": "chat", "input": "Hello, AI!", "threadId": "thread-123"})
            reply = ws.receive_json()

        assert reply["type"] == "chat_response"
        assert reply["data"] == {"text_response": "Hello, human!"}
        chat_generator.assert_awaited_once_with("Hello, AI!", "test-user", "thread-123")

    @pytest.mark.integration
    def test_ping_pong(self, client):
        with client.websocket_connect("/ws", headers=VALID_COOKIE) as ws:
            ws.receive_json()

            ws.send_json({"type": "ping"})
            reply = ws.receive_json()

        assert reply["type"] == "pong"
        assert "timestamp" in reply

    @pytest.mark.integration
    @pytest.mark.parametrize("payload, error", [
        ("not json", "Invalid message format"),
        ('{"type": "dance"}', "Unknown message type"),
        ('{"type": "chat", "input": "hi"}', "Missing required fields or not authenticated"),
    ])
    def test_error_replies(self, client, chat_generator, payload, error):
        with client.websocket_connect("/ws", headers=VALID_COOKIE) as ws:
            ws.receive_json()

            ws.send_text(payload)
            reply = ws.receive_json()

            # Session survives a bad frame
            ws.send_json({"type": "ping"})
            assert ws.receive_json()["type"] == "pong"

        assert reply == {"type": "error", "error": error, "timestamp": reply["timestamp"]}
        chat_generator.assert_not_awaited()

    @pytest.mark.integration
    def test_generator_failure(self, client, chat_generator):
        chat_generator.side_effect = RuntimeError("model offline")

        with client.websocket_connect("/ws", headers=VALID_COOKIE) as ws:
            ws.receive_json()

            ws.send_json({"type": "chat", "input": "Hello, AI!", "threadId": "thread-123"})
            reply = ws.receive_json()

        assert reply["type"] == "error"
        assert reply["error"] == "Failed to process chat message"


# =============================================================================
# Server Push Tests
# =============================================================================

class TestServerPush:
    """Test broadcast and per-user delivery through a live app."""

    @pytest.mark.integration
    def test_broadcast_and_notify(self, client):
        hub = client.app.state.hub

        with client.websocket_connect("/ws", headers=VALID_COOKIE) as mine, \
                client.websocket_connect("/ws", headers={"cookie": "auth_token=other-token"}) as theirs:
            mine.receive_json()
            theirs.receive_json()

            sent = client.portal.call(broadcast_announcement, hub, "Maintenance at noon")
            assert sent == 2
            assert mine.receive_json()["message"] == "Maintenance at noon"
            assert theirs.receive_json()["message"] == "Maintenance at noon"

            sent = client.portal.call(notify_user, hub, "other-user", {"status": "approved"})
            assert sent == 1
            assert theirs.receive_json()["data"] == {"status": "approved"}


# =============================================================================
# HTTP Endpoint Tests
# =============================================================================

class TestHTTPEndpoints:
    """Test service info, health and metrics routes."""

    @pytest.mark.integration
    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        body = response.json()
        assert body["version"] == "1.0.0"
        assert body["environment"] == "test"

    @pytest.mark.integration
    def test_health_reports_connections(self, client):
        with client.websocket_connect("/ws", headers=VALID_COOKIE) as ws:
            ws.receive_json()
            body = client.get("/health").json()

        assert body["status"] == "OK"
        assert body["connections"] == 1
        assert set(body["memory"]) == {"rss_mb", "vms_mb"}

    @pytest.mark.integration
    def test_detailed_health(self, client):
        response = client.get("/health/detailed")

        components = {c["component"]: c for c in response.json()["components"]}
        assert components["websocket"]["status"] == "healthy"
        assert "agent" not in components

    @pytest.mark.integration
    def test_metrics(self, client):
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect("/ws") as ws:
                ws.receive_json()

        response = client.get("/metrics")

        assert response.status_code == 200
        assert 'chatline_ws_handshakes_total{result="rejected"} 1.0' in response.text

    @pytest.mark.integration
    def test_unknown_route(self, client):
        response = client.get("/nope")

        assert response.status_code == 404
        body = response.json()
        assert body["error"] == "Route not found"
        assert body["path"] == "/nope"
        assert body["method"] == "GET"


# =============================================================================
# Shutdown Tests
# =============================================================================

class TestShutdown:
    """Test application shutdown closes every session."""

    @pytest.mark.integration
    def test_shutdown_closes_sessions(self, verifier, chat_generator):
        app = create_app(verifier=verifier, generator=chat_generator, settings=Settings(environment="test"))

        with TestClient(app) as client:
            hub = app.state.hub
            with client.websocket_connect("/ws", headers=VALID_COOKIE) as ws:
                ws.receive_json()
                client.portal.call(hub.shutdown)

                with pytest.raises(WebSocketDisconnect) as exc:
                    ws.receive_json()

            assert exc.value.code == 1000
            assert hub.is_closed
            assert hub.get_client_count() == 0
