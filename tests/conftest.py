"""
Pytest Configuration and Shared Fixtures

Provides settings, a fake Starlette WebSocket, stub collaborators
(verifier, response generator) and hub fixtures for unit and
integration tests.
"""

import asyncio
import json
import os
from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from starlette.websockets import WebSocketState

# Test environment setup
os.environ["CHATLINE_ENVIRONMENT"] = "test"

from config.settings import Settings, WebSocketSettings, get_settings, reload_settings
from monitoring import MetricsRegistry, setup_standard_metrics
from security.auth import Principal, reset_auth_manager
from ws.hub import WebSocketHub
from ws.registry import SessionRegistry


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests that test individual components"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests that test component interactions"
    )


# =============================================================================
# Settings Fixtures
# =============================================================================

@pytest.fixture
def test_settings() -> Settings:
    """Load test settings."""
    reload_settings()  # Clear cache and reload with test environment
    return get_settings()


@pytest.fixture(autouse=True)
def reset_settings():
    """Reset settings and cached auth manager after each test."""
    yield
    reload_settings()
    reset_auth_manager()


# =============================================================================
# Fake Transport
# =============================================================================

class FakeWebSocket:
    """
    In-memory stand-in for ``starlette.websockets.WebSocket``.

    Implements the surface the session layer touches: headers, the two
    connection states, accept / send_text / close / receive.
    """

    def __init__(self, cookie: Optional[str] = None):
        self.headers: Dict[str, str] = {"cookie": cookie} if cookie is not None else {}
        self.client_state = WebSocketState.CONNECTING
        self.application_state = WebSocketState.CONNECTING
        self.sent: List[str] = []
        self.accepted = False
        self.closed_with: Optional[Tuple[int, Optional[str]]] = None
        self.fail_sends = False
        self._inbound: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue()

    async def accept(self) -> None:
        self.accepted = True
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED

    async def send_text(self, text: str) -> None:
        if self.fail_sends:
            raise RuntimeError("connection reset by peer")
        self.sent.append(text)

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        self.closed_with = (code, reason)
        self.application_state = WebSocketState.DISCONNECTED
        # Peer answers the close handshake
        self.push_disconnect(code)

    async def receive(self) -> Dict[str, Any]:
        message = await self._inbound.get()
        if message["type"] == "websocket.disconnect":
            self.client_state = WebSocketState.DISCONNECTED
        return message

    # Test helpers

    def push_text(self, text: str) -> None:
        self._inbound.put_nowait({"type": "websocket.receive", "text": text})

    def push_json(self, payload: Any) -> None:
        self.push_text(json.dumps(payload))

    def push_bytes(self, data: bytes) -> None:
        self._inbound.put_nowait({"type": "websocket.receive", "bytes": data})

    def push_disconnect(self, code: int = 1000) -> None:
        self._inbound.put_nowait({"type": "websocket.disconnect", "code": code})

    def drop_peer(self) -> None:
        """Simulate a half-closed peer (no further writes possible)."""
        self.client_state = WebSocketState.DISCONNECTED

    @property
    def frames(self) -> List[Dict[str, Any]]:
        return [json.loads(text) for text in self.sent]

    def frames_of(self, frame_type: str) -> List[Dict[str, Any]]:
        return [f for f in self.frames if f.get("type") == frame_type]


@pytest.fixture
def make_websocket():
    """Factory for fake WebSockets; ``token`` becomes the auth_token cookie."""
    def _make(token: Optional[str] = "valid-token", cookie: Optional[str] = None) -> FakeWebSocket:
        if cookie is None and token is not None:
            cookie = f"auth_token={token}"
        return FakeWebSocket(cookie=cookie)
    return _make


# =============================================================================
# Collaborator Stubs
# =============================================================================

PRINCIPALS = {
    "valid-token": Principal(user_id="test-user"),
    "second-token": Principal(user_id="test-user"),
    "other-token": Principal(user_id="other-user"),
}


@pytest.fixture
def verifier():
    """Synchronous verifier recognising the tokens in PRINCIPALS."""
    def _verify(token: Optional[str]) -> Optional[Principal]:
        return PRINCIPALS.get(token)
    return _verify


@pytest.fixture
def generator() -> AsyncMock:
    """Response generator that always answers "Hello, human!"."""
    return AsyncMock(return_value={"text_response": "Hello, human!"})


@pytest.fixture
def metrics() -> Dict[str, Any]:
    """Standard metrics bound to a fresh registry."""
    return setup_standard_metrics(MetricsRegistry())


# =============================================================================
# Session Layer Fixtures
# =============================================================================

@pytest.fixture
def registry(verifier, metrics) -> SessionRegistry:
    return SessionRegistry(verifier, metrics=metrics)


@pytest_asyncio.fixture
async def hub(verifier, generator, metrics):
    """Hub with default settings; heartbeat not started."""
    hub = WebSocketHub(verifier, generator, WebSocketSettings(), metrics=metrics)
    yield hub
    await hub.shutdown()
