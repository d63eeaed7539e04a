"""
Unit Tests: Session Registry

Tests for handshake gating, registration, delivery and removal.
"""

from unittest.mock import MagicMock

import pytest

from security.auth import Principal
from ws.registry import POLICY_VIOLATION, UNAUTHORIZED_REASON, SessionRegistry
from ws.protocols import PongFrame


# =============================================================================
# Handshake Tests
# =============================================================================

class TestHandshake:
    """Test acceptHandshake gating."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_valid_credential_registers_session(self, registry, make_websocket, metrics):
        ws = make_websocket("valid-token")

        session = await registry.accept(ws)

        assert session is not None
        assert session.principal == Principal(user_id="test-user")
        assert session.is_alive is True
        assert session in registry
        assert registry.count() == 1
        assert metrics['handshakes_total'].get(result='accepted') == 1
        assert metrics['sessions_active'].get() == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_welcome_frame_sent_once(self, registry, make_websocket):
        ws = make_websocket("valid-token")

        await registry.accept(ws)

        assert len(ws.frames) == 1
        assert ws.frames[0]["type"] == "connected"
        assert ws.frames[0]["message"] == "Connected to Chatline WebSocket"
        assert "timestamp" in ws.frames[0]

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize("cookie", [None, "", "theme=dark", "auth_token=", "auth_token=; theme=dark"])
    async def test_missing_credential_rejected_without_verifier_call(self, metrics, make_websocket, cookie):
        verifier = MagicMock(return_value=Principal(user_id="test-user"))
        registry = SessionRegistry(verifier, metrics=metrics)
        ws = make_websocket(token=None, cookie=cookie)

        session = await registry.accept(ws)

        assert session is None
        verifier.assert_not_called()
        assert registry.count() == 0
        assert ws.closed_with == (POLICY_VIOLATION, UNAUTHORIZED_REASON)
        assert ws.sent == []
        assert metrics['handshakes_total'].get(result='rejected') == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unrecognised_credential_rejected(self, registry, make_websocket):
        ws = make_websocket("forged-token")

        session = await registry.accept(ws)

        assert session is None
        assert registry.count() == 0
        assert ws.closed_with == (1008, "Unauthorized")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_credential_read_among_other_cookies(self, registry, make_websocket):
        ws = make_websocket(cookie="theme=dark; auth_token=valid-token; lang=en")

        assert await registry.accept(ws) is not None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_async_verifier_supported(self, metrics, make_websocket):
        async def verify(token):
            return Principal(user_id="async-user") if token == "valid-token" else None

        registry = SessionRegistry(verify, metrics=metrics)
        session = await registry.accept(make_websocket("valid-token"))

        assert session.principal.user_id == "async-user"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_verifier_exception_rejects(self, metrics, make_websocket):
        registry = SessionRegistry(MagicMock(side_effect=RuntimeError("auth backend down")), metrics=metrics)
        ws = make_websocket("valid-token")

        assert await registry.accept(ws) is None
        assert ws.closed_with == (1008, "Unauthorized")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_custom_cookie_name(self, verifier, metrics, make_websocket):
        registry = SessionRegistry(verifier, cookie_name="sid", metrics=metrics)

        assert await registry.accept(make_websocket(cookie="sid=valid-token")) is not None
        assert await registry.accept(make_websocket("valid-token")) is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_same_principal_multiple_sessions(self, registry, make_websocket):
        first = await registry.accept(make_websocket("valid-token"))
        second = await registry.accept(make_websocket("second-token"))

        assert first.id != second.id
        assert registry.count() == 2
        assert {s.id for s in registry.sessions_for_user("test-user")} == {first.id, second.id}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_handshake_dropped_when_no_longer_accepting(self, verifier, metrics, make_websocket):
        registry = SessionRegistry(verifier, metrics=metrics, is_accepting=lambda: False)
        ws = make_websocket("valid-token")

        assert await registry.accept(ws) is None
        assert registry.count() == 0
        assert ws.sent == []
        assert ws.closed_with == (1000, None)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_principal_is_read_only(self, registry, make_websocket):
        session = await registry.accept(make_websocket("valid-token"))

        with pytest.raises(AttributeError):
            session.principal = Principal(user_id="intruder")

        assert session.user_id == "test-user"


# =============================================================================
# Delivery & Removal Tests
# =============================================================================

class TestDelivery:
    """Test send/remove/close_all."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_send_to_open_session(self, registry, make_websocket):
        ws = make_websocket()
        session = await registry.accept(ws)

        assert await registry.send(session, PongFrame()) is True
        assert ws.frames[-1]["type"] == "pong"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_send_to_half_closed_session_is_silent_noop(self, registry, make_websocket):
        ws = make_websocket()
        session = await registry.accept(ws)
        ws.drop_peer()

        assert await registry.send(session, PongFrame()) is False
        assert len(ws.sent) == 1  # welcome only

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_transport_error_removes_session(self, registry, make_websocket):
        ws = make_websocket()
        session = await registry.accept(ws)
        ws.fail_sends = True

        assert await registry.send(session, PongFrame()) is False
        assert session not in registry
        assert ws.closed_with == (1000, None)
        assert session.transport.is_open is False

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_send_to_removed_session_is_noop(self, registry, make_websocket):
        ws = make_websocket()
        session = await registry.accept(ws)
        registry.remove(session)

        assert await registry.send(session, PongFrame()) is False
        assert len(ws.sent) == 1  # welcome only

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_remove_is_idempotent(self, registry, make_websocket, metrics):
        session = await registry.accept(make_websocket())

        assert registry.remove(session) is True
        assert registry.remove(session) is False
        assert registry.count() == 0
        assert metrics['sessions_active'].get() == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_close_all(self, registry, make_websocket):
        sockets = [make_websocket(), make_websocket("other-token")]
        for ws in sockets:
            await registry.accept(ws)

        await registry.close_all()

        assert registry.count() == 0
        assert all(ws.closed_with == (1000, None) for ws in sockets)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_close_all_empty_registry(self, registry):
        await registry.close_all()

        assert registry.count() == 0
