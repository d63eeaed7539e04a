"""
Unit Tests: Message Handler

Tests for inbound frame dispatch: chat, ping, heartbeat acks and the
per-message error paths.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from core.agent import AgentError
from ws.handlers import MessageHandler


@pytest.fixture
def handler(registry, generator, metrics) -> MessageHandler:
    return MessageHandler(registry, generator, metrics=metrics)


def chat(input="Hello, AI!", thread_id="thread-123") -> str:
    return json.dumps({"type": "chat", "input": input, "threadId": thread_id})


# =============================================================================
# Dispatch Tests
# =============================================================================

class TestDispatch:
    """Test routing of valid messages."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_chat_round_trip(self, handler, registry, generator, make_websocket):
        ws = make_websocket("valid-token")
        session = await registry.accept(ws)

        await handler.on_inbound_frame(session, chat())
        await handler.drain()

        generator.assert_awaited_once_with("Hello, AI!", "test-user", "thread-123")
        responses = ws.frames_of("chat_response")
        assert len(responses) == 1
        assert responses[0]["data"] == {"text_response": "Hello, human!"}
        assert "timestamp" in responses[0]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_chat_reply_goes_only_to_originating_session(self, handler, registry, make_websocket):
        origin_ws, other_ws = make_websocket("valid-token"), make_websocket("second-token")
        origin = await registry.accept(origin_ws)
        await registry.accept(other_ws)

        await handler.on_inbound_frame(origin, chat())
        await handler.drain()

        assert len(origin_ws.frames_of("chat_response")) == 1
        assert other_ws.frames_of("chat_response") == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_ping_answered_with_pong(self, handler, registry, make_websocket):
        ws = make_websocket()
        session = await registry.accept(ws)

        await handler.on_inbound_frame(session, '{"type": "ping"}')

        assert ws.frames[-1]["type"] == "pong"
        assert set(ws.frames[-1]) == {"type", "timestamp"}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_heartbeat_ack_sends_nothing(self, handler, registry, make_websocket):
        ws = make_websocket()
        session = await registry.accept(ws)
        session.is_alive = False

        await handler.on_inbound_frame(session, '{"type": "heartbeat_ack"}')

        assert session.is_alive is True
        assert len(ws.sent) == 1  # welcome only

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_any_frame_marks_session_alive(self, handler, registry, make_websocket):
        session = await registry.accept(make_websocket())
        session.is_alive = False

        await handler.on_inbound_frame(session, "garbage")

        assert session.is_alive is True

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_frame_counter(self, handler, registry, make_websocket, metrics):
        session = await registry.accept(make_websocket())

        await handler.on_inbound_frame(session, '{"type": "ping"}')
        await handler.on_inbound_frame(session, "garbage")

        assert metrics['frames_total'].get(type='ping') == 1
        assert metrics['frames_total'].get(type='invalid') == 1


# =============================================================================
# Error Path Tests
# =============================================================================

class TestErrors:
    """Test per-message error isolation."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_invalid_json(self, handler, registry, make_websocket):
        ws = make_websocket()
        session = await registry.accept(ws)

        await handler.on_inbound_frame(session, "{not json")

        assert ws.frames[-1]["type"] == "error"
        assert ws.frames[-1]["error"] == "Invalid message format"
        assert session in registry

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_type(self, handler, registry, make_websocket):
        ws = make_websocket()
        session = await registry.accept(ws)

        await handler.on_inbound_frame(session, '{"type": "subscribe"}')

        assert ws.frames[-1]["error"] == "Unknown message type"

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", [
        chat(input=""),
        json.dumps({"type": "chat", "input": "hi"}),
        json.dumps({"type": "chat", "threadId": "t"}),
    ])
    async def test_chat_missing_fields_skips_generator(self, handler, registry, generator, make_websocket, raw):
        ws = make_websocket()
        session = await registry.accept(ws)

        await handler.on_inbound_frame(session, raw)
        await handler.drain()

        generator.assert_not_awaited()
        assert ws.frames[-1]["error"] == "Missing required fields or not authenticated"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_generator_failure_is_generic_and_local(self, registry, metrics, make_websocket):
        failing = AsyncMock(side_effect=AgentError("upstream 502: secret detail"))
        handler = MessageHandler(registry, failing, metrics=metrics)
        ws, bystander = make_websocket(), make_websocket("other-token")
        session = await registry.accept(ws)
        await registry.accept(bystander)

        await handler.on_inbound_frame(session, chat())
        await handler.drain()

        assert ws.frames[-1]["type"] == "error"
        assert ws.frames[-1]["error"] == "Failed to process chat message"
        assert "secret" not in ws.sent[-1]
        assert session in registry
        assert registry.count() == 2
        assert len(bystander.sent) == 1  # welcome only
        assert metrics['chat_failures_total'].get() == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unserializable_result_reported_as_failure(self, registry, metrics, make_websocket):
        handler = MessageHandler(registry, AsyncMock(return_value=object()), metrics=metrics)
        ws = make_websocket()
        session = await registry.accept(ws)

        await handler.on_inbound_frame(session, chat())
        await handler.drain()

        assert ws.frames[-1]["error"] == "Failed to process chat message"


# =============================================================================
# Concurrency Tests
# =============================================================================

class TestChatTasks:
    """Test background chat task tracking."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_receive_path_not_blocked_by_pending_chat(self, registry, metrics, make_websocket):
        release = asyncio.Event()

        async def slow_generator(input, user_id, thread_id):
            await release.wait()
            return {"text_response": "late"}

        handler = MessageHandler(registry, slow_generator, metrics=metrics)
        ws = make_websocket()
        session = await registry.accept(ws)

        await handler.on_inbound_frame(session, chat())
        await handler.on_inbound_frame(session, '{"type": "ping"}')

        assert handler.pending_count == 1
        assert ws.frames[-1]["type"] == "pong"

        release.set()
        await handler.drain()
        assert ws.frames[-1]["type"] == "chat_response"
        assert handler.pending_count == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_reply_after_close_is_dropped(self, registry, metrics, make_websocket):
        release = asyncio.Event()

        async def slow_generator(input, user_id, thread_id):
            await release.wait()
            return {"text_response": "late"}

        handler = MessageHandler(registry, slow_generator, metrics=metrics)
        ws = make_websocket()
        session = await registry.accept(ws)

        await handler.on_inbound_frame(session, chat())
        ws.drop_peer()
        registry.remove(session)
        release.set()
        await handler.drain()

        assert ws.frames_of("chat_response") == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cancel_pending(self, registry, metrics, make_websocket):
        async def never(input, user_id, thread_id):
            await asyncio.Event().wait()

        handler = MessageHandler(registry, never, metrics=metrics)
        session = await registry.accept(make_websocket())

        await handler.on_inbound_frame(session, chat())
        await handler.cancel_pending()

        assert handler.pending_count == 0
