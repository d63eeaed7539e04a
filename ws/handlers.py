"""
WebSocket Message Handlers

Protocol dispatcher: decodes inbound frames, enforces shape and auth
preconditions, and runs the matching action.

@.architecture
Incoming: ws/hub.py (serve loop), core/agent.py (via the generator callable) --- {raw text/bytes frames per session, chat results}
Processing: on_inbound_frame(), _handle_chat(), _run_chat(), drain(), cancel_pending() --- {5 jobs: liveness_marking, message_parsing, message_routing, error_handling, task_tracking}
Outgoing: ws/registry.py, Frontend (WebSocket) --- {chat_response, pong and error frames to the originating session}

Every failure here is local to one message: the sender gets an error frame
and the session stays open.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Union

from monitoring import get_logger, setup_standard_metrics
from ws.protocols import (
    ERROR_CHAT_FAILED,
    ERROR_MISSING_FIELDS,
    ChatMessage,
    ChatResponseFrame,
    ErrorFrame,
    HeartbeatAckMessage,
    PingMessage,
    PongFrame,
    ProtocolError,
    encode_frame,
    parse_inbound,
)
from ws.registry import SessionRegistry
from ws.session import Session

logger = get_logger(__name__)

# generate(input, user_id, thread_id) -> result
ResponseGenerator = Callable[[str, str, str], Awaitable[Any]]


class MessageHandler:
    """
    Dispatches inbound frames for every session of one registry.

    Chat generation runs in tracked background tasks so a session's receive
    loop keeps reading (heartbeat acks included) while a response is pending.
    Frames of one session are still validated in arrival order.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        generator: ResponseGenerator,
        metrics: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize message handler.

        Args:
            registry: Registry used for all outbound writes
            generator: Async response generator for chat messages
            metrics: Metric objects from setup_standard_metrics()
        """
        self.registry = registry
        self.generator = generator
        self.metrics = metrics or setup_standard_metrics()
        self._chat_tasks: Set[asyncio.Task] = set()

    async def on_inbound_frame(self, session: Session, raw: Union[str, bytes]) -> None:
        """
        Handle one inbound frame.

        Args:
            session: Originating session
            raw: Text or binary frame payload
        """
        # Any traffic counts as liveness
        session.mark_alive()

        try:
            message = parse_inbound(raw)
        except ProtocolError as e:
            logger.debug(f"Rejected frame from {session.id}: {e}")
            self.metrics['frames_total'].inc(type='invalid')
            await self.registry.send(session, ErrorFrame(error=e.client_message))
            return

        self.metrics['frames_total'].inc(type=message.type)

        if isinstance(message, ChatMessage):
            await self._handle_chat(session, message)
        elif isinstance(message, PingMessage):
            await self.registry.send(session, PongFrame())
        elif isinstance(message, HeartbeatAckMessage):
            logger.debug(f"Heartbeat ack from {session.id}")

    @property
    def pending_count(self) -> int:
        return len(self._chat_tasks)

    async def drain(self) -> None:
        """Wait for every in-flight chat task to finish."""
        while self._chat_tasks:
            await asyncio.gather(*list(self._chat_tasks), return_exceptions=True)

    async def cancel_pending(self) -> None:
        """Cancel in-flight chat tasks (shutdown only)."""
        tasks = list(self._chat_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Cancelled {len(tasks)} pending chat task(s)")

    # Private handlers

    async def _handle_chat(self, session: Session, message: ChatMessage) -> None:
        if session.principal is None or not session.principal.user_id:
            await self.registry.send(session, ErrorFrame(error=ERROR_MISSING_FIELDS))
            return

        task = asyncio.create_task(self._run_chat(session, message))
        self._chat_tasks.add(task)
        task.add_done_callback(self._chat_tasks.discard)

    async def _run_chat(self, session: Session, message: ChatMessage) -> None:
        """Call the generator and reply to the originating session only."""
        started = time.perf_counter()
        try:
            result = await self.generator(
                message.input,
                session.principal.user_id,
                message.thread_id,
            )
            response = encode_frame(ChatResponseFrame(data=result))
        except Exception:
            logger.exception(
                f"Chat processing failed for session {session.id}",
                session_id=session.id,
                thread_id=message.thread_id,
            )
            self.metrics['chat_failures_total'].inc()
            await self.registry.send(session, ErrorFrame(error=ERROR_CHAT_FAILED))
            return
        finally:
            self.metrics['chat_duration_seconds'].observe(time.perf_counter() - started)

        # Dropped silently if the session closed meanwhile
        await self.registry.deliver(session, response)
