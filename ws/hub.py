"""
WebSocket Hub - Session lifecycle and message routing

Central hub composing the session registry, the protocol dispatcher and the
heartbeat supervisor for one server instance.

@.architecture
Incoming: app.py (websocket_endpoint), ws/notifications.py --- {WebSocket connections, OutboundFrame to broadcast or address}
Processing: serve(), broadcast(), send_to_user(), shutdown(), get_client_count() --- {5 jobs: broadcasting, addressed_delivery, connection_management, message_routing, shutdown}
Outgoing: ws/registry.py, ws/handlers.py, ws/heartbeat.py, Frontend (WebSocket) --- {registered sessions, inbound frames to MessageHandler, fan-out frames}

Features:
- Authenticated session lifecycle (accept, receive loop, removal)
- Broadcasting with timeout protection
- Addressed delivery to every session of a user
- Heartbeat-driven eviction of dead peers
- Idempotent shutdown
"""

import asyncio
from typing import Any, Dict, List, Optional

from fastapi import WebSocket, WebSocketDisconnect

from config.settings import WebSocketSettings
from monitoring import clear_session_context, get_logger, set_session_context, setup_standard_metrics
from security.auth import Verifier
from ws.handlers import MessageHandler, ResponseGenerator
from ws.heartbeat import HeartbeatSupervisor
from ws.protocols import OutboundFrame, encode_frame
from ws.registry import SessionRegistry
from ws.session import Session

logger = get_logger(__name__)


class WebSocketHub:
    """
    Central hub for WebSocket session management and message routing.

    Architecture:
    - SessionRegistry owns handshake and membership
    - MessageHandler dispatches inbound frames
    - HeartbeatSupervisor evicts silent sessions
    - All state lives on one event loop, so membership changes need no lock
    """

    def __init__(
        self,
        verifier: Verifier,
        generator: ResponseGenerator,
        settings: Optional[WebSocketSettings] = None,
        metrics: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize WebSocket hub.

        Args:
            verifier: Credential verifier used at handshake
            generator: Async response generator for chat messages
            settings: WebSocket settings (defaults if None)
            metrics: Metric objects from setup_standard_metrics()
        """
        self.settings = settings or WebSocketSettings()
        self.metrics = metrics or setup_standard_metrics()

        self.registry = SessionRegistry(
            verifier,
            cookie_name=self.settings.auth_cookie,
            welcome_message=self.settings.welcome_message,
            send_timeout=self.settings.send_timeout,
            metrics=self.metrics,
            is_accepting=lambda: not self._closed,
        )
        self.message_handler = MessageHandler(self.registry, generator, metrics=self.metrics)
        self.heartbeat = HeartbeatSupervisor(
            self.registry,
            interval=self.settings.heartbeat_interval,
            metrics=self.metrics,
        )
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        """Start the heartbeat timer (needs a running event loop)."""
        if not self._closed:
            self.heartbeat.start()

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    async def serve(self, websocket: WebSocket) -> None:
        """
        Run one connection from handshake to removal.

        Args:
            websocket: Incoming connection (not yet accepted)
        """
        if self._closed:
            logger.debug("Connection refused: hub is shut down")
            await websocket.close()
            return

        session = await self.registry.accept(websocket)
        if session is None:
            return

        set_session_context(user_id=session.user_id, session_id=session.id)
        try:
            while True:
                message = await websocket.receive()
                if message.get("type") == "websocket.disconnect":
                    logger.debug(f"Session {session.id} sent disconnect")
                    break

                data = message.get("text")
                if data is None:
                    data = message.get("bytes")
                if data is None:
                    continue
                await self.message_handler.on_inbound_frame(session, data)
                if session not in self.registry:
                    logger.debug(f"Session {session.id} dropped by the registry")
                    break

        except WebSocketDisconnect:
            logger.debug(f"Session {session.id} disconnected")
        except Exception as e:
            # Transport failure; fatal for this session only
            logger.warning(f"Transport error on session {session.id}: {e!r}")
        finally:
            self.registry.remove(session)
            clear_session_context()

    # =========================================================================
    # Delivery
    # =========================================================================

    async def _fan_out(self, targets: List[Session], frame: OutboundFrame) -> int:
        """Send one frame to many sessions concurrently. Returns the send count."""
        if not targets:
            return 0

        text = encode_frame(frame)
        delivered = 0

        async def _send(session: Session) -> None:
            nonlocal delivered
            if await self.registry.deliver(session, text):
                delivered += 1

        try:
            await asyncio.wait_for(
                asyncio.gather(*[_send(s) for s in targets], return_exceptions=True),
                timeout=self.settings.broadcast_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Fan-out timeout ({delivered}/{len(targets)} delivered)")
        return delivered

    async def broadcast(self, frame: OutboundFrame) -> int:
        """
        Send a frame to every open session.

        Closed sessions are skipped without error.

        Args:
            frame: Frame to send

        Returns:
            Number of sessions the frame was written to
        """
        return await self._fan_out(self.registry.sessions(), frame)

    async def send_to_user(self, user_id: str, frame: OutboundFrame) -> int:
        """
        Send a frame to every open session of one user.

        Args:
            user_id: Principal user id
            frame: Frame to send

        Returns:
            Number of sessions the frame was written to
        """
        return await self._fan_out(self.registry.sessions_for_user(user_id), frame)

    def get_client_count(self) -> int:
        """
        Get number of live sessions.

        Returns:
            Number of sessions
        """
        return self.registry.count()

    def get_session_ids(self) -> List[str]:
        return [s.id for s in self.registry.sessions()]

    # =========================================================================
    # Shutdown
    # =========================================================================

    async def shutdown(self) -> None:
        """
        Stop the heartbeat, close every session and refuse new connections.

        Safe to call repeatedly, with no sessions, or before start().
        """
        if self._closed:
            await self.heartbeat.stop()
            return
        self._closed = True

        logger.info("Shutting down WebSocket hub")
        await self.heartbeat.stop()
        await self.registry.close_all()
        await self.message_handler.cancel_pending()
        logger.info("WebSocket hub shut down")
