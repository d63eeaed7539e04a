"""
WebSocket Session - Transport adapter and session record

@.architecture
Incoming: ws/registry.py, app.py --- {Starlette WebSocket objects, Principal from the verifier}
Processing: WebSocketTransport.accept(), send_text(), close(), terminate(), is_open --- {3 jobs: handshake_completion, framed_writes, connection_teardown}
Outgoing: ws/registry.py, ws/heartbeat.py, ws/handlers.py --- {Session records bound to an open transport}
"""

import asyncio
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from monitoring import get_logger
from security.auth import Principal

logger = get_logger(__name__)

WS_SEND_TIMEOUT = 3.0  # Timeout for sending to a single client


class WebSocketTransport:
    """
    Thin wrapper over a Starlette ``WebSocket``.

    Sessions own exactly one transport. Writes are bounded by ``send_timeout``
    so one stalled peer cannot hold up a fan-out.
    """

    def __init__(self, websocket: WebSocket, send_timeout: float = WS_SEND_TIMEOUT):
        self.websocket = websocket
        self.send_timeout = send_timeout

    @property
    def is_open(self) -> bool:
        """True while both sides of the channel are connected."""
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    @property
    def cookie_header(self) -> Optional[str]:
        """Raw ``Cookie`` header from the upgrade request."""
        return self.websocket.headers.get("cookie")

    async def accept(self) -> None:
        await self.websocket.accept()

    async def send_text(self, text: str) -> None:
        """
        Write one text frame.

        Raises:
            asyncio.TimeoutError: If the peer does not drain within send_timeout
            Exception: Whatever the underlying transport raises
        """
        await asyncio.wait_for(self.websocket.send_text(text), timeout=self.send_timeout)

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        """
        Request a close. No-op once the application side is already closed.

        A handshake that was never accepted is accepted first so the peer
        sees the close code instead of a bare HTTP rejection.
        """
        if self.websocket.application_state == WebSocketState.DISCONNECTED:
            return
        if self.websocket.application_state == WebSocketState.CONNECTING:
            await self.websocket.accept()
        await self.websocket.close(code=code, reason=reason)

    async def terminate(self) -> None:
        """
        Force the channel down within send_timeout.

        Errors and timeouts from an already-dead peer are logged and ignored.
        """
        try:
            await asyncio.wait_for(self.close(), timeout=self.send_timeout)
        except Exception as e:
            logger.debug(f"Terminate on dead transport: {e!r}")


class Session:
    """
    One live, authenticated connection.

    Attributes:
        transport: Owned transport adapter
        principal: Identity established at handshake (read-only)
        is_alive: Liveness flag, cleared by the heartbeat sweep and set by any inbound traffic
        id: Transport identity used as the registry key
        connected_at: Handshake completion time (UTC)
    """

    def __init__(self, transport: WebSocketTransport, principal: Principal):
        self.transport = transport
        self._principal = principal
        self.is_alive = True
        self.id = str(uuid4())
        self.connected_at = datetime.now(timezone.utc)

    def __repr__(self) -> str:
        return f"Session(id={self.id!r}, user_id={self.user_id!r}, is_alive={self.is_alive})"

    @property
    def principal(self) -> Principal:
        return self._principal

    @property
    def user_id(self) -> str:
        return self._principal.user_id

    def mark_alive(self) -> None:
        self.is_alive = True
