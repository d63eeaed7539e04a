"""
Session Registry - Handshake and live-session set

Owns the set of authenticated sessions for one hub instance.

@.architecture
Incoming: ws/hub.py, security/auth.py --- {Starlette WebSocket on upgrade, Verifier callable, OutboundFrame to deliver}
Processing: accept(), send(), deliver(), remove(), close_all(), sessions_for_user() --- {5 jobs: handshake_gating, session_registration, framed_delivery, removal, shutdown_close}
Outgoing: ws/handlers.py, ws/heartbeat.py, ws/hub.py --- {Session instances, delivery results (bool)}

Invariant: a session is registered iff its transport is open and it has not
been evicted. Registration and removal are single synchronous steps on the
event loop, so no lock is taken.
"""

import inspect
from typing import Any, Callable, Dict, List, Optional

from fastapi import WebSocket

from monitoring import get_logger, setup_standard_metrics
from security.auth import DEFAULT_COOKIE_NAME, Principal, Verifier, extract_credential
from ws.protocols import ConnectedFrame, OutboundFrame, encode_frame
from ws.session import WS_SEND_TIMEOUT, Session, WebSocketTransport

logger = get_logger(__name__)

POLICY_VIOLATION = 1008
UNAUTHORIZED_REASON = "Unauthorized"
DEFAULT_WELCOME_MESSAGE = "Connected to Chatline WebSocket"


class SessionRegistry:
    """
    Live-session set plus the handshake that feeds it.

    Sessions are keyed by transport identity; one principal may hold any
    number of concurrent sessions.
    """

    def __init__(
        self,
        verifier: Verifier,
        cookie_name: str = DEFAULT_COOKIE_NAME,
        welcome_message: str = DEFAULT_WELCOME_MESSAGE,
        send_timeout: float = WS_SEND_TIMEOUT,
        metrics: Optional[Dict[str, Any]] = None,
        is_accepting: Optional[Callable[[], bool]] = None,
    ):
        """
        Initialize registry.

        Args:
            verifier: Maps a raw credential to a Principal or None (sync or async)
            cookie_name: Cookie entry holding the credential
            welcome_message: Text of the connected frame
            send_timeout: Per-write timeout for session transports
            metrics: Metric objects from setup_standard_metrics()
            is_accepting: Checked after the verifier returns; False closes the
                connection instead of registering it
        """
        self.verifier = verifier
        self.cookie_name = cookie_name
        self.welcome_message = welcome_message
        self.send_timeout = send_timeout
        self.metrics = metrics or setup_standard_metrics()
        self.is_accepting = is_accepting or (lambda: True)
        self._sessions: Dict[str, Session] = {}

    # =========================================================================
    # Handshake
    # =========================================================================

    async def accept(self, websocket: WebSocket) -> Optional[Session]:
        """
        Authenticate and register a new connection.

        Args:
            websocket: Connection in the CONNECTING state

        Returns:
            Registered Session, or None if the handshake was rejected
            (the connection is then closed with 1008 "Unauthorized")
        """
        transport = WebSocketTransport(websocket, send_timeout=self.send_timeout)

        token = extract_credential(transport.cookie_header, self.cookie_name)
        if token is None:
            await self._reject(transport, "missing credential")
            return None

        principal = await self._verify(token)
        if principal is None:
            await self._reject(transport, "credential not recognised")
            return None

        # Verification may suspend; the hub can shut down in the meantime
        if not self.is_accepting():
            logger.info("Handshake dropped: no longer accepting connections")
            await transport.close()
            return None

        await transport.accept()
        session = Session(transport=transport, principal=principal)
        self._sessions[session.id] = session

        self.metrics['handshakes_total'].inc(result='accepted')
        self.metrics['sessions_active'].set(len(self._sessions))
        logger.info(
            f"Session registered: {session.id}",
            session_id=session.id,
            user_id=principal.user_id,
        )

        await self.send(session, ConnectedFrame(message=self.welcome_message))
        return session

    async def _verify(self, token: str) -> Optional[Principal]:
        try:
            result = self.verifier(token)
            if inspect.isawaitable(result):
                result = await result
            return result
        except Exception as e:
            logger.error(f"Verifier raised during handshake: {e}")
            return None

    async def _reject(self, transport: WebSocketTransport, why: str) -> None:
        self.metrics['handshakes_total'].inc(result='rejected')
        logger.info(f"Handshake rejected: {why}")
        try:
            await transport.close(code=POLICY_VIOLATION, reason=UNAUTHORIZED_REASON)
        except Exception as e:
            logger.debug(f"Close after rejected handshake failed: {e}")

    # =========================================================================
    # Delivery
    # =========================================================================

    async def send(self, session: Session, frame: OutboundFrame) -> bool:
        """
        Send one frame to one session.

        Returns:
            True if written; False if the transport was not open or failed
        """
        return await self.deliver(session, encode_frame(frame))

    async def deliver(self, session: Session, text: str) -> bool:
        """
        Write pre-encoded frame text to a session.

        No-op for a session that is unregistered or whose transport is not
        open. A write failure (including a send timeout) removes the session
        and forces its transport down, which ends its receive loop; nothing
        is raised.
        """
        if session.id not in self._sessions or not session.transport.is_open:
            return False
        try:
            await session.transport.send_text(text)
            return True
        except Exception as e:
            logger.debug(f"Failed to send to session {session.id}: {e!r}")
            self.remove(session)
            await session.transport.terminate()
            return False

    # =========================================================================
    # Membership
    # =========================================================================

    def remove(self, session: Session) -> bool:
        """
        Remove a session. Idempotent.

        Returns:
            True if the session was registered
        """
        if self._sessions.pop(session.id, None) is None:
            return False
        self.metrics['sessions_active'].set(len(self._sessions))
        logger.info(
            f"Session unregistered: {session.id}",
            session_id=session.id,
            user_id=session.user_id,
        )
        return True

    async def close_all(self) -> None:
        """Request close on every live session and empty the registry."""
        sessions = self.sessions()
        for session in sessions:
            try:
                await session.transport.close()
            except Exception as e:
                logger.debug(f"Error closing session {session.id}: {e}")
            self.remove(session)
        logger.info(f"Closed {len(sessions)} session(s)")

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def sessions(self) -> List[Session]:
        """Snapshot of live sessions, safe to iterate while the set changes."""
        return list(self._sessions.values())

    def sessions_for_user(self, user_id: str) -> List[Session]:
        return [s for s in self._sessions.values() if s.principal.user_id == user_id]

    def count(self) -> int:
        return len(self._sessions)

    def __contains__(self, session: Session) -> bool:
        return session.id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
