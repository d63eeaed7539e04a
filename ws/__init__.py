"""
WebSocket Layer - Authenticated session management for Chatline Backend

Components:
- session.py: Session record and transport adapter
- registry.py: Handshake gating and the live-session set
- protocols.py: Inbound message models and outbound frames
- handlers.py: Protocol dispatcher (chat, ping, heartbeat acks)
- heartbeat.py: Repeating timer and liveness sweep
- hub.py: WebSocketHub composing the above
- notifications.py: Announcement / notification / system message helpers

Usage:
    from ws import WebSocketHub

    hub = WebSocketHub(verifier, generator, settings.websocket)
    hub.start()

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        await hub.serve(websocket)
"""

from .session import Session, WebSocketTransport
from .registry import SessionRegistry, POLICY_VIOLATION, UNAUTHORIZED_REASON
from .handlers import MessageHandler, ResponseGenerator
from .heartbeat import HeartbeatSupervisor, RepeatingTimer, HEARTBEAT_INTERVAL
from .hub import WebSocketHub
from .notifications import (
    broadcast_announcement,
    notify_user,
    send_system_message,
    get_active_connections,
)
from .protocols import (
    MessageType,
    ChatMessage,
    PingMessage,
    HeartbeatAckMessage,
    OutboundFrame,
    ConnectedFrame,
    ChatResponseFrame,
    PongFrame,
    ErrorFrame,
    HeartbeatFrame,
    AnnouncementFrame,
    NotificationFrame,
    SystemMessageFrame,
    ProtocolError,
    parse_inbound,
    encode_frame,
)

__all__ = [
    # Sessions
    "Session",
    "WebSocketTransport",
    "SessionRegistry",
    "POLICY_VIOLATION",
    "UNAUTHORIZED_REASON",

    # Dispatch & liveness
    "MessageHandler",
    "ResponseGenerator",
    "HeartbeatSupervisor",
    "RepeatingTimer",
    "HEARTBEAT_INTERVAL",
    "WebSocketHub",

    # Notifications
    "broadcast_announcement",
    "notify_user",
    "send_system_message",
    "get_active_connections",

    # Protocols
    "MessageType",
    "ChatMessage",
    "PingMessage",
    "HeartbeatAckMessage",
    "OutboundFrame",
    "ConnectedFrame",
    "ChatResponseFrame",
    "PongFrame",
    "ErrorFrame",
    "HeartbeatFrame",
    "AnnouncementFrame",
    "NotificationFrame",
    "SystemMessageFrame",
    "ProtocolError",
    "parse_inbound",
    "encode_frame",
]
