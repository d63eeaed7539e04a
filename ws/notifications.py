"""
Application notifications over the WebSocket hub.

Helpers for server-initiated pushes: announcements to everyone, addressed
notifications, and severity-tagged system messages.
"""

from typing import Any, Optional

from monitoring import get_logger
from ws.hub import WebSocketHub
from ws.protocols import AnnouncementFrame, NotificationFrame, SystemMessageFrame

logger = get_logger(__name__)

SEVERITIES = ("info", "warning", "error")


async def broadcast_announcement(hub: WebSocketHub, message: str) -> int:
    """Send an announcement to every connected session."""
    sent = await hub.broadcast(AnnouncementFrame(message=message))
    logger.info(f"Announcement sent to {sent} session(s)")
    return sent


async def notify_user(hub: WebSocketHub, user_id: str, data: Any) -> int:
    """
    Push a notification to every session of ``user_id``.

    Returns:
        Number of sessions reached (0 if the user is offline)
    """
    return await hub.send_to_user(user_id, NotificationFrame(data=data))


async def send_system_message(hub: WebSocketHub, message: str, severity: str = "info") -> int:
    """
    Broadcast a system message.

    Args:
        hub: Target hub
        message: Message text
        severity: One of info, warning, error

    Raises:
        ValueError: If severity is not recognised
    """
    if severity not in SEVERITIES:
        raise ValueError(f"severity must be one of {SEVERITIES}, got {severity!r}")
    return await hub.broadcast(SystemMessageFrame(message=message, severity=severity))


def get_active_connections(hub: Optional[WebSocketHub]) -> int:
    """Live session count; 0 when the hub is not running."""
    if hub is None:
        return 0
    return hub.get_client_count()
