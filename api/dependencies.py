"""
API Dependencies

FastAPI dependency injection for the WebSocket hub. The hub lives on
``app.state`` from startup to shutdown, so every route of the app that
owns it sees the same instance.

@.architecture
Incoming: app.py route handlers --- {Depends(get_hub) injections}
Processing: get_hub() --- {1 job: dependency_injection}
Outgoing: app.py (/health, websocket_endpoint) --- {WebSocketHub instance or None}
"""

from typing import Optional

from starlette.requests import HTTPConnection

from ws.hub import WebSocketHub


def get_hub(connection: HTTPConnection) -> Optional[WebSocketHub]:
    """
    Get the WebSocket hub, or None before startup / after shutdown.

    Works for both HTTP and WebSocket routes.
    """
    return getattr(connection.app.state, "hub", None)
