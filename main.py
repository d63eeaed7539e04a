"""
Main entry point for Chatline Backend

Imports the FastAPI app from app.py for uvicorn to run.

@.architecture
Incoming: none --- {entry point for uvicorn server}
Processing: create_app() import, uvicorn.run() --- {2 jobs: config_loading, server_startup}
Outgoing: uvicorn server, Network (HTTP/WebSocket) --- {FastAPI application instance, HTTP/WebSocket server}
"""

import os
from app import create_app
from config.settings import get_settings

# Create app instance
app = create_app()

if __name__ == "__main__":
    import uvicorn

    settings = get_settings()

    host = os.getenv("CHATLINE_HOST", settings.server.bind_host)
    port = int(os.getenv("CHATLINE_PORT", str(settings.server.bind_port)))
    reload = os.getenv("CHATLINE_RELOAD", "false").lower() == "true"
    log_level = os.getenv("CHATLINE_LOG_LEVEL", "info")

    uvicorn.run(
        "main:app",
        host=host,
        port=port,
        reload=reload,
        log_level=log_level
    )
