"""
FastAPI Application Factory

Creates and configures the FastAPI application with:
- Middleware (CORS, request logging, error handling)
- Health and metrics endpoints
- The authenticated WebSocket endpoint
- Lifecycle management (startup/shutdown)

@.architecture
Incoming: main.py, config/settings.py, ws/hub.py, core/agent.py, security/auth.py --- {Settings object, verifier and generator callables}
Processing: create_app(), startup_event(), shutdown_event(), websocket_endpoint(), not_found_handler() --- {6 jobs: application_creation, dependency_injection, health_monitoring, lifecycle_management, middleware_registration, routing_registration}
Outgoing: main.py, Frontend (HTTP/WebSocket) --- {FastAPI application instance, HTTP responses, WebSocket sessions}
"""

import time
from datetime import datetime, timezone
from typing import Optional

import psutil
from fastapi import Depends, FastAPI, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from api.dependencies import get_hub
from api.middleware import RequestLoggingMiddleware, create_error_handler_middleware
from config.settings import Settings, get_settings
from core.agent import ChatAgent
from monitoring import (
    HealthChecker,
    MetricsRegistry,
    configure_for_environment,
    get_logger,
    initialize_health_checks,
    setup_standard_metrics,
)
from security.auth import AuthConfig, AuthenticationManager, Verifier
from ws import WebSocketHub
from ws.handlers import ResponseGenerator

logger = get_logger(__name__)


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def create_app(
    verifier: Optional[Verifier] = None,
    generator: Optional[ResponseGenerator] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        verifier: Handshake credential verifier (development verifier if None)
        generator: Chat response generator (ChatAgent.run if None)
        settings: Application settings (loaded from config if None)

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()

    configure_for_environment(
        settings.environment,
        level=settings.monitoring.log_level,
        format_type=settings.monitoring.log_format,
    )

    logger.info(f"Creating {settings.app_name} application (environment: {settings.environment})")

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Authenticated WebSocket session layer for chat agents",
        redirect_slashes=False,
    )

    # Per-application state
    metrics_registry = MetricsRegistry()
    metrics = setup_standard_metrics(metrics_registry)
    health_checker = HealthChecker()
    started_at = time.time()

    agent: Optional[ChatAgent] = None
    if generator is None:
        agent = ChatAgent(settings.agent)
        generator = agent.run

    if verifier is None:
        verifier = AuthenticationManager(AuthConfig(
            environment=settings.environment,
            dev_user_identity=settings.auth.dev_user_identity,
            cookie_name=settings.websocket.auth_cookie,
        ))

    app.state.settings = settings
    app.state.metrics_registry = metrics_registry
    app.state.health_checker = health_checker
    app.state.agent = agent
    app.state.hub = None

    # ==========================================================================
    # Middleware Configuration
    # ==========================================================================

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.server.allowed_origins,
        allow_credentials=settings.server.cors_allow_credentials,
        allow_methods=settings.server.cors_allow_methods,
        allow_headers=settings.server.cors_allow_headers,
    )

    app.add_middleware(RequestLoggingMiddleware)

    middleware_class, middleware_kwargs = create_error_handler_middleware(
        development=settings.environment == "development"
    )
    app.add_middleware(middleware_class, **middleware_kwargs)

    # ==========================================================================
    # HTTP Routes
    # ==========================================================================

    @app.get("/")
    async def root():
        """Service information."""
        return JSONResponse({
            "message": f"{settings.app_name} is running",
            "timestamp": _utc_now(),
            "version": settings.app_version,
            "environment": settings.environment,
        })

    @app.get("/health")
    async def health_check(hub: Optional[WebSocketHub] = Depends(get_hub)):
        """Quick liveness check with process memory and live session count."""
        memory = psutil.Process().memory_info()
        return JSONResponse({
            "status": "OK",
            "uptime_seconds": round(time.time() - started_at),
            "connections": hub.get_client_count() if hub is not None else 0,
            "memory": {
                "rss_mb": round(memory.rss / (1024**2)),
                "vms_mb": round(memory.vms / (1024**2)),
            },
            "timestamp": _utc_now(),
        })

    @app.get("/health/detailed")
    async def detailed_health_check():
        """Aggregated component health (system, websocket, agent)."""
        return JSONResponse(await health_checker.check_all())

    @app.get("/metrics")
    async def metrics_endpoint():
        """Prometheus text exposition."""
        if not settings.monitoring.metrics_enabled:
            return JSONResponse(status_code=404, content={"error": "Metrics disabled"})
        return PlainTextResponse(metrics_registry.export_prometheus())

    @app.exception_handler(404)
    async def not_found_handler(request: Request, exc: Exception):
        return JSONResponse(
            status_code=404,
            content={
                "error": "Route not found",
                "path": request.url.path,
                "method": request.method,
                "timestamp": _utc_now(),
            },
        )

    # ==========================================================================
    # WebSocket Endpoint
    # ==========================================================================

    @app.websocket(settings.websocket.path)
    async def websocket_endpoint(websocket: WebSocket, hub: Optional[WebSocketHub] = Depends(get_hub)):
        """
        Authenticated WebSocket endpoint.

        Handles:
        - Cookie credential handshake
        - chat / ping / heartbeat_ack messages
        - Session lifecycle
        """
        if hub is None:
            # Hub not initialized yet (application starting up)
            await websocket.close(code=1011, reason="Service unavailable")
            return
        await hub.serve(websocket)

    # ==========================================================================
    # Lifecycle Events
    # ==========================================================================

    @app.on_event("startup")
    async def startup_event():
        """
        Application startup.

        Initializes:
        - Chat agent (when no generator was injected)
        - WebSocket hub and heartbeat
        - Health checks
        """
        logger.info("=== Application Startup ===")

        if agent is not None:
            await agent.start()

        hub = WebSocketHub(verifier, generator, settings.websocket, metrics=metrics)
        hub.start()
        app.state.hub = hub
        logger.info(f"WebSocket hub listening on {settings.websocket.path}")

        initialize_health_checks(hub=hub, agent=agent, checker=health_checker)

        logger.info("=== Startup Complete ===")

    @app.on_event("shutdown")
    async def shutdown_event():
        """
        Application shutdown.

        Cleanup:
        - Close every session and stop the heartbeat
        - Stop the chat agent
        """
        logger.info("=== Application Shutdown ===")

        hub = app.state.hub
        if hub is not None:
            try:
                await hub.shutdown()
            except Exception as e:
                logger.error(f"Error shutting down WebSocket hub: {e}")

        if agent is not None:
            try:
                await agent.stop()
            except Exception as e:
                logger.error(f"Error stopping chat agent: {e}")

        app.state.hub = None
        logger.info("=== Shutdown Complete ===")

    return app
