"""
Monitoring & Observability Layer

Provides monitoring and observability for the Chatline backend:
- Structured logging (JSON formatting, session context injection)
- Metrics collection (Prometheus-compatible counters, gauges, histograms)
- Health checks (system, WebSocket hub, chat agent)
"""

# Logging
from .logging import (
    JSONFormatter,
    ContextFilter,
    StructuredLogger,
    configure_logging,
    configure_from_preset,
    configure_for_environment,
    get_logger,
    set_session_context,
    clear_session_context,
    get_user_id,
    get_session_id,
    LOGGING_PRESETS,
)

# Metrics
from .metrics import (
    MetricType,
    Counter,
    Gauge,
    Histogram,
    MetricsRegistry,
    get_registry,
    counter,
    gauge,
    histogram,
    setup_standard_metrics,
)

# Health checks
from .health import (
    HealthStatus,
    HealthCheckResult,
    HealthChecker,
    WebSocketHealthChecker,
    AgentHealthChecker,
    get_health_checker,
    initialize_health_checks,
)

__all__ = [
    # Logging
    'JSONFormatter',
    'ContextFilter',
    'StructuredLogger',
    'configure_logging',
    'configure_from_preset',
    'configure_for_environment',
    'get_logger',
    'set_session_context',
    'clear_session_context',
    'get_user_id',
    'get_session_id',
    'LOGGING_PRESETS',

    # Metrics
    'MetricType',
    'Counter',
    'Gauge',
    'Histogram',
    'MetricsRegistry',
    'get_registry',
    'counter',
    'gauge',
    'histogram',
    'setup_standard_metrics',

    # Health
    'HealthStatus',
    'HealthCheckResult',
    'HealthChecker',
    'WebSocketHealthChecker',
    'AgentHealthChecker',
    'get_health_checker',
    'initialize_health_checks',
]
