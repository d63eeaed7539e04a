"""
Health Checks - Monitoring Layer

Aggregated component health for ``/health/detailed``:
- system: host memory and CPU pressure, process footprint (psutil)
- websocket: hub accepting connections, live sessions, heartbeat state
- agent: chat agent readiness and request counters

@.architecture
Incoming: app.py (startup_event), Component instances --- {WebSocketHub, ChatAgent, str component_name}
Processing: check_all(), check_component(), _check_system(), register_checker(), _aggregate_status() --- {5 jobs: aggregation, health_checking, monitoring, registration, resource_monitoring}
Outgoing: app.py (/health/detailed) --- {Dict[str, Any] health status, HealthCheckResult, HealthStatus enum}
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

import psutil

# Per-component budget; a slower check is reported unhealthy
CHECK_TIMEOUT = 5.0

# Host pressure above which "system" is degraded
RESOURCE_THRESHOLD_PERCENT = 90.0


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')


@dataclass
class HealthCheckResult:
    """
    Outcome of checking one component.

    Attributes:
        component: Component name
        status: Health status
        message: Human-readable summary
        details: Raw data returned by the component
        checked_at: ISO timestamp of the check
        response_time_ms: Time the check took
    """
    component: str
    status: HealthStatus
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    checked_at: str = field(default_factory=_utc_now)
    response_time_ms: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'component': self.component,
            'status': self.status.value,
            'message': self.message,
            'details': self.details,
            'checked_at': self.checked_at,
            'response_time_ms': self.response_time_ms,
        }


class HealthChecker:
    """
    Registry of component checkers plus the built-in system check.

    A checker is any object with ``async check_health() -> dict``; the
    dict's ``healthy`` flag decides the component status and its
    ``message`` becomes the summary.
    """

    def __init__(self, timeout: float = CHECK_TIMEOUT):
        self.timeout = timeout
        self._start_time = time.time()
        self._checkers: Dict[str, Any] = {}

    def register_checker(self, name: str, checker: Any) -> None:
        self._checkers[name] = checker

    def unregister_checker(self, name: str) -> None:
        self._checkers.pop(name, None)

    async def check_all(self) -> Dict[str, Any]:
        """
        Run the system check and every registered checker concurrently.

        Returns:
            Overall status, uptime and one entry per component (system first)
        """
        started = time.perf_counter()
        results = await asyncio.gather(
            self._check_system(),
            *(self._run_checker(name) for name in list(self._checkers)),
        )
        return {
            'status': self._aggregate_status(results).value,
            'timestamp': _utc_now(),
            'uptime_seconds': round(self.get_uptime(), 1),
            'check_duration_ms': round((time.perf_counter() - started) * 1000, 2),
            'components': [r.to_dict() for r in results],
        }

    async def check_component(self, component: str) -> Optional[HealthCheckResult]:
        """
        Check one component by name.

        Returns:
            HealthCheckResult, or None if nothing is registered under that name
        """
        if component == "system":
            return await self._check_system()
        if component not in self._checkers:
            return None
        return await self._run_checker(component)

    async def _run_checker(self, name: str) -> HealthCheckResult:
        started = time.perf_counter()
        try:
            data = await asyncio.wait_for(self._checkers[name].check_health(), timeout=self.timeout)
        except asyncio.TimeoutError:
            return HealthCheckResult(
                component=name,
                status=HealthStatus.UNHEALTHY,
                message=f"Health check timed out after {self.timeout}s",
                details={'error': 'timeout'},
            )
        except Exception as e:
            return HealthCheckResult(
                component=name,
                status=HealthStatus.UNHEALTHY,
                message=f"Health check failed: {e}",
                details={'error': str(e)},
            )

        healthy = bool(data.get('healthy', False))
        return HealthCheckResult(
            component=name,
            status=HealthStatus.HEALTHY if healthy else HealthStatus.UNHEALTHY,
            message=data.get('message', 'ok' if healthy else 'unhealthy'),
            details=data,
            response_time_ms=round((time.perf_counter() - started) * 1000, 2),
        )

    async def _check_system(self) -> HealthCheckResult:
        try:
            memory = psutil.virtual_memory()
            cpu_percent = psutil.cpu_percent(interval=None)
            process = psutil.Process().memory_info()
        except Exception as e:
            return HealthCheckResult(
                component="system",
                status=HealthStatus.UNKNOWN,
                message=f"Failed to read system resources: {e}",
                details={'error': str(e)},
            )

        issues = []
        if memory.percent > RESOURCE_THRESHOLD_PERCENT:
            issues.append(f"High memory usage: {memory.percent}%")
        if cpu_percent > RESOURCE_THRESHOLD_PERCENT:
            issues.append(f"High CPU usage: {cpu_percent}%")

        return HealthCheckResult(
            component="system",
            status=HealthStatus.DEGRADED if issues else HealthStatus.HEALTHY,
            message="; ".join(issues) or "System resources healthy",
            details={
                'cpu_percent': cpu_percent,
                'memory_percent': memory.percent,
                'process_rss_mb': round(process.rss / (1024**2)),
            },
        )

    @staticmethod
    def _aggregate_status(results: List[HealthCheckResult]) -> HealthStatus:
        """Worst status wins; UNKNOWN only when nothing was checked."""
        statuses = {r.status for r in results}
        for status in (HealthStatus.UNHEALTHY, HealthStatus.DEGRADED, HealthStatus.HEALTHY):
            if status in statuses:
                return status
        return HealthStatus.UNKNOWN

    def get_uptime(self) -> float:
        return time.time() - self._start_time


# =============================================================================
# Component Checkers
# =============================================================================

class WebSocketHealthChecker:
    """Healthy while the hub accepts connections."""

    def __init__(self, hub: Any):
        self.hub = hub

    async def check_health(self) -> Dict[str, Any]:
        accepting = not self.hub.is_closed
        return {
            'healthy': accepting,
            'message': 'Accepting connections' if accepting else 'Hub shut down',
            'sessions': self.hub.get_client_count(),
            'heartbeat_running': self.hub.heartbeat.is_running,
        }


class AgentHealthChecker:
    def __init__(self, agent: Any):
        self.agent = agent

    async def check_health(self) -> Dict[str, Any]:
        return self.agent.get_health_status()


_global_health_checker: Optional[HealthChecker] = None


def get_health_checker() -> HealthChecker:
    """Get global health checker."""
    global _global_health_checker
    if _global_health_checker is None:
        _global_health_checker = HealthChecker()
    return _global_health_checker


def initialize_health_checks(
    hub: Optional[Any] = None,
    agent: Optional[Any] = None,
    checker: Optional[HealthChecker] = None,
) -> HealthChecker:
    """
    Register the websocket and agent checkers.

    Args:
        hub: WebSocketHub
        agent: ChatAgent (or any object with get_health_status())
        checker: Checker to register into (global checker if None)

    Returns:
        The configured HealthChecker
    """
    checker = checker or get_health_checker()

    if hub is not None:
        checker.register_checker('websocket', WebSocketHealthChecker(hub))
    if agent is not None and hasattr(agent, 'get_health_status'):
        checker.register_checker('agent', AgentHealthChecker(agent))

    return checker
