"""
Metrics Collection - Monitoring Layer

Prometheus-compatible in-process metrics for the session layer:
- Counters (monotonically increasing)
- Gauges (can go up or down)
- Histograms (distribution of values)

@.architecture
Incoming: ws/registry.py, ws/handlers.py, ws/heartbeat.py, app.py --- {str metric_name, float value, label values}
Processing: inc(), dec(), set(), observe(), collect_all(), export_prometheus() --- {4 jobs: collection, export, metric_creation, recording}
Outgoing: app.py (/metrics), tests --- {Counter/Gauge/Histogram instances, Dict[str, Any] collected metrics, str Prometheus format}
"""

import threading
from typing import Any, Dict, List, Optional, Tuple
from collections import defaultdict
from enum import Enum


class MetricType(str, Enum):
    """Metric types following Prometheus conventions."""
    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"


class _LabelledMetric:
    """Shared label handling for all metric kinds."""

    metric_type: MetricType

    def __init__(self, name: str, help_text: str, labels: Optional[List[str]] = None):
        self.name = name
        self.help_text = help_text
        self.label_names = labels or []
        self._lock = threading.Lock()

    def _label_key(self, labels: Dict[str, str]) -> Tuple[str, ...]:
        """Validate and order labels."""
        if set(labels.keys()) != set(self.label_names):
            raise ValueError(f"Expected labels {self.label_names}, got {list(labels.keys())}")
        return tuple(str(labels[name]) for name in self.label_names)


class Counter(_LabelledMetric):
    """
    Counter metric - monotonically increasing value.

    Use for: handshakes, frames received, evictions, failures.
    """

    metric_type = MetricType.COUNTER

    def __init__(self, name: str, help_text: str, labels: Optional[List[str]] = None):
        super().__init__(name, help_text, labels)
        self._values: Dict[Tuple[str, ...], float] = defaultdict(float)

    def inc(self, value: float = 1.0, **labels: str) -> None:
        if value < 0:
            raise ValueError("Counter can only be incremented by non-negative values")
        key = self._label_key(labels)
        with self._lock:
            self._values[key] += value

    def get(self, **labels: str) -> float:
        return self._values.get(self._label_key(labels), 0.0)

    def collect(self) -> List[Tuple[Dict[str, str], float]]:
        with self._lock:
            return [
                (dict(zip(self.label_names, key)), value)
                for key, value in self._values.items()
            ]


class Gauge(Counter):
    """
    Gauge metric - can go up or down.

    Use for: live session count.
    """

    metric_type = MetricType.GAUGE

    def inc(self, value: float = 1.0, **labels: str) -> None:
        key = self._label_key(labels)
        with self._lock:
            self._values[key] += value

    def dec(self, value: float = 1.0, **labels: str) -> None:
        self.inc(-value, **labels)

    def set(self, value: float, **labels: str) -> None:
        key = self._label_key(labels)
        with self._lock:
            self._values[key] = value


class Histogram(_LabelledMetric):
    """
    Histogram metric - distribution of values into cumulative buckets.

    Use for: response generator latency.
    """

    metric_type = MetricType.HISTOGRAM

    DEFAULT_BUCKETS = [0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0]

    def __init__(
        self,
        name: str,
        help_text: str,
        labels: Optional[List[str]] = None,
        buckets: Optional[List[float]] = None
    ):
        super().__init__(name, help_text, labels)
        self.buckets = sorted(buckets or self.DEFAULT_BUCKETS)
        self._observations: Dict[Tuple[str, ...], Dict[str, Any]] = {}

    def observe(self, value: float, **labels: str) -> None:
        key = self._label_key(labels)
        with self._lock:
            stats = self._observations.setdefault(key, {
                'buckets': {b: 0 for b in self.buckets},
                'sum': 0.0,
                'count': 0,
            })
            for bound in self.buckets:
                if value <= bound:
                    stats['buckets'][bound] += 1
            stats['sum'] += value
            stats['count'] += 1

    def get_stats(self, **labels: str) -> Dict[str, Any]:
        stats = self._observations.get(self._label_key(labels))
        if not stats:
            return {'count': 0, 'sum': 0.0, 'avg': 0.0}
        return {
            'count': stats['count'],
            'sum': stats['sum'],
            'avg': stats['sum'] / stats['count'],
        }

    def collect(self) -> List[Tuple[Dict[str, str], Dict[str, Any]]]:
        with self._lock:
            return [
                (dict(zip(self.label_names, key)), dict(stats))
                for key, stats in self._observations.items()
            ]


class MetricsRegistry:
    """
    Central registry for all metrics.

    Get-or-create semantics: asking twice for the same name returns the
    same metric object.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._metrics: Dict[str, _LabelledMetric] = {}

    def _get_or_create(self, cls, name: str, *args: Any) -> Any:
        with self._lock:
            metric = self._metrics.get(name)
            if metric is None:
                metric = cls(name, *args)
                self._metrics[name] = metric
            elif type(metric) is not cls:
                raise ValueError(f"Metric '{name}' already registered as {metric.metric_type.value}")
            return metric

    def counter(self, name: str, help_text: str, labels: Optional[List[str]] = None) -> Counter:
        return self._get_or_create(Counter, name, help_text, labels)

    def gauge(self, name: str, help_text: str, labels: Optional[List[str]] = None) -> Gauge:
        return self._get_or_create(Gauge, name, help_text, labels)

    def histogram(
        self,
        name: str,
        help_text: str,
        labels: Optional[List[str]] = None,
        buckets: Optional[List[float]] = None
    ) -> Histogram:
        return self._get_or_create(Histogram, name, help_text, labels, buckets)

    def collect_all(self) -> Dict[str, Any]:
        """
        Collect all metrics for export.

        Returns:
            Dict mapping metric names to type, help text and values
        """
        return {
            name: {
                'type': metric.metric_type.value,
                'help': metric.help_text,
                'values': metric.collect(),
            }
            for name, metric in self._metrics.items()
        }

    def export_prometheus(self) -> str:
        """
        Export metrics in Prometheus text format.

        Returns:
            Prometheus-formatted metrics string
        """
        lines = []
        for name, metric in self._metrics.items():
            lines.append(f"# HELP {name} {metric.help_text}")
            lines.append(f"# TYPE {name} {metric.metric_type.value}")
            if isinstance(metric, Histogram):
                for label_dict, stats in metric.collect():
                    for bound, count in stats['buckets'].items():
                        bucket_labels = self._format_labels(dict(label_dict, le=str(bound)))
                        lines.append(f"{name}_bucket{bucket_labels} {count}")
                    label_str = self._format_labels(label_dict)
                    lines.append(f"{name}_sum{label_str} {stats['sum']}")
                    lines.append(f"{name}_count{label_str} {stats['count']}")
            else:
                for label_dict, value in metric.collect():
                    lines.append(f"{name}{self._format_labels(label_dict)} {value}")
        return '\n'.join(lines) + '\n'

    @staticmethod
    def _format_labels(labels: Dict[str, str]) -> str:
        if not labels:
            return ""
        return "{" + ",".join(f'{k}="{v}"' for k, v in labels.items()) + "}"


# Global registry instance
_global_registry: Optional[MetricsRegistry] = None


def get_registry() -> MetricsRegistry:
    """Get global metrics registry."""
    global _global_registry
    if _global_registry is None:
        _global_registry = MetricsRegistry()
    return _global_registry


def counter(name: str, help_text: str, labels: Optional[List[str]] = None) -> Counter:
    """Get or create counter from global registry."""
    return get_registry().counter(name, help_text, labels)


def gauge(name: str, help_text: str, labels: Optional[List[str]] = None) -> Gauge:
    """Get or create gauge from global registry."""
    return get_registry().gauge(name, help_text, labels)


def histogram(
    name: str,
    help_text: str,
    labels: Optional[List[str]] = None,
    buckets: Optional[List[float]] = None
) -> Histogram:
    """Get or create histogram from global registry."""
    return get_registry().histogram(name, help_text, labels, buckets)


def setup_standard_metrics(registry: Optional[MetricsRegistry] = None) -> Dict[str, Any]:
    """
    Create the session layer metrics.

    Args:
        registry: Registry to register into (global registry if None)

    Returns:
        Dict of metric objects keyed by short name
    """
    registry = registry or get_registry()

    return {
        'sessions_active': registry.gauge(
            'chatline_ws_sessions_active',
            'Live authenticated WebSocket sessions'
        ),
        'handshakes_total': registry.counter(
            'chatline_ws_handshakes_total',
            'WebSocket handshake attempts',
            labels=['result']
        ),
        'frames_total': registry.counter(
            'chatline_ws_frames_total',
            'Inbound frames by message type',
            labels=['type']
        ),
        'evictions_total': registry.counter(
            'chatline_ws_evictions_total',
            'Sessions evicted by the heartbeat sweep'
        ),
        'chat_failures_total': registry.counter(
            'chatline_chat_failures_total',
            'Chat messages whose response generation failed'
        ),
        'chat_duration_seconds': registry.histogram(
            'chatline_chat_duration_seconds',
            'Response generator latency in seconds'
        ),
    }
