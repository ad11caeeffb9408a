"""
Metrics Collection System

Collects request metrics for the raster service on a private Prometheus
registry and keeps a bounded in-process buffer of recent values for health
reporting and JSON export.
"""

import time
import threading
import json
from typing import Dict, List, Optional, Any, Union, Callable
from dataclasses import dataclass, field
from collections import deque
from datetime import datetime, timedelta
from functools import wraps

import structlog
from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    CollectorRegistry,
    generate_latest,
)


@dataclass
class MetricValue:
    """Represents a single metric value with metadata."""
    name: str
    value: Union[int, float]
    timestamp: datetime
    labels: Dict[str, str] = field(default_factory=dict)
    description: str = ""


class MetricsCollector:
    """
    Metrics collection for the raster service.

    Known metric names are forwarded to Prometheus; every recorded value is
    also kept in a ring buffer so the service can report on itself without a
    scrape.
    """

    def __init__(
        self,
        enable_prometheus: bool = True,
        registry: Optional[CollectorRegistry] = None,
        buffer_size: int = 10000
    ):
        """
        Initialize the metrics collector.

        Args:
            enable_prometheus: Enable Prometheus metrics collection
            registry: Registry to register metrics on, a fresh one by default
            buffer_size: Number of recent metric values to retain
        """
        self.enable_prometheus = enable_prometheus

        self.logger = structlog.get_logger(collector_type="MetricsCollector")

        self.metrics_buffer = deque(maxlen=buffer_size)
        self.lock = threading.RLock()

        self.builtin_metrics = {
            'system_start_time': time.time(),
            'total_metrics_collected': 0,
            'metrics_collection_errors': 0,
            'last_metric_timestamp': None
        }

        self.prometheus_counters = {}
        self.prometheus_histograms = {}
        self.prometheus_gauges = {}

        if self.enable_prometheus:
            self.prometheus_registry = registry or CollectorRegistry()
            self._init_prometheus()

        self.logger.debug(
            "Metrics collector initialized",
            prometheus_enabled=self.enable_prometheus
        )

    def _init_prometheus(self) -> None:
        """Register the raster service metrics."""
        self._create_prometheus_metric(
            'counter', 'raster_queries_total',
            'Total number of raster queries',
            ['status']
        )

        self._create_prometheus_metric(
            'counter', 'raster_depth_selected_total',
            'Number of raster queries answered at each depth',
            ['depth']
        )

        self._create_prometheus_metric(
            'histogram', 'raster_query_duration_seconds',
            'Duration of raster computations'
        )

        self._create_prometheus_metric(
            'histogram', 'raster_tiles_emitted',
            'Number of tiles in each emitted render grid'
        )

        self._create_prometheus_metric(
            'counter', 'tile_requests_total',
            'Total number of tile file requests',
            ['status']
        )

        self._create_prometheus_metric(
            'gauge', 'tile_directory_available',
            'Whether the tile directory exists (1) or not (0)'
        )

    def _create_prometheus_metric(
        self,
        metric_type: str,
        name: str,
        description: str,
        labels: List[str] = None
    ) -> None:
        """Create a Prometheus metric."""
        if labels is None:
            labels = []

        if metric_type == 'counter':
            self.prometheus_counters[name] = Counter(
                name, description, labels,
                registry=self.prometheus_registry
            )
        elif metric_type == 'histogram':
            self.prometheus_histograms[name] = Histogram(
                name, description, labels,
                registry=self.prometheus_registry
            )
        elif metric_type == 'gauge':
            self.prometheus_gauges[name] = Gauge(
                name, description, labels,
                registry=self.prometheus_registry
            )
        else:
            raise ValueError(f"Unsupported metric type: {metric_type}")

    def _buffer(
        self,
        name: str,
        value: Union[int, float],
        labels: Dict[str, str],
        description: str
    ) -> None:
        self.metrics_buffer.append(MetricValue(
            name=name,
            value=value,
            timestamp=datetime.utcnow(),
            labels=labels,
            description=description
        ))
        self.builtin_metrics['total_metrics_collected'] += 1
        self.builtin_metrics['last_metric_timestamp'] = time.time()

    def increment_counter(
        self,
        name: str,
        value: Union[int, float] = 1,
        labels: Dict[str, str] = None,
        description: str = ""
    ) -> None:
        """
        Increment a counter metric.

        Args:
            name: Metric name
            value: Value to increment by
            labels: Metric labels
            description: Metric description
        """
        if labels is None:
            labels = {}

        try:
            with self.lock:
                self._buffer(name, value, labels, description)

                if self.enable_prometheus and name in self.prometheus_counters:
                    if labels:
                        self.prometheus_counters[name].labels(**labels).inc(value)
                    else:
                        self.prometheus_counters[name].inc(value)

        except Exception as e:
            self.builtin_metrics['metrics_collection_errors'] += 1
            self.logger.error(
                "Failed to increment counter",
                metric_name=name,
                error=str(e)
            )

    def record_histogram(
        self,
        name: str,
        value: Union[int, float],
        labels: Dict[str, str] = None,
        description: str = ""
    ) -> None:
        """
        Record a histogram metric.

        Args:
            name: Metric name
            value: Value to record
            labels: Metric labels
            description: Metric description
        """
        if labels is None:
            labels = {}

        try:
            with self.lock:
                self._buffer(name, value, labels, description)

                if self.enable_prometheus and name in self.prometheus_histograms:
                    if labels:
                        self.prometheus_histograms[name].labels(**labels).observe(value)
                    else:
                        self.prometheus_histograms[name].observe(value)

        except Exception as e:
            self.builtin_metrics['metrics_collection_errors'] += 1
            self.logger.error(
                "Failed to record histogram",
                metric_name=name,
                error=str(e)
            )

    def set_gauge(
        self,
        name: str,
        value: Union[int, float],
        labels: Dict[str, str] = None,
        description: str = ""
    ) -> None:
        """Set a gauge metric."""
        if labels is None:
            labels = {}

        try:
            with self.lock:
                self._buffer(name, value, labels, description)

                if self.enable_prometheus and name in self.prometheus_gauges:
                    if labels:
                        self.prometheus_gauges[name].labels(**labels).set(value)
                    else:
                        self.prometheus_gauges[name].set(value)

        except Exception as e:
            self.builtin_metrics['metrics_collection_errors'] += 1
            self.logger.error(
                "Failed to set gauge",
                metric_name=name,
                error=str(e)
            )

    def record_timing(
        self,
        name: str,
        duration: float,
        labels: Dict[str, str] = None,
        description: str = ""
    ) -> None:
        """Record a duration in seconds."""
        self.record_histogram(name, duration, labels, description)

    def time_function(self, name: str, labels: Dict[str, str] = None):
        """
        Decorator to time function execution.

        Args:
            name: Metric name
            labels: Metric labels

        Returns:
            Decorator function
        """
        def decorator(func: Callable) -> Callable:
            @wraps(func)
            def wrapper(*args, **kwargs):
                start_time = time.perf_counter()
                try:
                    return func(*args, **kwargs)
                finally:
                    self.record_timing(name, time.perf_counter() - start_time, labels)
            return wrapper
        return decorator

    def get_buffered_values(self, name: str) -> List[MetricValue]:
        with self.lock:
            return [m for m in self.metrics_buffer if m.name == name]

    def get_system_health(self) -> Dict[str, Any]:
        """Get collector health for the health endpoint."""
        with self.lock:
            collected = self.builtin_metrics['total_metrics_collected']
            errors = self.builtin_metrics['metrics_collection_errors']
            health = {
                'status': 'healthy',
                'uptime_seconds': time.time() - self.builtin_metrics['system_start_time'],
                'total_metrics_collected': collected,
                'metrics_collection_errors': errors,
                'last_metric_timestamp': self.builtin_metrics['last_metric_timestamp'],
                'metrics_buffer_size': len(self.metrics_buffer),
                'prometheus_enabled': self.enable_prometheus
            }

        if errors / max(collected, 1) > 0.1:
            health['status'] = 'degraded'

        return health

    def export_metrics(self, format: str = "json") -> str:
        """
        Export metrics as JSON (recent buffered values) or Prometheus text.

        Raises:
            ValueError: If the format is not supported
        """
        if format.lower() == "json":
            cutoff = datetime.utcnow() - timedelta(hours=1)
            with self.lock:
                recent_metrics = [
                    {
                        'name': m.name,
                        'value': m.value,
                        'timestamp': m.timestamp.isoformat(),
                        'labels': m.labels,
                        'description': m.description
                    }
                    for m in self.metrics_buffer
                    if m.timestamp >= cutoff
                ]

            return json.dumps({
                'export_timestamp': datetime.utcnow().isoformat(),
                'metrics_count': len(recent_metrics),
                'time_range': '1 hour',
                'metrics': recent_metrics
            }, indent=2)

        if format.lower() == "prometheus":
            if not self.enable_prometheus:
                return ""
            return generate_latest(self.prometheus_registry).decode('utf-8')

        raise ValueError(f"Unsupported export format: {format}")
