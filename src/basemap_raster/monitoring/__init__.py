"""
Monitoring

Prometheus-backed metrics for raster queries and tile requests.
"""

from .metrics import MetricsCollector, MetricValue

__all__ = [
    "MetricsCollector",
    "MetricValue"
]
