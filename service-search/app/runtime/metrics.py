"""Metrics collection facade for the search service.

Re-exports the shared Prometheus collector so the application wires metrics
from a service-local import path.
"""

from libs.common.metrics import MetricsCollector, get_metrics_collector

__all__ = ["MetricsCollector", "get_metrics_collector"]
