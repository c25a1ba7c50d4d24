"""
Metrics collection and Prometheus exposition.
"""

from chat_gateway.components.metrics.collector import MetricsCollector
from chat_gateway.components.metrics.prometheus import (
    PrometheusFormatter,
    generate_prometheus_metrics,
)

__all__ = [
    "MetricsCollector",
    "PrometheusFormatter",
    "generate_prometheus_metrics",
]
