"""
Prometheus Metrics Export for the Chat Gateway.

Formats internal metrics in Prometheus text exposition format.
No external dependencies required.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Any, TYPE_CHECKING

if TYPE_CHECKING:
    from chat_gateway.connection_manager import ConnectionManager


class MetricType(str, Enum):
    """Prometheus metric types."""

    COUNTER = "counter"
    GAUGE = "gauge"


def _escape_label(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


class PrometheusFormatter:
    """
    Formats metrics in Prometheus text exposition format.

    Reference: https://prometheus.io/docs/instrumenting/exposition_formats/

    Usage:
        formatter = PrometheusFormatter()
        output = formatter.format_all_metrics(await manager.get_stats())
    """

    def __init__(self, prefix: str = "chatgateway"):
        self._prefix = prefix

    def _name(self, name: str) -> str:
        return f"{self._prefix}_{name}"

    def format_metric(
        self,
        name: str,
        value: float | int,
        help_text: str,
        metric_type: MetricType,
    ) -> str:
        """Format a single unlabelled metric."""
        full = self._name(name)
        return "\n".join([
            f"# HELP {full} {help_text}",
            f"# TYPE {full} {metric_type.value}",
            f"{full} {value}",
        ])

    def format_labelled(
        self,
        name: str,
        label: str,
        values: dict[str, int],
        help_text: str,
        metric_type: MetricType = MetricType.COUNTER,
    ) -> str:
        """Format one metric family with a single label dimension."""
        full = self._name(name)
        lines = [f"# HELP {full} {help_text}", f"# TYPE {full} {metric_type.value}"]
        for key in sorted(values):
            lines.append(f'{full}{{{label}="{_escape_label(key)}"}} {values[key]}')
        return "\n".join(lines)

    def format_all_metrics(self, stats: dict[str, Any]) -> str:
        """
        Format all metrics from ConnectionManager.get_stats().

        Returns:
            Complete Prometheus exposition format string.
        """
        metrics = stats.get("metrics", {})
        heartbeat = stats.get("heartbeat_stats", {})
        lines: list[str] = []

        lines.append(self.format_metric(
            "connections_total",
            stats.get("total_connections", 0),
            "Current number of active WebSocket connections",
            MetricType.GAUGE,
        ))
        lines.append(self.format_metric(
            "connections_max",
            stats.get("max_connections", 0),
            "Maximum allowed WebSocket connections",
            MetricType.GAUGE,
        ))
        lines.append(self.format_metric(
            "users_online",
            stats.get("users_online", 0),
            "Distinct users with at least one live connection",
            MetricType.GAUGE,
        ))
        lines.append(self.format_metric(
            "rooms_active",
            stats.get("rooms", {}).get("rooms", 0),
            "Rooms with at least one member",
            MetricType.GAUGE,
        ))
        lines.append(self.format_metric(
            "dead_connections_pending",
            stats.get("dead_connections_pending", 0),
            "Dead connections pending cleanup",
            MetricType.GAUGE,
        ))

        lines.append(self.format_metric(
            "broadcasts_total",
            metrics.get("broadcasts_total", 0),
            "Total fan-out operations",
            MetricType.COUNTER,
        ))
        lines.append(self.format_metric(
            "broadcasts_failed_recipients",
            metrics.get("broadcasts_failed_recipients", 0),
            "Total failed recipients across fan-outs",
            MetricType.COUNTER,
        ))

        lines.append(self.format_labelled(
            "connections_rejected_total",
            "reason",
            {
                "limit": metrics.get("connections_rejected_limit", 0),
                "auth": metrics.get("connections_rejected_auth", 0),
                "rate_limit": metrics.get("connections_rejected_rate_limit", 0),
            },
            "Rejected connections by reason",
        ))

        lines.append(self.format_labelled(
            "events_routed_total",
            "event",
            metrics.get("events_routed", {}),
            "Client events routed by type",
        ))
        lines.append(self.format_labelled(
            "events_dropped_total",
            "reason",
            metrics.get("events_dropped", {}),
            "Relays dropped without delivery by reason",
        ))
        lines.append(self.format_metric(
            "events_invalid_frames",
            metrics.get("events_invalid_frames", 0),
            "Frames rejected as malformed",
            MetricType.COUNTER,
        ))
        lines.append(self.format_metric(
            "events_status_updates",
            metrics.get("events_status_updates", 0),
            "Friend status updates received from the event bus",
            MetricType.COUNTER,
        ))

        lines.append(self.format_metric(
            "heartbeat_tracked_connections",
            heartbeat.get("tracked_connections", 0),
            "Connections tracked by heartbeat",
            MetricType.GAUGE,
        ))
        lines.append(self.format_metric(
            "scrape_timestamp",
            int(time.time()),
            "Timestamp of metrics scrape",
            MetricType.GAUGE,
        ))

        return "\n".join(lines) + "\n"


_formatter: PrometheusFormatter | None = None


def get_prometheus_formatter() -> PrometheusFormatter:
    global _formatter
    if _formatter is None:
        _formatter = PrometheusFormatter()
    return _formatter


async def generate_prometheus_metrics(manager: "ConnectionManager") -> str:
    """Generate Prometheus metrics from a ConnectionManager."""
    stats = await manager.get_stats()
    return get_prometheus_formatter().format_all_metrics(stats)
