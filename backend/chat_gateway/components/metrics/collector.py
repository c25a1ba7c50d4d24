"""
Metrics Collector for the Chat Gateway.

Centralizes counters for observability. Increments are synchronous and
guarded by a threading lock so they can be called from the hot path and
read from health endpoints without awaiting.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any


@dataclass
class BroadcastMetrics:
    """Fan-out operations (room sends and global presence broadcasts)."""
    total: int = 0
    failed: int = 0
    recipients_failed: int = 0


@dataclass
class ConnectionMetrics:
    """Connection admission and teardown."""
    accepted: int = 0
    rejected_limit: int = 0
    rejected_auth: int = 0
    rejected_rate_limit: int = 0
    timeouts: int = 0
    stale_reaped: int = 0


@dataclass
class RelayMetrics:
    """Client events routed by the gateway."""
    routed: dict[str, int] = field(default_factory=dict)
    dropped: dict[str, int] = field(default_factory=dict)
    invalid_frames: int = 0
    queue_overflow: int = 0
    room_denied: int = 0
    status_updates: int = 0


class MetricsCollector:
    """
    Thread-safe metrics collector.

    Usage:
        metrics = MetricsCollector()
        metrics.increment_routed_sync("send-message")
        metrics.increment_dropped_sync("recipient_offline")
        snapshot = metrics.get_snapshot_sync()
    """

    def __init__(self) -> None:
        self._sync_lock = threading.Lock()
        self._broadcast = BroadcastMetrics()
        self._connection = ConnectionMetrics()
        self._relay = RelayMetrics()

    # ==========================================================================
    # Broadcast Metrics
    # ==========================================================================

    def increment_broadcast_total_sync(self) -> None:
        with self._sync_lock:
            self._broadcast.total += 1

    def increment_broadcast_failed_sync(self) -> None:
        with self._sync_lock:
            self._broadcast.failed += 1

    def add_failed_recipients_sync(self, count: int) -> None:
        with self._sync_lock:
            self._broadcast.recipients_failed += count

    # ==========================================================================
    # Connection Metrics
    # ==========================================================================

    def increment_connection_accepted_sync(self) -> None:
        with self._sync_lock:
            self._connection.accepted += 1

    def increment_connection_rejected_limit_sync(self) -> None:
        with self._sync_lock:
            self._connection.rejected_limit += 1

    def increment_connection_rejected_auth_sync(self) -> None:
        with self._sync_lock:
            self._connection.rejected_auth += 1

    def increment_connection_rejected_rate_limit_sync(self) -> None:
        with self._sync_lock:
            self._connection.rejected_rate_limit += 1

    def increment_connection_timeouts_sync(self) -> None:
        with self._sync_lock:
            self._connection.timeouts += 1

    def add_stale_reaped_sync(self, count: int) -> None:
        with self._sync_lock:
            self._connection.stale_reaped += count

    # ==========================================================================
    # Relay Metrics
    # ==========================================================================

    def increment_routed_sync(self, event: str) -> None:
        """Count an inbound event that was routed (delivered or not)."""
        with self._sync_lock:
            self._relay.routed[event] = self._relay.routed.get(event, 0) + 1

    def increment_dropped_sync(self, reason: str) -> None:
        """Count a relay dropped without delivery, by reason."""
        with self._sync_lock:
            self._relay.dropped[reason] = self._relay.dropped.get(reason, 0) + 1

    def increment_invalid_frames_sync(self) -> None:
        with self._sync_lock:
            self._relay.invalid_frames += 1

    def increment_queue_overflow_sync(self) -> None:
        with self._sync_lock:
            self._relay.queue_overflow += 1

    def increment_room_denied_sync(self) -> None:
        with self._sync_lock:
            self._relay.room_denied += 1

    def increment_status_updates_sync(self) -> None:
        with self._sync_lock:
            self._relay.status_updates += 1

    # ==========================================================================
    # Snapshot
    # ==========================================================================

    def get_snapshot_sync(self) -> dict[str, Any]:
        """
        Copy of all counters.

        Names follow {category}_{metric} with a plural category.
        """
        with self._sync_lock:
            return {
                "broadcasts_total": self._broadcast.total,
                "broadcasts_failed": self._broadcast.failed,
                "broadcasts_failed_recipients": self._broadcast.recipients_failed,
                "connections_accepted": self._connection.accepted,
                "connections_rejected_limit": self._connection.rejected_limit,
                "connections_rejected_auth": self._connection.rejected_auth,
                "connections_rejected_rate_limit": self._connection.rejected_rate_limit,
                "connections_timeouts": self._connection.timeouts,
                "connections_stale_reaped": self._connection.stale_reaped,
                "events_routed": dict(self._relay.routed),
                "events_dropped": dict(self._relay.dropped),
                "events_invalid_frames": self._relay.invalid_frames,
                "events_queue_overflow": self._relay.queue_overflow,
                "events_room_denied": self._relay.room_denied,
                "events_status_updates": self._relay.status_updates,
            }
