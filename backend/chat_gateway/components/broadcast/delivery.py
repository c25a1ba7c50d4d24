"""
Connection Broadcaster.

Sends event frames to connections, resolved by connection ID through the
ConnectionIndex. Failed sends mark the connection dead for the cleanup
loop; delivery never raises into the caller.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from typing import Any, Callable, TYPE_CHECKING

from starlette.websockets import WebSocketState

from shared.config.logging import get_logger

if TYPE_CHECKING:
    from fastapi import WebSocket
    from chat_gateway.components.connection.index import ConnectionIndex
    from chat_gateway.components.metrics.collector import MetricsCollector

logger = get_logger(__name__)


def is_ws_connected(ws: "WebSocket") -> bool:
    """
    Check if a WebSocket is in connected state before sending.

    Starlette does not expose transitional states, so a connection may
    still appear connected briefly after a disconnect was initiated.
    """
    return (
        ws.client_state == WebSocketState.CONNECTED
        and ws.application_state == WebSocketState.CONNECTED
    )


class ConnectionBroadcaster:
    """
    Delivers frames to one connection, a room's members, or everyone.

    Multi-recipient sends run in batches of ``batch_size`` with
    asyncio.gather so a slow client cannot serialize the whole fan-out.
    """

    def __init__(
        self,
        index: "ConnectionIndex",
        metrics: "MetricsCollector",
        mark_dead_callback: Callable[[str], None],
        batch_size: int = 50,
    ) -> None:
        """
        Args:
            index: Connection ID -> ClientConnection lookup.
            metrics: Collects fan-out metrics.
            mark_dead_callback: Called with the ID of a connection whose send failed.
            batch_size: Connections sent to in parallel per batch.
        """
        self._index = index
        self._metrics = metrics
        self._mark_dead = mark_dead_callback
        self._batch_size = max(1, batch_size)

    async def send_to_connection(self, connection_id: str, payload: dict[str, Any]) -> bool:
        """
        Send to a single connection.

        Returns:
            True if sent, False if the connection is unknown or the send failed.
        """
        connection = self._index.get(connection_id)
        if connection is None:
            return False

        ws = connection.websocket
        if not is_ws_connected(ws):
            self._mark_dead(connection_id)
            return False
        try:
            await ws.send_json(payload)
            return True
        except Exception as e:
            logger.debug(
                "Send failed",
                connection_id=connection_id,
                error=type(e).__name__,
            )
            self._mark_dead(connection_id)
            return False

    async def send_to_connections(
        self,
        connection_ids: Iterable[str],
        payload: dict[str, Any],
        context: str = "fanout",
    ) -> int:
        """
        Send to several connections in parallel batches.

        Returns:
            Number of connections that received the frame.
        """
        targets = list(connection_ids)
        if not targets:
            return 0

        sent = 0
        failed = 0
        for i in range(0, len(targets), self._batch_size):
            batch = targets[i : i + self._batch_size]
            results = await asyncio.gather(
                *[self.send_to_connection(conn_id, payload) for conn_id in batch],
                return_exceptions=True,
            )
            for result in results:
                if result is True:
                    sent += 1
                else:
                    failed += 1
                    if isinstance(result, BaseException):
                        logger.debug(
                            "Batch send exception",
                            context=context,
                            error=str(result),
                        )

        self._metrics.increment_broadcast_total_sync()
        if failed:
            self._metrics.increment_broadcast_failed_sync()
            self._metrics.add_failed_recipients_sync(failed)
            logger.debug(
                "Fan-out completed with failures",
                context=context,
                sent=sent,
                failed=failed,
                total=len(targets),
            )
        return sent

    async def broadcast(self, payload: dict[str, Any], exclude: str | None = None) -> int:
        """Send to every registered connection, optionally excluding one."""
        targets = [conn_id for conn_id in self._index.ids() if conn_id != exclude]
        return await self.send_to_connections(targets, payload, "global")
