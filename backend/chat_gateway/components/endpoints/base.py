"""
WebSocket Endpoint Base Class.

Common lifecycle for gateway endpoints, composed from mixins:
- MessageValidationMixin: Message size and rate limit checks
- HeartbeatMixin: Heartbeat recording
- ConnectionLifecycleMixin: Lifecycle audit logging

Frames are received by the endpoint's receive loop and handed to a single
worker task through a bounded queue, so one connection's events are
processed strictly in order while other connections proceed.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from fastapi import WebSocket, WebSocketDisconnect

from shared.config.logging import audit_ws_connection, get_logger
from shared.infrastructure.correlation import bind_connection_id, reset_connection_id
from chat_gateway.components.connection.heartbeat import handle_heartbeat
from chat_gateway.components.connection.index import new_connection_id
from chat_gateway.components.core.constants import WSCloseCode, WSConstants
from chat_gateway.components.core.context import ConnectionContext, sanitize_log_data
from chat_gateway.components.endpoints.mixins import (
    ConnectionLifecycleMixin,
    HeartbeatMixin,
    MessageValidationMixin,
    TokenRevalidationMixin,
)
from chat_gateway.components.events.types import OutboundEventType, outbound

if TYPE_CHECKING:
    from chat_gateway.connection_manager import ConnectionManager

logger = get_logger(__name__)


class WebSocketEndpointBase(
    MessageValidationMixin,
    HeartbeatMixin,
    ConnectionLifecycleMixin,
    ABC,
):
    """
    Base class for WebSocket endpoints.

    Lifecycle:
    1. Accept the handshake
    2. Validate authentication (connect_error + close on failure)
    3. Register with the ConnectionManager (connect_error + 1013 at capacity)
    4. Receive loop feeding the per-connection worker
    5. Cancel the worker and disconnect, whatever ended the loop

    Subclasses implement:
    - validate_auth(): Resolve the identity, or close and return None
    - register_connection(): Register with the ConnectionManager
    - unregister_connection(): Idempotent removal
    - handle_message(): Process one non-heartbeat frame
    """

    def __init__(
        self,
        websocket: WebSocket,
        manager: "ConnectionManager",
        endpoint_name: str,
        receive_timeout: float = WSConstants.WS_RECEIVE_TIMEOUT,
        max_message_size: int = 64 * 1024,
        queue_size: int = 100,
    ):
        """
        Args:
            websocket: The WebSocket connection.
            manager: ConnectionManager instance.
            endpoint_name: Name for logging (e.g., "/ws/chat").
            receive_timeout: Idle timeout for receiving frames.
            max_message_size: Largest accepted text frame, in characters.
            queue_size: Frames buffered for the worker before dropping.
        """
        self.websocket = websocket
        self.manager = manager
        self.endpoint_name = endpoint_name
        self.receive_timeout = receive_timeout
        self.max_message_size = max_message_size

        self.connection_id = new_connection_id()
        self.context: ConnectionContext | None = None
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=queue_size)
        self._worker: asyncio.Task | None = None
        self._is_running = False

    @abstractmethod
    async def validate_auth(self) -> dict[str, Any] | None:
        """
        Validate authentication for this connection.

        Returns:
            Auth data with a "user_id" key, or None if invalid (connection
            already closed).
        """

    @abstractmethod
    async def register_connection(self, context: ConnectionContext) -> None:
        """
        Raises:
            ConnectionError: If registration is refused.
        """

    @abstractmethod
    async def unregister_connection(self, context: ConnectionContext) -> None:
        """Remove the connection; must be safe to call more than once."""

    async def handle_message(self, data: str) -> None:
        """Handle one non-heartbeat frame. Default logs and ignores it."""
        logger.debug(
            "Unhandled message received",
            endpoint=self.endpoint_name,
            identifier=self.context.identifier if self.context else "unknown",
            message=sanitize_log_data(data),
        )

    async def send_connect_error(self, message: str) -> None:
        """Send the single connect_error frame preceding a refusal close."""
        try:
            await self.websocket.send_json(
                outbound(OutboundEventType.CONNECT_ERROR, {"message": message})
            )
        except (ConnectionError, RuntimeError, OSError) as e:
            logger.debug("connect_error not delivered", error=type(e).__name__)

    async def run(self) -> None:
        """
        Main entry point - run the WebSocket endpoint.

        The connection ID is bound to the task context for log correlation,
        and inherited by the worker task.
        """
        binding = bind_connection_id(self.connection_id)
        try:
            await self._run()
        finally:
            reset_connection_id(binding)

    async def _run(self) -> None:
        self.context = ConnectionContext.from_websocket(
            self.websocket, self.endpoint_name, self.connection_id
        )

        try:
            await asyncio.wait_for(
                self.websocket.accept(),
                timeout=WSConstants.WS_ACCEPT_TIMEOUT,
            )
        except asyncio.TimeoutError:
            logger.warning("WebSocket accept timed out", endpoint=self.endpoint_name)
            return

        auth_data = await self.validate_auth()
        if auth_data is None:
            return
        self.context.user_id = auth_data["user_id"]

        try:
            await self.register_connection(self.context)
        except ConnectionError as e:
            self.log_connect_rejected(str(e))
            await self.send_connect_error(str(e))
            await self._close(WSCloseCode.SERVER_OVERLOADED, "Connection limit reached")
            return

        self.log_connect()

        self._is_running = True
        self._worker = asyncio.create_task(self._drain_queue())
        try:
            await self._message_loop()
        except WebSocketDisconnect:
            self.log_disconnect("client_disconnect")
        finally:
            self._is_running = False
            await self._stop_worker()
            await self.unregister_connection(self.context)

    async def _pre_message_hook(self) -> bool:
        """
        Hook called before processing each frame.

        Returns:
            True to continue processing, False to close connection.
        """
        return True

    async def _message_loop(self) -> None:
        """
        Receive loop.

        Handles:
        - Receive with timeout
        - Message size validation
        - Rate limiting
        - Heartbeat tracking
        - Pre-message hook (credential revalidation)
        - Heartbeat responses
        - Hand-off to the worker queue
        """
        while self._is_running:
            data = await self._receive_with_timeout()
            if data is None:
                logger.info(
                    "Connection timed out (no messages)",
                    endpoint=self.endpoint_name,
                    identifier=self.context.identifier if self.context else "unknown",
                    timeout=self.receive_timeout,
                )
                self.manager.metrics.increment_connection_timeouts_sync()
                await self._close(WSCloseCode.NORMAL, "Connection timeout")
                break

            if not await self.validate_message_size(data):
                break

            if not await self.check_rate_limit():
                break

            self.record_heartbeat()

            if not await self._pre_message_hook():
                break

            if await handle_heartbeat(self.websocket, data):
                continue

            self._enqueue(data)

    def _enqueue(self, data: str) -> None:
        try:
            self._queue.put_nowait(data)
        except asyncio.QueueFull:
            self.manager.metrics.increment_queue_overflow_sync()
            logger.warning(
                "Inbound queue full, frame dropped",
                endpoint=self.endpoint_name,
                identifier=self.context.identifier if self.context else "unknown",
                queue_size=self._queue.maxsize,
            )

    async def _drain_queue(self) -> None:
        """Worker: process queued frames one at a time, in arrival order."""
        while True:
            data = await self._queue.get()
            try:
                await self.handle_message(data)
            except Exception as e:
                # One failed frame must not end the connection
                logger.error(
                    "Error handling frame",
                    endpoint=self.endpoint_name,
                    identifier=self.context.identifier if self.context else "unknown",
                    error=str(e),
                    exc_info=True,
                )
            finally:
                self._queue.task_done()

    async def _stop_worker(self) -> None:
        if self._worker is None:
            return
        self._worker.cancel()
        with contextlib.suppress(asyncio.CancelledError, asyncio.TimeoutError):
            await asyncio.wait_for(self._worker, timeout=WSConstants.WORKER_SHUTDOWN_TIMEOUT)
        self._worker = None

    async def _receive_with_timeout(self) -> str | None:
        """
        Returns:
            Message data, or None on timeout.
        """
        try:
            return await asyncio.wait_for(
                self.websocket.receive_text(),
                timeout=self.receive_timeout,
            )
        except asyncio.TimeoutError:
            return None

    async def _close(self, code: int, reason: str) -> None:
        try:
            await self.websocket.close(code=code, reason=reason)
        except (ConnectionError, RuntimeError, OSError) as e:
            logger.debug("Close failed", endpoint=self.endpoint_name, error=type(e).__name__)


class BearerWebSocketEndpoint(TokenRevalidationMixin, WebSocketEndpointBase):
    """
    Base class for bearer-credential WebSocket endpoints.

    Adds:
    - Authentication through the manager's AuthStrategy
    - Periodic credential revalidation
    """

    def __init__(
        self,
        websocket: WebSocket,
        manager: "ConnectionManager",
        endpoint_name: str,
        token: str | None,
        token_revalidation_interval: float = WSConstants.TOKEN_REVALIDATION_INTERVAL,
        **kwargs: Any,
    ):
        """
        Args:
            websocket: The WebSocket connection.
            manager: ConnectionManager instance.
            endpoint_name: Name for logging.
            token: Credential from the query string, if any.
            token_revalidation_interval: Seconds between credential re-checks.
            **kwargs: Additional args for base class.
        """
        super().__init__(websocket, manager, endpoint_name, **kwargs)
        self.token = token
        self.auth_strategy = manager.auth_strategy
        self.token_revalidation_interval = token_revalidation_interval
        self._last_token_revalidation = time.time()
        self._claims: dict[str, Any] | None = None

    async def validate_auth(self) -> dict[str, Any] | None:
        result = await self.auth_strategy.authenticate(self.websocket, self.token)
        if not result.success:
            audit_ws_connection(
                event_type="AUTH_FAILED",
                endpoint=self.endpoint_name,
                connection_id=self.connection_id,
                origin=self.context.origin if self.context else None,
                reason=result.audit_reason,
            )
            self.manager.metrics.increment_connection_rejected_auth_sync()
            await self.send_connect_error(result.error_message or "Authentication failed")
            await self._close(result.close_code, result.error_message or "Authentication failed")
            return None

        data = result.data or {}
        # Header credentials are revalidated the same way as query credentials
        self.token = data.get("token", self.token)
        self._claims = data.get("claims")
        self.reset_token_revalidation_timer()
        return data

    async def _pre_message_hook(self) -> bool:
        if not await self.revalidate_token_if_needed():
            logger.warning(
                "Credential revalidation failed",
                identifier=self.context.identifier if self.context else "unknown",
            )
            if self.context:
                self.context.audit("TOKEN_EXPIRED", reason="revalidation_failed")
            await self._close(WSCloseCode.AUTH_FAILED, "Token expired")
            return False
        return True
