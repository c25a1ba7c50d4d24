"""
Correlation IDs for logs.

HTTP requests carry an X-Request-ID; websocket connections carry their
server-assigned connection ID for the lifetime of the connection task.
"""

import logging
import uuid
from contextvars import ContextVar, Token
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

# Context variables (task-local under asyncio)
request_id_var: ContextVar[str] = ContextVar("request_id", default="")
connection_id_var: ContextVar[str] = ContextVar("connection_id", default="")


def bind_connection_id(connection_id: str) -> Token:
    """
    Bind a connection ID to the current task context.

    Tasks created afterwards (e.g. the connection's worker) inherit it.
    Returns the token for reset_connection_id().
    """
    return connection_id_var.set(connection_id)


def reset_connection_id(token: Token) -> None:
    """Restore the previous connection ID binding."""
    connection_id_var.reset(token)


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """
    Middleware to add correlation IDs to HTTP requests.

    - If X-Request-ID header is present, uses that value
    - Otherwise generates a new UUID
    - Sets the ID in context for logging
    - Returns the ID in response headers
    """

    HEADER_NAME = "X-Request-ID"

    async def dispatch(
        self,
        request: Request,
        call_next: Callable,
    ) -> Response:
        request_id = request.headers.get(self.HEADER_NAME)
        if not request_id:
            request_id = str(uuid.uuid4())

        token = request_id_var.set(request_id)

        try:
            request.state.request_id = request_id
            response = await call_next(request)
            response.headers[self.HEADER_NAME] = request_id
            return response
        finally:
            request_id_var.reset(token)


class CorrelationIdFilter(logging.Filter):
    """
    Logging filter that adds request_id and connection_id to log records.

    Usage:
        handler = logging.StreamHandler()
        handler.addFilter(CorrelationIdFilter())
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get() or "-"
        record.connection_id = connection_id_var.get() or "-"
        return True
