"""
Centralized structured logging for the gateway.
Uses Python's standard logging with JSON formatting for production.

Records carry the current request / connection correlation ID
(see shared.infrastructure.correlation).
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from shared.config.settings import settings


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.
    Outputs logs in a format easily parseable by log aggregation tools.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = getattr(record, "request_id", None)
        if request_id and request_id != "-":
            log_data["request_id"] = request_id

        connection_id = getattr(record, "connection_id", None)
        if connection_id and connection_id != "-":
            log_data["connection_id"] = connection_id

        # Add extra fields if present
        if hasattr(record, "extra_data") and record.extra_data:
            log_data["data"] = record.extra_data

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Add source location in debug mode
        if settings.debug:
            log_data["source"] = {
                "file": record.filename,
                "line": record.lineno,
                "function": record.funcName,
            }

        return json.dumps(log_data, default=str)


class DevelopmentFormatter(logging.Formatter):
    """Human-readable formatter for development."""

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"
    DIM = "\033[2m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        timestamp = datetime.now().strftime("%H:%M:%S")

        correlation = getattr(record, "connection_id", None)
        if not correlation or correlation == "-":
            correlation = getattr(record, "request_id", None)
        if correlation and correlation != "-":
            correlation_str = f"{self.DIM}[{correlation[:8]}]{self.RESET} "
        else:
            correlation_str = ""

        message = (
            f"{color}[{timestamp}] {record.levelname:8}{self.RESET} "
            f"{correlation_str}{record.name}: {record.getMessage()}"
        )

        if hasattr(record, "extra_data") and record.extra_data:
            data_str = " | ".join(f"{k}={v}" for k, v in record.extra_data.items())
            message += f" ({data_str})"

        if record.exc_info:
            message += f"\n{self.formatException(record.exc_info)}"

        return message


class StructuredLogger(logging.Logger):
    """
    Custom logger that supports structured data.

        logger.info("Message routed", receiver_id="u2", delivered=3)
    """

    def _log_with_data(
        self,
        level: int,
        msg: str,
        args: tuple,
        exc_info: Any = None,
        extra: dict | None = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        **kwargs: Any,
    ) -> None:
        """Log with optional structured data."""
        if not self.isEnabledFor(level):
            return
        if extra is None:
            extra = {}
        extra["extra_data"] = kwargs if kwargs else None
        super()._log(
            level,
            msg,
            args,
            exc_info=exc_info,
            extra=extra,
            stack_info=stack_info,
            stacklevel=stacklevel,
        )

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log_with_data(logging.DEBUG, msg, args, **kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log_with_data(logging.INFO, msg, args, **kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log_with_data(logging.WARNING, msg, args, **kwargs)

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        exc_info = kwargs.pop("exc_info", None)
        self._log_with_data(logging.ERROR, msg, args, exc_info=exc_info, **kwargs)

    def exception(self, msg: str, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("exc_info", True)
        self.error(msg, *args, **kwargs)

    def critical(self, msg: str, *args: Any, **kwargs: Any) -> None:
        exc_info = kwargs.pop("exc_info", None)
        self._log_with_data(logging.CRITICAL, msg, args, exc_info=exc_info, **kwargs)


# Set custom logger class
logging.setLoggerClass(StructuredLogger)


def setup_logging() -> None:
    """
    Configure logging for the application.
    Call this once at application startup.
    """
    # Import here to avoid circular imports
    from shared.infrastructure.correlation import CorrelationIdFilter

    log_level = logging.DEBUG if settings.debug else logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.addFilter(CorrelationIdFilter())

    # Use appropriate formatter based on environment
    if settings.environment == "production":
        formatter = StructuredFormatter()
    else:
        formatter = DevelopmentFormatter()

    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(log_level)
    root.handlers.clear()
    root.addHandler(handler)

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str) -> StructuredLogger:
    """
    Get a logger instance with the given name.

    Usage:
        from shared.config.logging import get_logger
        logger = get_logger(__name__)

        logger.info("User connected", user_id=mask_user_id(user_id))
        logger.error("Profile lookup failed", user_id=user_id, exc_info=True)
    """
    return logging.getLogger(name)  # type: ignore


def mask_user_id(user_id: int | str | None) -> str:
    """
    Mask user ID for logging in security-sensitive contexts.

    For general logging, user IDs can be shown. Use this function in audit
    records where correlation attacks are possible.

    Args:
        user_id: The user ID to mask.

    Returns:
        Masked user ID string safe for logging.
    """
    if user_id is None:
        return "<no-user>"

    user_str = str(user_id)
    if len(user_str) <= 2:
        return user_str[0] + "***"
    return f"{user_str[:2]}***"


# Pre-configured loggers for common modules
chat_gateway_logger = get_logger("chat_gateway")

# Dedicated security audit logger
security_audit_logger = get_logger("security.audit")


# =============================================================================
# Security Audit Logging Functions
# =============================================================================


def audit_ws_connection(
    event_type: str,
    endpoint: str,
    user_id: int | str | None = None,
    connection_id: str | None = None,
    origin: str | None = None,
    reason: str | None = None,
    **extra: Any,
) -> None:
    """
    Log WebSocket connection security events.

    Creates structured audit trail for connection lifecycle and security events.

    Args:
        event_type: Type of event (CONNECT, DISCONNECT, AUTH_FAILED, JOIN_REJECTED, etc.)
        endpoint: WebSocket endpoint (/ws/chat)
        user_id: Resolved identity (masked in the record)
        connection_id: Server-assigned connection ID
        origin: Origin header value
        reason: Reason for event (especially for failures)
        **extra: Additional context data
    """
    log_level = logging.WARNING if reason and event_type != "DISCONNECT" else logging.INFO

    security_audit_logger._log_with_data(
        log_level,
        f"WS_AUDIT: {event_type}",
        args=(),
        event_type=event_type,
        endpoint=endpoint,
        user_id=mask_user_id(user_id) if user_id is not None else None,
        connection_id=connection_id,
        origin=origin,
        reason=reason,
        **extra,
    )


def audit_rate_limit_event(
    context: str,
    identifier: int | str,
    limit: int,
    window: int,
    **extra: Any,
) -> None:
    """
    Log rate limiting events.

    Args:
        context: Context (chat connection, broadcast)
        identifier: Connection ID being rate limited
        limit: Rate limit that was exceeded
        window: Time window in seconds
        **extra: Additional context data
    """
    security_audit_logger.warning(
        f"RATE_LIMIT_AUDIT: {context}",
        context=context,
        identifier=identifier,
        limit=limit,
        window=window,
        **extra,
    )
