"""
Authentication Strategies for the Chat Gateway.

Implements Strategy pattern for pluggable connection authentication.
The default strategy decodes a bearer credential locally and resolves the
user identity from an ordered list of accepted claim names.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, TYPE_CHECKING

from shared.config.logging import get_logger
from shared.security.auth import (
    MSG_TOKEN_MISSING,
    CredentialError,
    authenticate_token,
    extract_bearer_token,
)
from chat_gateway.components.core.constants import WSCloseCode, validate_websocket_origin

if TYPE_CHECKING:
    from fastapi import WebSocket


logger = get_logger(__name__)


# =============================================================================
# Result Types
# =============================================================================


@dataclass(frozen=True, slots=True)
class AuthResult:
    """
    Result of authentication attempt.

    Attributes:
        success: Whether authentication succeeded.
        data: {"user_id": ..., "claims": ...} if successful.
        error_message: Client-facing error message if failed.
        close_code: WebSocket close code to use if failed.
        audit_reason: Short reason code for audit logging.
    """

    success: bool
    data: dict[str, Any] | None = None
    error_message: str | None = None
    close_code: int = WSCloseCode.AUTH_FAILED
    audit_reason: str | None = None

    @classmethod
    def ok(cls, data: dict[str, Any]) -> "AuthResult":
        """Create successful authentication result."""
        return cls(success=True, data=data)

    @classmethod
    def fail(
        cls,
        message: str,
        close_code: int = WSCloseCode.AUTH_FAILED,
        audit_reason: str = "auth_failed",
    ) -> "AuthResult":
        """Create failed authentication result."""
        return cls(
            success=False,
            error_message=message,
            close_code=close_code,
            audit_reason=audit_reason,
        )

    @classmethod
    def forbidden(cls, message: str, audit_reason: str = "forbidden") -> "AuthResult":
        """Create forbidden (access denied) result."""
        return cls(
            success=False,
            error_message=message,
            close_code=WSCloseCode.FORBIDDEN,
            audit_reason=audit_reason,
        )

    @property
    def user_id(self) -> str | None:
        """Resolved identity for successful results."""
        if self.data is None:
            return None
        return self.data.get("user_id")


# =============================================================================
# Strategy Interface
# =============================================================================


class AuthStrategy(ABC):
    """
    Abstract base class for authentication strategies.

    Usage:
        strategy = BearerTokenAuthStrategy()
        result = await strategy.authenticate(websocket, token)
        if result.success:
            user_id = result.user_id
    """

    @abstractmethod
    async def authenticate(
        self,
        websocket: "WebSocket",
        token: str | None,
    ) -> AuthResult:
        """
        Authenticate a WebSocket connection.

        Args:
            websocket: The WebSocket connection (for headers).
            token: Credential from the query string, if any.

        Returns:
            AuthResult indicating success/failure with data or error.
        """
        pass

    @abstractmethod
    async def revalidate(self, token: str) -> bool:
        """
        Revalidate a credential during an active connection.

        Returns:
            True if the credential is still valid, False otherwise.
        """
        pass


# =============================================================================
# Origin Validation Mixin
# =============================================================================


class OriginValidationMixin:
    """Mixin providing WebSocket origin validation."""

    def validate_origin(self, websocket: "WebSocket") -> bool:
        """
        Validate WebSocket origin header.

        Returns:
            True if origin is allowed, False otherwise.
        """
        from shared.config.settings import settings

        origin = websocket.headers.get("origin")
        return validate_websocket_origin(origin, settings)


# =============================================================================
# Bearer Token Strategy
# =============================================================================


class BearerTokenAuthStrategy(AuthStrategy, OriginValidationMixin):
    """
    Bearer credential authentication.

    Features:
    - Origin validation
    - Token from query parameter, falling back to the Authorization header
    - Local decoding (no issuer round trip), optional signature check
    - Identity from the first matching accepted claim name

    Usage:
        strategy = BearerTokenAuthStrategy(claim_names=["id", "userId", "sub"])
        result = await strategy.authenticate(websocket, token)
    """

    def __init__(
        self,
        claim_names: Sequence[str] | None = None,
        secret: str | None = None,
        check_origin: bool = True,
    ) -> None:
        """
        Initialize bearer auth strategy.

        Args:
            claim_names: Ordered identity claim names (default: settings).
            secret: Signing secret; empty disables signature checks (default: settings).
            check_origin: Validate the Origin header before decoding.
        """
        from shared.config.settings import settings

        self._claim_names = list(claim_names) if claim_names is not None else list(
            settings.jwt_identity_claims
        )
        self._secret = secret
        self._check_origin = check_origin

    @property
    def claim_names(self) -> list[str]:
        """Accepted identity claim names, in precedence order."""
        return list(self._claim_names)

    def resolve_token(self, websocket: "WebSocket", token: str | None) -> str | None:
        """Pick the credential: query parameter first, then Authorization header."""
        if token:
            return token
        return extract_bearer_token(websocket.headers.get("authorization"))

    async def authenticate(
        self,
        websocket: "WebSocket",
        token: str | None,
    ) -> AuthResult:
        """Authenticate using a bearer credential."""
        if self._check_origin and not self.validate_origin(websocket):
            return AuthResult.forbidden("Origin not allowed", audit_reason="invalid_origin")

        raw_token = self.resolve_token(websocket, token)
        if not raw_token:
            return AuthResult.fail(MSG_TOKEN_MISSING, audit_reason="missing_token")

        try:
            user_id, claims = authenticate_token(
                raw_token,
                claim_names=self._claim_names,
                secret=self._secret,
            )
        except CredentialError as e:
            logger.debug("Credential rejected", reason=e.reason)
            return AuthResult.fail(e.message, audit_reason=e.reason)

        return AuthResult.ok({"user_id": user_id, "claims": claims, "token": raw_token})

    async def revalidate(self, token: str) -> bool:
        """Re-decode the credential (detects expiry on long-lived connections)."""
        try:
            authenticate_token(token, claim_names=self._claim_names, secret=self._secret)
            return True
        except CredentialError as e:
            logger.debug("Credential revalidation failed", reason=e.reason)
            return False
