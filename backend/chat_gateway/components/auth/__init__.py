"""
Authentication strategies for chat connections.
"""

from chat_gateway.components.auth.strategies import (
    AuthResult,
    AuthStrategy,
    BearerTokenAuthStrategy,
    OriginValidationMixin,
)

__all__ = [
    "AuthResult",
    "AuthStrategy",
    "BearerTokenAuthStrategy",
    "OriginValidationMixin",
]
