"""
Security module: bearer credential decoding.
"""

from shared.security.auth import (
    CredentialError,
    authenticate_token,
    decode_bearer_claims,
    extract_bearer_token,
    resolve_identity,
)

__all__ = [
    "CredentialError",
    "authenticate_token",
    "decode_bearer_claims",
    "extract_bearer_token",
    "resolve_identity",
]
