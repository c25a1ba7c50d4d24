"""
Credential decoding for realtime connections.

Bearer tokens are issued by the REST layer. The gateway decodes them locally
(no call back into the issuer) and resolves the user identity from an
ordered list of accepted claim names.

Without JWT_SECRET the signature is not verified: the gateway trusts the
issuer and only needs the identity claim. With JWT_SECRET set the signature
is verified as well. Either way decoding is a pure CPU operation.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import jwt

from shared.config.settings import settings
from shared.config.logging import get_logger

logger = get_logger(__name__)


# Messages surfaced to clients in connect_error frames
MSG_TOKEN_MISSING = "Authentication token missing"
MSG_TOKEN_INVALID = "Invalid token"
MSG_TOKEN_EXPIRED = "Token expired"


class CredentialError(Exception):
    """
    Raised when a bearer credential cannot be resolved to an identity.

    Attributes:
        message: Client-facing error message.
        reason: Short reason code for audit logging.
    """

    def __init__(self, message: str, reason: str) -> None:
        super().__init__(message)
        self.message = message
        self.reason = reason


def extract_bearer_token(authorization: str | None) -> str | None:
    """
    Extract the token from an ``Authorization: Bearer <token>`` header value.

    Returns None when the header is absent or uses another scheme.
    """
    if not authorization:
        return None
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() != "bearer" or not credentials.strip():
        return None
    return credentials.strip()


def decode_bearer_claims(
    token: str | None,
    secret: str | None = None,
    algorithms: Sequence[str] | None = None,
    verify_expiration: bool | None = None,
) -> dict[str, Any]:
    """
    Decode a bearer token into its claims.

    Args:
        token: Raw token string.
        secret: Signing secret. Empty/None skips signature verification.
            Defaults to settings.jwt_secret.
        algorithms: Accepted algorithms when verifying. Defaults to settings.
        verify_expiration: Reject expired tokens (when "exp" is present).

    Returns:
        Decoded claims dict.

    Raises:
        CredentialError: If the token is missing, malformed, expired or badly signed.
    """
    if token is None or not token.strip():
        raise CredentialError(MSG_TOKEN_MISSING, reason="missing_token")

    if secret is None:
        secret = settings.jwt_secret
    if algorithms is None:
        algorithms = settings.jwt_algorithms
    if verify_expiration is None:
        verify_expiration = settings.jwt_verify_expiration

    options: dict[str, Any] = {
        "verify_signature": bool(secret),
        "verify_exp": verify_expiration,
        "verify_aud": False,
        "verify_iss": False,
        "verify_iat": False,
        "verify_nbf": False,
        "verify_sub": False,
        "verify_jti": False,
    }

    try:
        if secret:
            claims = jwt.decode(token, secret, algorithms=list(algorithms), options=options)
        else:
            claims = jwt.decode(token, options=options)
    except jwt.ExpiredSignatureError:
        raise CredentialError(MSG_TOKEN_EXPIRED, reason="expired_token")
    except jwt.InvalidSignatureError:
        raise CredentialError(MSG_TOKEN_INVALID, reason="invalid_signature")
    except jwt.InvalidTokenError as e:
        logger.debug("Bearer token decode failed", error=type(e).__name__)
        raise CredentialError(MSG_TOKEN_INVALID, reason="malformed_token")

    if not isinstance(claims, dict):
        raise CredentialError(MSG_TOKEN_INVALID, reason="malformed_token")

    return claims


def resolve_identity(
    claims: dict[str, Any],
    claim_names: Sequence[str] | None = None,
) -> str | None:
    """
    Resolve the user identity from decoded claims.

    Claim names are tried in order and the first usable value wins.
    Strings and integers are accepted (integers are stringified); empty
    strings, booleans and nested values are skipped.

    Args:
        claims: Decoded claims.
        claim_names: Ordered claim names. Defaults to settings.jwt_identity_claims.

    Returns:
        The identity string, or None if no accepted claim carries one.
    """
    if claim_names is None:
        claim_names = settings.jwt_identity_claims

    for name in claim_names:
        value = claims.get(name)
        if isinstance(value, bool):
            continue
        if isinstance(value, int):
            return str(value)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def authenticate_token(
    token: str | None,
    claim_names: Sequence[str] | None = None,
    secret: str | None = None,
) -> tuple[str, dict[str, Any]]:
    """
    Decode a token and resolve its identity in one step.

    Returns:
        (user_id, claims)

    Raises:
        CredentialError: On any decoding failure or missing identity claim.
    """
    claims = decode_bearer_claims(token, secret=secret)
    user_id = resolve_identity(claims, claim_names)
    if user_id is None:
        raise CredentialError(MSG_TOKEN_INVALID, reason="no_identity_claim")
    return user_id, claims
