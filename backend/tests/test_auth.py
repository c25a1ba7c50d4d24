"""
Tests for bearer credential decoding and the connection auth strategy.
"""

import time

import pytest

from shared.security.auth import (
    MSG_TOKEN_EXPIRED,
    MSG_TOKEN_INVALID,
    MSG_TOKEN_MISSING,
    CredentialError,
    authenticate_token,
    decode_bearer_claims,
    extract_bearer_token,
    resolve_identity,
)
from chat_gateway.components.auth.strategies import AuthResult, BearerTokenAuthStrategy
from chat_gateway.components.core.constants import WSCloseCode
from tests.conftest import SIGNING_SECRET, FakeWebSocket, make_token, token_for


class TestDecodeBearerClaims:
    """Local decoding without an issuer round trip."""

    def test_decodes_without_secret(self):
        claims = decode_bearer_claims(make_token({"id": "u1"}), secret="")
        assert claims["id"] == "u1"

    def test_any_signature_accepted_without_secret(self):
        token = make_token({"id": "u1"}, secret="some-other-issuer-secret-0123456789")
        assert decode_bearer_claims(token, secret="")["id"] == "u1"

    def test_signature_verified_with_secret(self):
        token = make_token({"id": "u1"}, secret="some-other-issuer-secret-0123456789")
        with pytest.raises(CredentialError) as exc:
            decode_bearer_claims(token, secret=SIGNING_SECRET)
        assert exc.value.reason == "invalid_signature"
        assert exc.value.message == MSG_TOKEN_INVALID

    def test_valid_signature_passes(self):
        token = make_token({"id": "u1"})
        assert decode_bearer_claims(token, secret=SIGNING_SECRET)["id"] == "u1"

    def test_expired_token_rejected(self):
        token = make_token({"id": "u1", "exp": int(time.time()) - 60})
        with pytest.raises(CredentialError) as exc:
            decode_bearer_claims(token, secret="")
        assert exc.value.message == MSG_TOKEN_EXPIRED
        assert exc.value.reason == "expired_token"

    def test_token_without_exp_accepted(self):
        assert decode_bearer_claims(make_token({"id": "u1"}), secret="")["id"] == "u1"

    @pytest.mark.parametrize("token", ["not-a-token", "a.b.c", "...."])
    def test_malformed_token_rejected(self, token):
        with pytest.raises(CredentialError) as exc:
            decode_bearer_claims(token, secret="")
        assert exc.value.message == MSG_TOKEN_INVALID
        assert exc.value.reason == "malformed_token"

    @pytest.mark.parametrize("token", [None, "", "   "])
    def test_missing_token_rejected(self, token):
        with pytest.raises(CredentialError) as exc:
            decode_bearer_claims(token, secret="")
        assert exc.value.message == MSG_TOKEN_MISSING


class TestResolveIdentity:
    """Identity comes from the first usable claim in the configured order."""

    def test_first_matching_claim_wins(self):
        claims = {"sub": "from-sub", "userId": "from-userId", "id": "from-id"}
        assert resolve_identity(claims, ["id", "userId", "sub"]) == "from-id"
        assert resolve_identity(claims, ["sub", "id"]) == "from-sub"

    def test_falls_through_missing_and_empty_claims(self):
        claims = {"id": "", "userId": "u7"}
        assert resolve_identity(claims, ["id", "userId", "sub"]) == "u7"

    def test_integer_claim_stringified(self):
        assert resolve_identity({"id": 42}, ["id"]) == "42"

    @pytest.mark.parametrize("value", [True, {"nested": "x"}, ["u1"], None, 1.5])
    def test_non_scalar_values_skipped(self, value):
        assert resolve_identity({"id": value}, ["id"]) is None

    def test_no_identity_claim(self):
        with pytest.raises(CredentialError) as exc:
            authenticate_token(make_token({"name": "Alice"}), claim_names=["id"], secret="")
        assert exc.value.reason == "no_identity_claim"
        assert exc.value.message == MSG_TOKEN_INVALID

    def test_authenticate_token_returns_identity_and_claims(self):
        user_id, claims = authenticate_token(
            make_token({"userId": "u3", "name": "Carol"}),
            claim_names=["id", "userId"],
            secret="",
        )
        assert user_id == "u3"
        assert claims["name"] == "Carol"


class TestExtractBearerToken:

    def test_bearer_header(self):
        assert extract_bearer_token("Bearer abc.def.ghi") == "abc.def.ghi"

    def test_scheme_case_insensitive(self):
        assert extract_bearer_token("bearer tok") == "tok"

    @pytest.mark.parametrize("header", [None, "", "Basic dXNlcjpwYXNz", "Bearer ", "Bearer"])
    def test_rejects_other_values(self, header):
        assert extract_bearer_token(header) is None


class TestAuthResult:

    def test_ok_exposes_user_id(self):
        result = AuthResult.ok({"user_id": "u1", "claims": {}})
        assert result.success
        assert result.user_id == "u1"

    def test_fail_defaults_to_auth_failed(self):
        result = AuthResult.fail("Invalid token")
        assert not result.success
        assert result.close_code == WSCloseCode.AUTH_FAILED
        assert result.user_id is None

    def test_forbidden_uses_4003(self):
        assert AuthResult.forbidden("Origin not allowed").close_code == WSCloseCode.FORBIDDEN


class TestBearerTokenAuthStrategy:
    """Connection authentication."""

    @pytest.fixture
    def strategy(self):
        return BearerTokenAuthStrategy(claim_names=["id", "userId", "sub"], secret="")

    @pytest.mark.asyncio
    async def test_query_token_authenticates(self, strategy):
        result = await strategy.authenticate(FakeWebSocket(), token_for("u1"))
        assert result.success
        assert result.user_id == "u1"
        assert result.data["token"]

    @pytest.mark.asyncio
    async def test_authorization_header_fallback(self, strategy):
        ws = FakeWebSocket(headers={"authorization": f"Bearer {token_for('u2')}"})
        result = await strategy.authenticate(ws, None)
        assert result.success
        assert result.user_id == "u2"

    @pytest.mark.asyncio
    async def test_query_token_takes_precedence(self, strategy):
        ws = FakeWebSocket(headers={"authorization": f"Bearer {token_for('header-user')}"})
        result = await strategy.authenticate(ws, token_for("query-user"))
        assert result.user_id == "query-user"

    @pytest.mark.asyncio
    async def test_missing_token(self, strategy):
        result = await strategy.authenticate(FakeWebSocket(), None)
        assert not result.success
        assert result.error_message == MSG_TOKEN_MISSING
        assert result.close_code == WSCloseCode.AUTH_FAILED
        assert result.audit_reason == "missing_token"

    @pytest.mark.asyncio
    async def test_expired_token(self, strategy):
        result = await strategy.authenticate(FakeWebSocket(), token_for("u1", ttl=-10))
        assert not result.success
        assert result.error_message == MSG_TOKEN_EXPIRED

    @pytest.mark.asyncio
    async def test_identity_claim_order_is_configuration(self):
        strategy = BearerTokenAuthStrategy(claim_names=["sub"], secret="")
        token = make_token({"id": "from-id", "sub": "from-sub"})
        result = await strategy.authenticate(FakeWebSocket(), token)
        assert result.user_id == "from-sub"

    @pytest.mark.asyncio
    async def test_disallowed_origin_forbidden(self, strategy):
        ws = FakeWebSocket(origin="https://evil.example.com")
        result = await strategy.authenticate(ws, token_for("u1"))
        assert not result.success
        assert result.close_code == WSCloseCode.FORBIDDEN
        assert result.audit_reason == "invalid_origin"

    @pytest.mark.asyncio
    async def test_allowed_origin(self, strategy):
        ws = FakeWebSocket(origin="http://localhost:5173")
        result = await strategy.authenticate(ws, token_for("u1"))
        assert result.success

    @pytest.mark.asyncio
    async def test_origin_check_can_be_disabled(self):
        strategy = BearerTokenAuthStrategy(claim_names=["id"], secret="", check_origin=False)
        ws = FakeWebSocket(origin="https://evil.example.com")
        assert (await strategy.authenticate(ws, token_for("u1"))).success

    @pytest.mark.asyncio
    async def test_revalidate_detects_expiry(self, strategy):
        assert await strategy.revalidate(token_for("u1")) is True
        assert await strategy.revalidate(token_for("u1", ttl=-1)) is False
