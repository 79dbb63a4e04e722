"""
tests/test_tokens.py -- Unit tests for TokenService issue/verify.

Coverage:
  - Round trip: verify(issue(id).token) returns the same id
  - Expiry boundary with a fixed clock: 1s before exp accepted, 1s after rejected
  - Tampered payload, wrong secret and garbage input are MALFORMED
  - Missing claims are MALFORMED
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.errors import AuthFailure, FailureKind
from auth.tokens import TokenService

SECRET = "unit-test-secret-key-that-is-long-enough"
T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class _Clock:
    """Settable clock so expiry can be tested to the second."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock() -> _Clock:
    return _Clock(T0)


@pytest.fixture
def tokens(clock: _Clock) -> TokenService:
    return TokenService(SECRET, ttl_seconds=3600, clock=clock)


class TestIssueAndVerify:
    def test_round_trip_returns_subject(self, tokens: TokenService) -> None:
        session = tokens.issue("acct-123")
        assert tokens.verify(session.token) == "acct-123"

    def test_session_token_fields(self, tokens: TokenService) -> None:
        session = tokens.issue("acct-123")
        assert session.subject == "acct-123"
        assert session.issued_at == T0
        assert session.expires_at == T0 + timedelta(seconds=3600)
        assert session.expires_in == 3600

    def test_claims_hold_only_sub_iat_exp(self, tokens: TokenService) -> None:
        """Role and active state must not be baked into the token."""
        claims = jwt.get_unverified_claims(tokens.issue("acct-123").token)
        assert set(claims) == {"sub", "iat", "exp"}
        assert claims["exp"] - claims["iat"] == 3600

    def test_rejects_bad_construction(self) -> None:
        with pytest.raises(ValueError):
            TokenService("")
        with pytest.raises(ValueError):
            TokenService(SECRET, ttl_seconds=0)


class TestExpiry:
    def test_valid_one_second_before_expiry(self, tokens: TokenService, clock: _Clock) -> None:
        session = tokens.issue("acct-1")
        clock.now = session.expires_at - timedelta(seconds=1)
        assert tokens.verify(session.token) == "acct-1"

    def test_valid_exactly_at_expiry(self, tokens: TokenService, clock: _Clock) -> None:
        session = tokens.issue("acct-1")
        clock.now = session.expires_at
        assert tokens.verify(session.token) == "acct-1"

    def test_expired_one_second_after(self, tokens: TokenService, clock: _Clock) -> None:
        session = tokens.issue("acct-1")
        clock.now = session.expires_at + timedelta(seconds=1)
        with pytest.raises(AuthFailure) as exc_info:
            tokens.verify(session.token)
        assert exc_info.value.kind == FailureKind.EXPIRED


class TestMalformed:
    def _assert_malformed(self, tokens: TokenService, token: str) -> None:
        with pytest.raises(AuthFailure) as exc_info:
            tokens.verify(token)
        assert exc_info.value.kind == FailureKind.MALFORMED

    def test_tampered_payload(self, tokens: TokenService) -> None:
        """Swapping the payload segment for another subject's breaks the signature."""
        genuine = tokens.issue("acct-1").token
        forged_payload = tokens.issue("acct-2").token.split(".")[1]
        header, _payload, signature = genuine.split(".")
        self._assert_malformed(tokens, f"{header}.{forged_payload}.{signature}")

    def test_wrong_secret(self, tokens: TokenService, clock: _Clock) -> None:
        other = TokenService("another-secret-key-of-sufficient-length", clock=clock)
        self._assert_malformed(tokens, other.issue("acct-1").token)

    def test_garbage(self, tokens: TokenService) -> None:
        self._assert_malformed(tokens, "not-a-jwt")

    def test_empty(self, tokens: TokenService) -> None:
        self._assert_malformed(tokens, "")

    def test_missing_subject(self, tokens: TokenService) -> None:
        exp = int((T0 + timedelta(hours=1)).timestamp())
        token = jwt.encode({"exp": exp}, SECRET, algorithm="HS256")
        self._assert_malformed(tokens, token)

    def test_missing_expiry(self, tokens: TokenService) -> None:
        token = jwt.encode({"sub": "acct-1"}, SECRET, algorithm="HS256")
        self._assert_malformed(tokens, token)
