"""Unit tests for auth/tokens.py -- TokenIssuer generation and validation.

Covers:
- Access and refresh tokens carry the full claim set and a fresh jti
- Token type separation (an access token is not a refresh token and vice versa)
- Algorithm confusion: HS512, "none", and forged headers are rejected
- Bad signature, expiry, not-before, missing claims, malformed input
"""

from __future__ import annotations

import base64
import logging
import json
from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.errors import InvalidToken
from auth.models import User
from auth.tokens import ALGORITHM, TokenIssuer
from conftest import TEST_SECRET

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _user(user_id: int = 7) -> User:
    return User(id=user_id, username="alice", email="alice@example.com", password_hash="x")


def _b64(data: dict) -> str:
    raw = json.dumps(data, separators=(",", ":")).encode()
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()


def _payload(**overrides) -> dict:
    now = int(datetime.now(timezone.utc).timestamp())
    payload = {
        "sub": "7",
        "email": "alice@example.com",
        "jti": "fixed-jti",
        "typ": "access",
        "iat": now,
        "nbf": now,
        "exp": now + 600,
    }
    payload.update(overrides)
    return {k: v for k, v in payload.items() if v is not None}


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------


class TestGeneration:
    def test_access_token_round_trip(self, issuer: TokenIssuer) -> None:
        """An access token validates back to the user's claims with the access TTL."""
        token = issuer.generate_access(_user())
        claims = issuer.validate_access(token)
        assert claims.user_id == 7
        assert claims.email == "alice@example.com"
        assert claims.token_type == "access"
        assert claims.token_id
        assert claims.not_before <= datetime.now(timezone.utc)
        assert claims.expires_at - claims.issued_at == timedelta(minutes=15)

    def test_refresh_token_uses_refresh_ttl(self, issuer: TokenIssuer) -> None:
        """A refresh token carries typ=refresh and the refresh TTL."""
        claims = issuer.validate_refresh(issuer.generate_refresh(_user()))
        assert claims.token_type == "refresh"
        assert claims.expires_at - claims.issued_at == timedelta(days=7)

    def test_wire_format_is_three_segments_with_hs256(self, issuer: TokenIssuer) -> None:
        """Tokens are compact JWS strings signed with HS256."""
        token = issuer.generate_access(_user())
        assert token.count(".") == 2
        assert jwt.get_unverified_header(token)["alg"] == "HS256"

    def test_every_token_gets_a_fresh_id(self, issuer: TokenIssuer) -> None:
        """Every token, even for the same user in the same second, has its own jti."""
        tokens = {issuer.generate_refresh(_user()) for _ in range(20)}
        assert len(tokens) == 20
        ids = {issuer.validate_refresh(t).token_id for t in tokens}
        assert len(ids) == 20

    def test_user_without_id_is_rejected(self, issuer: TokenIssuer) -> None:
        """A user that was never persisted cannot be issued a token."""
        with pytest.raises(ValueError):
            issuer.generate_access(User(username="x", email="x@example.com"))

    def test_empty_secret_is_rejected(self) -> None:
        """An issuer cannot be built without a signing secret."""
        with pytest.raises(ValueError):
            TokenIssuer("", access_ttl=timedelta(minutes=1), refresh_ttl=timedelta(days=1))

    def test_repr_does_not_leak_secret(self, issuer: TokenIssuer) -> None:
        """The secret never appears in the issuer's repr."""
        assert TEST_SECRET not in repr(issuer)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestTokenTypes:
    def test_access_token_is_not_a_refresh_token(self, issuer: TokenIssuer) -> None:
        """validate_refresh rejects an access token."""
        with pytest.raises(InvalidToken):
            issuer.validate_refresh(issuer.generate_access(_user()))

    def test_refresh_token_is_not_an_access_token(self, issuer: TokenIssuer) -> None:
        """validate_access rejects a refresh token."""
        with pytest.raises(InvalidToken):
            issuer.validate_access(issuer.generate_refresh(_user()))


class TestAlgorithmConfusion:
    def test_hs512_token_with_correct_secret_is_rejected(self, issuer: TokenIssuer) -> None:
        """A token signed with HS512 and the right secret is still rejected."""
        token = jwt.encode(_payload(), TEST_SECRET, algorithm="HS512")
        with pytest.raises(InvalidToken) as exc_info:
            issuer.validate_access(token)
        assert "algorithm" in exc_info.value.detail

    def test_alg_none_is_rejected(self, issuer: TokenIssuer) -> None:
        """An unsigned alg=none token is rejected."""
        token = f"{_b64({'alg': 'none', 'typ': 'JWT'})}.{_b64(_payload())}."
        with pytest.raises(InvalidToken):
            issuer.validate_access(token)

    def test_header_swapped_onto_valid_signature_is_rejected(self, issuer: TokenIssuer) -> None:
        """Re-labelling a genuine HS256 token as HS384 must fail even though the signature bytes are real."""
        header, payload, signature = issuer.generate_access(_user()).split(".")
        forged = f"{_b64({'alg': 'HS384', 'typ': 'JWT'})}.{payload}.{signature}"
        with pytest.raises(InvalidToken):
            issuer.validate_access(forged)


class TestCryptographicFailures:
    def test_wrong_secret(self, issuer: TokenIssuer) -> None:
        """A token signed with a different secret is rejected."""
        other = TokenIssuer("another-secret-" + "x" * 32, issuer.access_ttl, issuer.refresh_ttl)
        with pytest.raises(InvalidToken):
            issuer.validate_access(other.generate_access(_user()))

    def test_tampered_payload(self, issuer: TokenIssuer) -> None:
        """Changing the payload invalidates the signature."""
        header, _payload_seg, signature = issuer.generate_access(_user()).split(".")
        tampered = f"{header}.{_b64(_payload(sub='1'))}.{signature}"
        with pytest.raises(InvalidToken):
            issuer.validate_access(tampered)

    def test_expired_token(self, issuer: TokenIssuer) -> None:
        """An expired token is rejected and the reason is recorded as expiry."""
        past = int(datetime.now(timezone.utc).timestamp()) - 3600
        token = jwt.encode(_payload(iat=past - 60, nbf=past - 60, exp=past), TEST_SECRET, algorithm=ALGORITHM)
        with pytest.raises(InvalidToken) as exc_info:
            issuer.validate_access(token)
        assert exc_info.value.detail == "token expired"

    def test_not_yet_valid_token(self, issuer: TokenIssuer) -> None:
        """A token whose nbf is in the future is rejected."""
        future = int(datetime.now(timezone.utc).timestamp()) + 3600
        token = jwt.encode(_payload(nbf=future, exp=future + 600), TEST_SECRET, algorithm=ALGORITHM)
        with pytest.raises(InvalidToken):
            issuer.validate_access(token)

    @pytest.mark.parametrize("missing", ["sub", "jti", "exp", "nbf", "iat", "email", "typ"])
    def test_missing_claim(self, issuer: TokenIssuer, missing: str) -> None:
        """Dropping any required claim makes the token invalid."""
        token = jwt.encode(_payload(**{missing: None}), TEST_SECRET, algorithm=ALGORITHM)
        with pytest.raises(InvalidToken):
            issuer.validate_access(token)

    def test_non_numeric_subject(self, issuer: TokenIssuer) -> None:
        """The subject must be a numeric user id."""
        token = jwt.encode(_payload(sub="alice"), TEST_SECRET, algorithm=ALGORITHM)
        with pytest.raises(InvalidToken):
            issuer.validate_access(token)

    @pytest.mark.parametrize("garbage", ["", "abc", "a.b", "a.b.c", "....", "Bearer x.y.z"])
    def test_malformed_input(self, issuer: TokenIssuer, garbage: str) -> None:
        """Strings that are not three-segment tokens are rejected."""
        with pytest.raises(InvalidToken):
            issuer.validate_access(garbage)


class TestRejectionLogging:
    def test_reason_logged_at_debug_without_token(self, issuer: TokenIssuer, caplog) -> None:
        """A rejected token logs its failure reason at DEBUG, never the token string."""
        token = issuer.generate_refresh(_user())
        with caplog.at_level(logging.DEBUG, logger="mediashare.auth.tokens"):
            with pytest.raises(InvalidToken):
                issuer.validate_access(token)
        assert "Rejected access token: expected access token" in caplog.text
        assert token not in caplog.text
