"""
auth/tokens.py -- Stateless issuance and validation of signed bearer tokens.

Security design decisions:
  JWT: python-jose with HS256. Every token carries sub (user id), email, jti
       (fresh uuid4 per token), typ ("access" or "refresh"), iat, nbf, exp.
       Access and refresh tokens differ only in typ and lifetime.

  Algorithm pinning: the header is inspected before signature verification
       and any alg other than HS256 -- "none", HS512, RS256, ... -- is
       rejected outright. jwt.decode() is also called with algorithms=[HS256],
       so the check holds even if one of the two layers regresses.

  Failures: every cryptographic or shape failure raises InvalidToken. The
       specific reason is kept on InvalidToken.detail for logging; the client
       message is always the same.

  SECRET_KEY: passed to TokenIssuer at construction. There is no module-level
       secret and no global issuer.

This module knows nothing about persisted revocation state. Whether a
refresh token is still backed by an unrevoked record is the session
service's question (auth/service.py).

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import InvalidToken
from auth.models import TokenClaims

if TYPE_CHECKING:
    from auth.models import User

logger = logging.getLogger("mediashare.auth.tokens")

ALGORITHM = "HS256"

ACCESS = "access"
REFRESH = "refresh"

_DECODE_OPTIONS = {
    "verify_signature": True,
    "verify_exp": True,
    "verify_nbf": True,
    "verify_iat": True,
    "require_exp": True,
    "require_nbf": True,
    "require_iat": True,
    "require_sub": True,
    "require_jti": True,
    "leeway": 0,
}


class TokenIssuer:
    """Generate and validate HS256 bearer tokens.

    Usage:
        issuer = TokenIssuer(secret, access_ttl=timedelta(minutes=15), refresh_ttl=timedelta(days=7))
        token = issuer.generate_access(user)
        claims = issuer.validate_access(token)   # TokenClaims or InvalidToken
    """

    def __init__(self, secret: str, access_ttl: timedelta, refresh_ttl: timedelta) -> None:
        if not secret:
            raise ValueError("TokenIssuer requires a non-empty signing secret.")
        self._secret = secret
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl

    def __repr__(self) -> str:
        # Never include the secret.
        return f"TokenIssuer(access_ttl={self.access_ttl!r}, refresh_ttl={self.refresh_ttl!r})"

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def generate_access(self, user: User) -> str:
        return self._encode(user, ACCESS, self.access_ttl)

    def generate_refresh(self, user: User) -> str:
        return self._encode(user, REFRESH, self.refresh_ttl)

    def _encode(self, user: User, token_type: str, ttl: timedelta) -> str:
        if user.id is None:
            raise ValueError("Cannot issue a token for a user without an id.")
        now = datetime.now(timezone.utc)
        issued = int(now.timestamp())
        payload = {
            "sub": str(user.id),
            "email": user.email,
            "jti": str(uuid.uuid4()),
            "typ": token_type,
            "iat": issued,
            "nbf": issued,
            "exp": int((now + ttl).timestamp()),
        }
        return jwt.encode(payload, self._secret, algorithm=ALGORITHM)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_access(self, token: str) -> TokenClaims:
        return self._decode(token, ACCESS)

    def validate_refresh(self, token: str) -> TokenClaims:
        return self._decode(token, REFRESH)

    def _decode(self, token: str, expected_type: str) -> TokenClaims:
        """Verify signature, algorithm, time window, and claim shape.

        Raises InvalidToken on any failure. The reason is logged at DEBUG
        only; the token itself is never logged.
        """
        try:
            return self._verify(token, expected_type)
        except InvalidToken as exc:
            logger.debug("Rejected %s token: %s", expected_type, exc.detail)
            raise

    def _verify(self, token: str, expected_type: str) -> TokenClaims:
        if not isinstance(token, str) or token.count(".") != 2:
            raise InvalidToken(detail="malformed token")
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as exc:
            raise InvalidToken(detail="malformed header") from exc
        if header.get("alg") != ALGORITHM:
            raise InvalidToken(detail=f"unexpected signing algorithm: {header.get('alg')!r}")

        try:
            payload = jwt.decode(token, self._secret, algorithms=[ALGORITHM], options=_DECODE_OPTIONS)
        except ExpiredSignatureError as exc:
            raise InvalidToken(detail="token expired") from exc
        except JWTError as exc:
            raise InvalidToken(detail=f"verification failed: {exc}") from exc

        if payload.get("typ") != expected_type:
            raise InvalidToken(detail=f"expected {expected_type} token")
        return _claims_from_payload(payload)


def _claims_from_payload(payload: dict) -> TokenClaims:
    """Map a verified payload onto TokenClaims, rejecting any shape mismatch."""
    sub = payload.get("sub")
    email = payload.get("email")
    jti = payload.get("jti")
    if not isinstance(sub, str) or not sub.isdigit():
        raise InvalidToken(detail="subject is not a user id")
    if not isinstance(email, str) or not email:
        raise InvalidToken(detail="missing email claim")
    if not isinstance(jti, str) or not jti:
        raise InvalidToken(detail="missing token id")
    try:
        iat, nbf, exp = (_as_datetime(payload[k]) for k in ("iat", "nbf", "exp"))
    except (KeyError, TypeError, ValueError, OverflowError) as exc:
        raise InvalidToken(detail="malformed timestamps") from exc
    return TokenClaims(
        user_id=int(sub),
        email=email,
        token_id=jti,
        token_type=payload["typ"],
        issued_at=iat,
        not_before=nbf,
        expires_at=exp,
    )


def _as_datetime(value) -> datetime:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError("timestamp must be numeric")
    return datetime.fromtimestamp(value, tz=timezone.utc)
