"""
auth/service.py -- Session orchestration: register, login, refresh, logout, validate.

SessionService composes the password hasher, token issuer, user store, and
refresh-token store. It is the only component that knows about all four,
and the only one that turns store misses into the error taxonomy in
auth/errors.py.

Core invariant: a cryptographically valid refresh token is never handed to
a caller without a durable, revocable record behind it. login() persists the
record before returning and fails as a whole if persisting fails.

Refresh tokens are not rotated: refresh() mints a new access token and echoes
the refresh token it was given. The token stays usable until it expires or
is revoked. Concurrent refresh() calls on the same token may all succeed.

Enumeration resistance [C1]:
  - Unknown identifier and wrong password both raise InvalidCredentials.
  - An unknown identifier still costs one bcrypt verification (dummy hash),
    so response time does not reveal whether the identifier exists.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone

from auth import events
from auth.errors import (
    DuplicateUser,
    EmailNotVerified,
    InvalidCredentials,
    InvalidToken,
    PermissionDenied,
    TokenNotFoundOrRevoked,
    UserNotFound,
    WeakPassword,
)
from auth.events import SessionEvent, SessionEventPublisher
from auth.models import RefreshToken, Session, TokenClaims, User
from auth.passwords import PasswordHasher, PasswordPolicy
from auth.store import RefreshTokenStore, UserStore
from auth.tokens import TokenIssuer

logger = logging.getLogger("mediashare.auth.service")


class SessionService:
    """The session orchestrator.

    All collaborators are bound once at construction. publisher is optional;
    when None, no events are emitted.
    """

    def __init__(
        self,
        users: UserStore,
        refresh_tokens: RefreshTokenStore,
        issuer: TokenIssuer,
        hasher: PasswordHasher,
        policy: PasswordPolicy | None = None,
        publisher: SessionEventPublisher | None = None,
    ) -> None:
        self.users = users
        self.refresh_tokens = refresh_tokens
        self.issuer = issuer
        self.hasher = hasher
        self.policy = policy or PasswordPolicy()
        self.publisher = publisher

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, username: str, email: str, password: str, name: str = "") -> User:
        """Create an unverified, active user.

        Raises WeakPassword (first failing policy rule) or DuplicateUser.
        """
        logger.info("Registration attempt username=%s", username)
        violation = self.policy.check(password)
        if violation is not None:
            logger.warning("Registration rejected by password policy rule=%s username=%s", violation.rule, username)
            raise WeakPassword(violation.rule, violation.message)

        if self.users.exists(username, email):
            logger.warning("Registration with existing username or email username=%s", username)
            raise DuplicateUser()

        user = User(
            username=username,
            email=email,
            password_hash=self.hasher.hash(password),
            name=name,
            email_verified=False,
            is_active=True,
        )
        # create_user raises DuplicateUser if a concurrent registration won.
        user_id = self.users.create_user(user)
        created = self.users.get_by_id(user_id)
        logger.info("User registered id=%s username=%s", user_id, username)
        self._publish(events.USER_REGISTERED, user_id, {"username": username})
        return _without_hash(created)

    def verify_email(self, user_id: int) -> User:
        """Mark a user's email as verified. Called by the external verification flow."""
        if not self.users.mark_email_verified(user_id):
            raise UserNotFound()
        logger.info("Email verified user_id=%s", user_id)
        return _without_hash(self.users.get_by_id(user_id))

    # ------------------------------------------------------------------
    # Login / refresh / logout
    # ------------------------------------------------------------------

    def login(self, identifier: str, password: str) -> Session:
        """Authenticate by username or email and open a new session.

        Order of checks: identifier lookup, email verification, password,
        active flag. Raises InvalidCredentials or EmailNotVerified.
        """
        logger.info("Login attempt")
        user = self.users.get_by_identifier(identifier)
        if user is None:
            # Equalize timing -- do NOT return before running bcrypt [C1]
            self.hasher.verify(password, self.hasher.dummy_hash)
            logger.warning("Login failed: no matching user")
            raise InvalidCredentials()

        if not user.email_verified:
            logger.warning("Login attempt with unverified email user_id=%s", user.id)
            raise EmailNotVerified()

        if not self.hasher.verify(password, user.password_hash):
            logger.warning("Login failed: wrong password user_id=%s", user.id)
            raise InvalidCredentials()

        if not user.is_active:
            logger.warning("Login attempt on inactive account user_id=%s", user.id)
            raise InvalidCredentials()

        access_token = self.issuer.generate_access(user)
        refresh_token = self.issuer.generate_refresh(user)

        # Persist before handing anything out. Any failure here (collision,
        # database error) fails the login and no token leaves this method.
        expires_at = datetime.now(timezone.utc) + self.issuer.refresh_ttl
        self.refresh_tokens.create(user.id, refresh_token, expires_at)

        user.last_login_at = self.users.update_last_login(user.id)
        logger.info("Login successful user_id=%s", user.id)
        self._publish(events.USER_LOGGED_IN, user.id)
        return self._session(user, access_token, refresh_token)

    def refresh(self, refresh_token: str) -> Session:
        """Exchange a live refresh token for a new access token.

        Raises InvalidToken, UserNotFound, or TokenNotFoundOrRevoked.
        """
        try:
            claims = self.issuer.validate_refresh(refresh_token)
        except InvalidToken as exc:
            logger.warning("Refresh rejected: %s", exc.detail)
            raise

        user = self.users.get_by_id(claims.user_id)
        if user is None:
            logger.warning("Refresh for unknown user_id=%s", claims.user_id)
            raise UserNotFound()

        if self.refresh_tokens.get_by_token(refresh_token) is None:
            logger.warning("Refresh with missing, expired, or revoked session user_id=%s", user.id)
            raise TokenNotFoundOrRevoked()

        access_token = self.issuer.generate_access(user)
        logger.info("Token refresh successful user_id=%s", user.id)
        return self._session(user, access_token, refresh_token)

    def logout(self, user_id: int, refresh_token: str) -> None:
        """Revoke one session owned by user_id.

        Raises InvalidToken, PermissionDenied (token belongs to someone else),
        or TokenNotFoundOrRevoked (unknown or already revoked).
        """
        try:
            claims = self.issuer.validate_refresh(refresh_token)
        except InvalidToken as exc:
            logger.warning("Logout rejected: %s user_id=%s", exc.detail, user_id)
            raise

        if claims.user_id != user_id:
            logger.warning("Logout with token of user_id=%s by user_id=%s", claims.user_id, user_id)
            raise PermissionDenied()

        if not self.refresh_tokens.revoke_by_token(refresh_token):
            # Same error either way; the log records which case it was.
            record = self.refresh_tokens.find(refresh_token)
            if record is None:
                logger.warning("Logout with unknown session user_id=%s", user_id)
            else:
                logger.warning("Logout with already revoked session user_id=%s", user_id)
            raise TokenNotFoundOrRevoked()
        logger.info("Logout successful user_id=%s", user_id)
        self._publish(events.USER_LOGGED_OUT, user_id)

    def logout_all(self, user_id: int) -> int:
        """Revoke every live session of user_id. Returns how many were revoked."""
        revoked = self.refresh_tokens.revoke_all_for_user(user_id)
        self._publish(events.USER_LOGGED_OUT_ALL, user_id, {"revoked": revoked})
        return revoked

    # ------------------------------------------------------------------
    # Account administration
    # ------------------------------------------------------------------

    def deactivate_user(self, user_id: int) -> int:
        """Block future logins and revoke every live session. Returns sessions revoked.

        Access tokens already issued stay valid until they expire.
        """
        if not self.users.set_active(user_id, False):
            raise UserNotFound()
        revoked = self.refresh_tokens.revoke_all_for_user(user_id)
        logger.info("User deactivated user_id=%s revoked=%d", user_id, revoked)
        return revoked

    def activate_user(self, user_id: int) -> None:
        if not self.users.set_active(user_id, True):
            raise UserNotFound()
        logger.info("User activated user_id=%s", user_id)

    def list_sessions(self, user_id: int) -> list[RefreshToken]:
        """All session records of a user in any state, newest first."""
        return self.refresh_tokens.list_for_user(user_id)

    # ------------------------------------------------------------------
    # Request authentication
    # ------------------------------------------------------------------

    def validate_token(self, token: str) -> TokenClaims:
        """Return the claims of a bearer token used to authenticate a request.

        Access tokens are checked cryptographically only. A refresh token is
        accepted as a bearer credential only while its persisted record is
        unrevoked and unexpired, so logout takes effect immediately on this
        path too. Raises InvalidToken.
        """
        try:
            return self.issuer.validate_access(token)
        except InvalidToken:
            pass

        claims = self.issuer.validate_refresh(token)
        if self.refresh_tokens.get_by_token(token) is None:
            raise InvalidToken(detail="refresh token has no live session")
        return claims

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def purge_expired_sessions(self) -> int:
        """Delete expired and revoked session records. Run by an external scheduler."""
        return self.refresh_tokens.delete_expired()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _session(self, user: User, access_token: str, refresh_token: str) -> Session:
        return Session(
            user=_without_hash(user),
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=int(self.issuer.access_ttl.total_seconds()),
        )

    def _publish(self, name: str, user_id: int, metadata: dict | None = None) -> None:
        if self.publisher is None:
            return
        try:
            self.publisher.publish(SessionEvent(name=name, user_id=user_id, metadata=metadata or {}))
        except Exception:
            logger.exception("Session event publisher failed event=%s user_id=%s", name, user_id)


def _without_hash(user: User) -> User:
    """Copy of user safe to hand to callers: the password hash stays in the store."""
    return replace(user, password_hash="")
