"""
auth/errors.py -- Error taxonomy for the identity and session subsystem.

Every failure the session service reports to a caller is an AuthError
subclass carrying:
  code        -- stable machine-readable identifier ("invalid_credentials")
  message     -- human-readable text, safe to show to the client
  status_code -- HTTP status the API layer responds with

The API layer (api/main.py) turns any AuthError into the standard error
envelope. Persistence errors that are not part of this taxonomy (e.g.
sqlalchemy.exc.OperationalError) are never wrapped -- they propagate and
surface as a generic 500.

Enumeration resistance: InvalidCredentials has a single message used for
both "no such user" and "wrong password". InvalidToken likewise hides which
cryptographic check failed; the reason is kept on .detail for logging only.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for all errors surfaced by the auth package."""

    code: str = "auth_error"
    message: str = "Authentication failed."
    status_code: int = 400

    def __init__(self, message: str | None = None, *, detail: str | None = None) -> None:
        if message is not None:
            self.message = message
        self.detail = detail
        super().__init__(self.message)


class InvalidCredentials(AuthError):
    code = "invalid_credentials"
    message = "Invalid username, email, or password."
    status_code = 401


class EmailNotVerified(AuthError):
    code = "email_not_verified"
    message = "Email address has not been verified."
    status_code = 403


class InvalidToken(AuthError):
    """Any cryptographic failure: bad signature, wrong algorithm, malformed,
    expired, not yet valid, wrong token type, or missing claims."""

    code = "invalid_token"
    message = "Invalid or expired token."
    status_code = 401


class TokenNotFoundOrRevoked(AuthError):
    """The persisted session is absent, expired, or revoked -- deliberately
    one error for all three."""

    code = "token_not_found_or_revoked"
    message = "Refresh token not found, expired, or revoked."
    status_code = 401


class PermissionDenied(AuthError):
    code = "permission_denied"
    message = "Token does not belong to this user."
    status_code = 403


class UserNotFound(AuthError):
    code = "user_not_found"
    message = "User not found."
    status_code = 404


class DuplicateUser(AuthError):
    code = "duplicate_user"
    message = "A user with that username or email already exists."
    status_code = 409


class WeakPassword(AuthError):
    """Password policy violation. .rule names the first failing rule."""

    code = "weak_password"
    status_code = 422

    def __init__(self, rule: str, message: str) -> None:
        self.rule = rule
        super().__init__(message)


class TokenCollision(AuthError):
    """RefreshTokenStore.create() was handed a token string that is already stored."""

    code = "token_collision"
    message = "Refresh token already exists."
    status_code = 409
