"""
auth/models.py -- Domain dataclasses for identity and session entities.

Pattern: Data class (pure data container, zero logic). Stores and the
session service do the work; the API layer maps these onto its pydantic
response models.

Timestamps are timezone-aware UTC datetimes. The store persists them as
ISO 8601 strings (see auth/store.py).

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class User:
    """An identity record.

    username and email are each globally unique (UNIQUE constraints in the
    users table). password_hash never leaves the service layer: SessionService
    hands callers copies with it blanked, and the API response model has no
    field for it.

    email_verified gates login: a freshly registered user cannot log in until
    the external verification flow calls SessionService.verify_email().
    """

    username: str
    email: str
    password_hash: str = ""
    name: str = ""
    id: int | None = None
    email_verified: bool = False
    is_active: bool = True
    last_login_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class RefreshToken:
    """A persisted, revocable session.

    A record is usable only while revoked_at is None and expires_at is in the
    future. One user may own any number of usable records at once (one per
    login); nothing enforces a single session.
    """

    user_id: int
    token: str
    expires_at: datetime
    id: int | None = None
    created_at: datetime | None = None
    revoked_at: datetime | None = None


@dataclass(frozen=True)
class TokenClaims:
    """The signed payload of a bearer token. Never persisted.

    user_id is always an int -- this is the single canonical identity value
    the authentication gate attaches to each request (request.state.claims).
    token_type is "access" or "refresh".
    """

    user_id: int
    email: str
    token_id: str
    token_type: str
    issued_at: datetime
    not_before: datetime
    expires_at: datetime


@dataclass
class Session:
    """Result of a successful login or refresh.

    refresh_token is echoed unchanged by SessionService.refresh() -- refresh
    tokens are not rotated. expires_in is the access token lifetime in seconds.
    user.password_hash is always empty.
    """

    user: User
    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "Bearer"
