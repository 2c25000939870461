"""
auth/store.py -- SQLAlchemy Core persistence layer for users and refresh tokens.

Pattern: Repository + Data Mapper. UserStore and RefreshTokenStore are the
repositories; _row_to_user / _row_to_refresh_token are the mappers. The
session service never touches SQL directly.

Both repositories share one Engine (open_engine()) so the tables live in the
same database and the refresh_tokens.user_id foreign key is meaningful.

Correctness under concurrency relies on the database, not on in-process locks:
  - UNIQUE(users.username), UNIQUE(users.email): concurrent registrations of
    the same identity leave exactly one row; the loser sees IntegrityError,
    mapped to DuplicateUser.
  - UNIQUE(refresh_tokens.token): create() maps the IntegrityError to
    TokenCollision.
  - revoke_by_token() is a conditional UPDATE ... WHERE revoked_at IS NULL.
    Two concurrent revocations of the same token cannot both match; exactly
    one sees rowcount == 1.

Timestamps are stored as ISO 8601 UTC strings with fixed microsecond
precision, so lexicographic order equals chronological order and the
expiry comparisons can run in SQL.

Security:
  All queries use bound parameters. No f-strings in SQL. Token strings are
  never written to the log.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    or_,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import DuplicateUser, TokenCollision
from auth.models import RefreshToken, User

logger = logging.getLogger("mediashare.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("name", String(255), nullable=False, server_default=""),
    Column("email_verified", Integer, nullable=False, server_default="0"),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("last_login_at", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_refresh_tokens = Table(
    "refresh_tokens",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("token", Text, nullable=False, unique=True),
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("revoked_at", String(32)),  # NULL while the session is usable
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL and foreign keys on every new SQLite connection.

    SQLite PRAGMAs are per-connection and not inherited from the pool.
    WAL lets readers proceed while a writer holds the lock.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


def open_engine(db_url: str, timeout: float = 5.0) -> Engine:
    """Create an Engine for db_url and make sure both tables exist.

    timeout bounds how long a call waits on a pooled connection and, for
    SQLite, on a locked database before the driver raises.
    """
    connect_args: dict = {}
    engine_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = timeout
    else:
        engine_args["pool_timeout"] = timeout
        engine_args["pool_pre_ping"] = True
    engine = create_engine(db_url, connect_args=connect_args, **engine_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragmas)
    metadata.create_all(engine)
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Users are never deleted here; deactivation is a flag.

    Usage:
        engine = open_engine("sqlite:///auth.db")
        users = UserStore(engine)
        user_id = users.create_user(User(username="u1", email="e1@x.com", password_hash=h))
        users.get_by_identifier("e1@x.com")
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create_user(self, user: User) -> int:
        """Insert a new user and return its id.

        Raises DuplicateUser if the username or email is taken, including when
        a concurrent registration wins the race between exists() and insert.
        """
        now = _to_iso(_utcnow())
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _users.insert().values(
                        username=user.username,
                        email=user.email,
                        password_hash=user.password_hash,
                        name=user.name,
                        email_verified=1 if user.email_verified else 0,
                        is_active=1 if user.is_active else 0,
                        created_at=now,
                        updated_at=now,
                    )
                )
                user_id = result.inserted_primary_key[0]
        except IntegrityError as exc:
            logger.warning("User insert rejected by unique constraint (username=%s)", user.username)
            raise DuplicateUser() from exc
        logger.info("Created user id=%s username=%s", user_id, user.username)
        return user_id

    def exists(self, username: str, email: str) -> bool:
        """Return True if any user already has this username or this email."""
        with self.engine.connect() as conn:
            count = conn.execute(
                select(func.count())
                .select_from(_users)
                .where(or_(_users.c.username == username, _users.c.email == email))
            ).scalar()
        return (count or 0) > 0

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_identifier(self, identifier: str) -> User | None:
        """Look up a user whose username or email exactly equals identifier.

        Case-sensitive. If one user's username equals another user's email the
        username match wins, so the result is deterministic.
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select()
                .where(or_(_users.c.username == identifier, _users.c.email == identifier))
                .order_by((_users.c.username == identifier).desc(), _users.c.id)
                .limit(1)
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def count(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return result or 0

    def mark_email_verified(self, user_id: int) -> bool:
        """Set email_verified. Returns False if user_id was not found."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(email_verified=1, updated_at=_to_iso(_utcnow()))
            )
        return result.rowcount > 0

    def set_active(self, user_id: int, active: bool) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(is_active=1 if active else 0, updated_at=_to_iso(_utcnow()))
            )
        return result.rowcount > 0

    def update_last_login(self, user_id: int, when: datetime | None = None) -> datetime:
        """Stamp last_login_at (and updated_at) and return the stamped time."""
        when = when or _utcnow()
        stamp = _to_iso(when)
        with self.engine.begin() as conn:
            conn.execute(
                _users.update().where(_users.c.id == user_id).values(last_login_at=stamp, updated_at=stamp)
            )
        return when

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1


# ---------------------------------------------------------------------------
# Refresh tokens
# ---------------------------------------------------------------------------


class RefreshTokenStore:
    """Repository for persisted refresh-token sessions.

    Usage:
        tokens = RefreshTokenStore(engine)
        tokens.create(user_id, token, expires_at)
        record = tokens.get_by_token(token)   # None if absent, expired, or revoked
        tokens.revoke_by_token(token)         # False if already revoked / unknown
        tokens.delete_expired()               # called by the external sweep
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create(self, user_id: int, token: str, expires_at: datetime) -> int:
        """Persist a new session record and return its id.

        Raises TokenCollision if the token string is already stored.
        """
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _refresh_tokens.insert().values(
                        user_id=user_id,
                        token=token,
                        expires_at=_to_iso(expires_at),
                        created_at=_to_iso(_utcnow()),
                    )
                )
                record_id = result.inserted_primary_key[0]
        except IntegrityError as exc:
            logger.warning("Refresh token insert rejected by unique constraint (user_id=%s)", user_id)
            raise TokenCollision() from exc
        logger.info("Stored refresh token id=%s user_id=%s expires_at=%s", record_id, user_id, _to_iso(expires_at))
        return record_id

    def get_by_token(self, token: str) -> RefreshToken | None:
        """Return the record only if it is unrevoked and unexpired.

        Absent, expired, and revoked all return None -- callers cannot tell
        which condition applied.
        """
        now = _to_iso(_utcnow())
        with self.engine.connect() as conn:
            row = conn.execute(
                _refresh_tokens.select().where(
                    (_refresh_tokens.c.token == token)
                    & (_refresh_tokens.c.revoked_at.is_(None))
                    & (_refresh_tokens.c.expires_at > now)
                )
            ).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def revoke_by_token(self, token: str) -> bool:
        """Set revoked_at if, and only if, it is currently NULL.

        Returns True if this call revoked the token, False if no row matched
        (unknown token or already revoked). Safe under concurrent calls for the
        same token: exactly one of them returns True.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.token == token) & (_refresh_tokens.c.revoked_at.is_(None)))
                .values(revoked_at=_to_iso(_utcnow()))
            )
        if result.rowcount == 0:
            logger.warning("No active refresh token matched revocation")
            return False
        logger.info("Revoked refresh token")
        return True

    def revoke_all_for_user(self, user_id: int) -> int:
        """Revoke every currently unrevoked token for user_id. Returns the count."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.user_id == user_id) & (_refresh_tokens.c.revoked_at.is_(None)))
                .values(revoked_at=_to_iso(_utcnow()))
            )
        logger.info("Revoked %d refresh token(s) for user_id=%s", result.rowcount, user_id)
        return result.rowcount

    def delete_expired(self) -> int:
        """Delete rows that are expired or revoked. Returns the number deleted.

        Idempotent: a second run (or a concurrent one) deletes whatever is
        left and reports 0 when nothing remains.
        """
        now = _to_iso(_utcnow())
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.delete().where(
                    (_refresh_tokens.c.expires_at <= now) | (_refresh_tokens.c.revoked_at.is_not(None))
                )
            )
        logger.info("Deleted %d expired or revoked refresh token(s)", result.rowcount)
        return result.rowcount

    def find(self, token: str) -> RefreshToken | None:
        """Return the record regardless of its state. Logout uses it to log why a revoke found nothing."""
        with self.engine.connect() as conn:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.token == token)).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def list_for_user(self, user_id: int) -> list[RefreshToken]:
        """Return all records (any state) for a user, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _refresh_tokens.select()
                .where(_refresh_tokens.c.user_id == user_id)
                .order_by(_refresh_tokens.c.created_at.desc(), _refresh_tokens.c.id.desc())
            ).fetchall()
        return [_row_to_refresh_token(r) for r in rows]


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        password_hash=row.password_hash,
        name=row.name or "",
        email_verified=bool(row.email_verified),
        is_active=bool(row.is_active),
        last_login_at=_from_iso(row.last_login_at),
        created_at=_from_iso(row.created_at),
        updated_at=_from_iso(row.updated_at),
    )


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        user_id=row.user_id,
        token=row.token,
        expires_at=_from_iso(row.expires_at),
        created_at=_from_iso(row.created_at),
        revoked_at=_from_iso(row.revoked_at),
    )
