"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore, SessionStore and RefreshTokenStore are the repositories; the
_row_to_* functions are the mappers. The session manager, token issuer and
service never touch SQL directly.

Lifecycle: Database owns the engine. The host creates one at startup,
passes it to AuthService, and calls close() at shutdown. Nothing here is a
module-level global.

Failure semantics:
  Every call opens its own connection (reads) or transaction (writes) and
  commits before returning. Multi-row writes that must not be observed
  half-done (refresh rotation) run inside a single engine.begin() block.
  Any SQLAlchemyError is logged by class name and re-raised as
  StoreUnavailable; the email UNIQUE violation is re-raised as DuplicateEmail.
  Nothing is retried here -- retry/backoff is the host's policy.

Security:
  All queries use bound parameters. No f-strings in SQL.

Timestamps: user created_at is ISO 8601 text; session and refresh token
times are REAL epoch seconds so expiry comparisons happen in SQL.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import Column, Float, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import DuplicateEmail, StoreUnavailable
from auth.models import RefreshTokenRecord, Session, UserRecord, normalize_email

logger = logging.getLogger("gatekeeper.auth.store")

_DEFAULT_DB_URL = "sqlite:///gatekeeper.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),  # normalized lowercase
    Column("display_name", String(255), nullable=False),
    Column("password_hash", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("session_id", String(64), primary_key=True),
    Column("user_id", String(32), nullable=False, index=True),
    Column("data", Text, nullable=False, server_default="{}"),  # JSON blob
    Column("created_at", Float, nullable=False),
    Column("expires_at", Float, nullable=False, index=True),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("jti", String(64), primary_key=True),
    Column("user_id", String(32), nullable=False, index=True),
    Column("issued_at", Float, nullable=False),
    Column("expires_at", Float, nullable=False, index=True),
    Column("revoked_at", Float),  # NULL while redeemable
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _ts(value: datetime) -> float:
    return value.timestamp()


def _dt(value: float | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


@contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.warning("Auth store operation %r failed (%s)", operation, exc.__class__.__name__)
        raise StoreUnavailable() from exc


# ---------------------------------------------------------------------------
# Database handle
# ---------------------------------------------------------------------------


class Database:
    """Engine owner and entry point to the three repositories.

    Usage:
        db = Database("sqlite:///auth.db")
        user = db.users.find_by_email("a@x.com")
        db.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        with _store_errors("create schema"):
            _metadata.create_all(self.engine)
        self.users = UserStore(self)
        self.sessions = SessionStore(self)
        self.refresh_tokens = RefreshTokenStore(self)

    @contextmanager
    def connect(self, operation: str) -> Iterator[Connection]:
        """Read-only connection; SQLAlchemy errors become StoreUnavailable."""
        with _store_errors(operation), self.engine.connect() as conn:
            yield conn

    @contextmanager
    def transaction(self, operation: str) -> Iterator[Connection]:
        """Connection inside BEGIN ... COMMIT; rolled back if the block raises."""
        with _store_errors(operation), self.engine.begin() as conn:
            yield conn

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Users (credential store adapter)
# ---------------------------------------------------------------------------


class UserStore:
    def __init__(self, db: Database) -> None:
        self._db = db

    def find_by_email(self, email: str) -> UserRecord | None:
        """Look up a user by email, case-insensitively. Returns None if not found."""
        with self._db.connect("find user by email") as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_id(self, user_id: str) -> UserRecord | None:
        with self._db.connect("find user by id") as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def save(self, user: UserRecord) -> UserRecord:
        """Insert the user, or update it if the id already exists.

        Raises DuplicateEmail if another record already owns the email. The
        UNIQUE index is the final arbiter: two concurrent registrations that
        both passed the service's pre-check cannot both land.
        """
        user.email = normalize_email(user.email)
        values = {
            "email": user.email,
            "display_name": user.display_name,
            "password_hash": user.password_hash,
        }
        with self._db.transaction("save user") as conn:
            try:
                result = conn.execute(_users.update().where(_users.c.id == user.id).values(**values))
                if result.rowcount == 0:
                    conn.execute(_users.insert().values(id=user.id, created_at=user.created_at.isoformat(), **values))
            except IntegrityError as exc:
                raise DuplicateEmail() from exc
        return user


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class SessionStore:
    def __init__(self, db: Database) -> None:
        self._db = db

    def insert(self, session: Session) -> None:
        with self._db.transaction("create session") as conn:
            conn.execute(
                _sessions.insert().values(
                    session_id=session.session_id,
                    user_id=session.user_id,
                    data=json.dumps(session.data),
                    created_at=_ts(session.created_at),
                    expires_at=_ts(session.expires_at),
                )
            )

    def get(self, session_id: str) -> Session | None:
        with self._db.connect("load session") as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.session_id == session_id)).fetchone()
        return _row_to_session(row) if row is not None else None

    def update(self, session: Session) -> bool:
        """Overwrite data and expiry. Last write wins. False if the row is gone."""
        with self._db.transaction("save session") as conn:
            result = conn.execute(
                _sessions.update()
                .where(_sessions.c.session_id == session.session_id)
                .values(data=json.dumps(session.data), expires_at=_ts(session.expires_at))
            )
        return result.rowcount > 0

    def extend(self, session_id: str, expires_at: datetime) -> bool:
        with self._db.transaction("touch session") as conn:
            result = conn.execute(
                _sessions.update().where(_sessions.c.session_id == session_id).values(expires_at=_ts(expires_at))
            )
        return result.rowcount > 0

    def delete(self, session_id: str) -> bool:
        with self._db.transaction("destroy session") as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.session_id == session_id))
        return result.rowcount > 0

    def delete_for_user(self, user_id: str) -> int:
        with self._db.transaction("destroy user sessions") as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
        return result.rowcount

    def purge_expired(self, now: datetime) -> int:
        """Delete every session whose expiry has passed. Returns rows removed."""
        with self._db.transaction("purge sessions") as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at <= _ts(now)))
        return result.rowcount


# ---------------------------------------------------------------------------
# Refresh token registry
# ---------------------------------------------------------------------------


class RefreshTokenStore:
    def __init__(self, db: Database) -> None:
        self._db = db

    def add(self, record: RefreshTokenRecord) -> None:
        with self._db.transaction("register refresh token") as conn:
            conn.execute(_refresh_tokens.insert().values(**_refresh_values(record)))

    def get(self, jti: str) -> RefreshTokenRecord | None:
        with self._db.connect("load refresh token") as conn:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.jti == jti)).fetchone()
        return _row_to_refresh(row) if row is not None else None

    def rotate(self, old_jti: str, replacement: RefreshTokenRecord, now: datetime) -> bool:
        """Revoke old_jti and register its replacement atomically.

        The UPDATE only matches a row that is still unrevoked, so of two
        concurrent redemptions of the same token exactly one wins. Returns
        False (and writes nothing) when old_jti is unknown or already revoked.
        """
        with self._db.transaction("rotate refresh token") as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.jti == old_jti) & (_refresh_tokens.c.revoked_at.is_(None)))
                .values(revoked_at=_ts(now))
            )
            if result.rowcount == 0:
                return False
            conn.execute(_refresh_tokens.insert().values(**_refresh_values(replacement)))
        return True

    def revoke(self, jti: str, now: datetime) -> bool:
        with self._db.transaction("revoke refresh token") as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.jti == jti) & (_refresh_tokens.c.revoked_at.is_(None)))
                .values(revoked_at=_ts(now))
            )
        return result.rowcount > 0

    def revoke_all(self, user_id: str, now: datetime) -> int:
        with self._db.transaction("revoke user refresh tokens") as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.user_id == user_id) & (_refresh_tokens.c.revoked_at.is_(None)))
                .values(revoked_at=_ts(now))
            )
        return result.rowcount

    def purge_expired(self, now: datetime) -> int:
        with self._db.transaction("purge refresh tokens") as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.expires_at <= _ts(now)))
        return result.rowcount


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> UserRecord:
    return UserRecord(
        id=row.id,
        email=row.email,
        display_name=row.display_name,
        password_hash=row.password_hash,
        created_at=datetime.fromisoformat(row.created_at),
    )


def _row_to_session(row) -> Session:
    return Session(
        session_id=row.session_id,
        user_id=row.user_id,
        data=json.loads(row.data or "{}"),
        created_at=_dt(row.created_at),
        expires_at=_dt(row.expires_at),
    )


def _row_to_refresh(row) -> RefreshTokenRecord:
    return RefreshTokenRecord(
        jti=row.jti,
        user_id=row.user_id,
        issued_at=_dt(row.issued_at),
        expires_at=_dt(row.expires_at),
        revoked_at=_dt(row.revoked_at),
    )


def _refresh_values(record: RefreshTokenRecord) -> dict:
    return {
        "jti": record.jti,
        "user_id": record.user_id,
        "issued_at": _ts(record.issued_at),
        "expires_at": _ts(record.expires_at),
        "revoked_at": _ts(record.revoked_at) if record.revoked_at is not None else None,
    }
