"""Unit tests for auth/store.py -- repositories over in-memory SQLite.

Covers:
- UserStore: save/find round trip, case-insensitive lookup, upsert, UNIQUE email
- RefreshTokenStore: rotate() is all-or-nothing, revoke / revoke_all / purge
- SQLAlchemy failures surface as StoreUnavailable
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import text

from auth.errors import DuplicateEmail, StoreUnavailable
from auth.models import RefreshTokenRecord, UserRecord
from auth.store import Database

NOW = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def _user(user_id: str = "u1", email: str = "a@x.com") -> UserRecord:
    return UserRecord(id=user_id, email=email, display_name="A", password_hash="$2b$04$" + "x" * 53, created_at=NOW)


def _refresh(jti: str, user_id: str = "u1", days: int = 7) -> RefreshTokenRecord:
    return RefreshTokenRecord(jti=jti, user_id=user_id, issued_at=NOW, expires_at=NOW + timedelta(days=days))


class TestUserStore:
    def test_save_and_find(self, db: Database) -> None:
        db.users.save(_user())
        by_email = db.users.find_by_email("a@x.com")
        by_id = db.users.find_by_id("u1")
        assert by_email == by_id
        assert by_email.created_at == NOW

    def test_find_by_email_is_case_insensitive(self, db: Database) -> None:
        db.users.save(_user(email="Someone@Example.com"))
        assert db.users.find_by_email("SOMEONE@example.COM").id == "u1"

    def test_missing_user_is_none(self, db: Database) -> None:
        assert db.users.find_by_email("nobody@x.com") is None
        assert db.users.find_by_id("nobody") is None

    def test_save_updates_existing_record(self, db: Database) -> None:
        user = db.users.save(_user())
        user.display_name = "Renamed"
        db.users.save(user)
        assert db.users.find_by_id("u1").display_name == "Renamed"

    def test_email_unique_across_ids(self, db: Database) -> None:
        db.users.save(_user("u1", "a@x.com"))
        with pytest.raises(DuplicateEmail):
            db.users.save(_user("u2", "A@X.com"))
        assert db.users.find_by_id("u2") is None


class TestRefreshTokenStore:
    def test_rotate_consumes_once(self, db: Database) -> None:
        db.refresh_tokens.add(_refresh("old"))
        assert db.refresh_tokens.rotate("old", _refresh("new"), NOW) is True
        assert db.refresh_tokens.get("old").revoked_at == NOW
        assert db.refresh_tokens.get("new").revoked_at is None

    def test_rotate_of_revoked_token_writes_nothing(self, db: Database) -> None:
        db.refresh_tokens.add(_refresh("old"))
        db.refresh_tokens.rotate("old", _refresh("new"), NOW)
        assert db.refresh_tokens.rotate("old", _refresh("newer"), NOW) is False
        assert db.refresh_tokens.get("newer") is None

    def test_rotate_of_unknown_token(self, db: Database) -> None:
        assert db.refresh_tokens.rotate("ghost", _refresh("new"), NOW) is False
        assert db.refresh_tokens.get("new") is None

    def test_revoke_and_revoke_all(self, db: Database) -> None:
        for jti, uid in (("a", "u1"), ("b", "u1"), ("c", "u2")):
            db.refresh_tokens.add(_refresh(jti, uid))
        assert db.refresh_tokens.revoke("a", NOW) is True
        assert db.refresh_tokens.revoke("a", NOW) is False
        assert db.refresh_tokens.revoke_all("u1", NOW) == 1
        assert db.refresh_tokens.get("c").revoked_at is None

    def test_purge_expired(self, db: Database) -> None:
        db.refresh_tokens.add(_refresh("short", days=1))
        db.refresh_tokens.add(_refresh("long", days=7))
        assert db.refresh_tokens.purge_expired(NOW + timedelta(days=2)) == 1
        assert db.refresh_tokens.get("long") is not None


class TestStoreUnavailable:
    def test_missing_table_becomes_store_unavailable(self, db: Database) -> None:
        with db.engine.begin() as conn:
            conn.execute(text("DROP TABLE refresh_tokens"))
        with pytest.raises(StoreUnavailable) as excinfo:
            db.refresh_tokens.get("anything")
        assert "refresh_tokens" not in str(excinfo.value)

    def test_session_write_failure(self, db: Database) -> None:
        with db.engine.begin() as conn:
            conn.execute(text("DROP TABLE sessions"))
        with pytest.raises(StoreUnavailable):
            db.sessions.delete("anything")
