"""
tests/conftest.py -- Shared fixtures for the gatekeeper test suite.

This module provides:
  - FrozenClock: injectable clock so expiry tests move time explicitly
  - make_settings(): Settings with fixed secrets and a cheap bcrypt cost
  - db: in-memory Database, closed after each test
  - service: AuthService wired to db and the frozen clock

Design: plain "sqlite:///:memory:" is enough for unit tests because they run
on one thread and SQLAlchemy keeps one connection per thread for in-memory
SQLite. The HTTP adapter tests need a named shared-memory URI instead; see
tests/test_dependencies.py.

bcrypt_rounds=4 is the minimum bcrypt accepts -- hashing stays correct but
each call takes milliseconds instead of ~250ms.
"""

from __future__ import annotations

from collections.abc import Generator
from datetime import datetime, timedelta, timezone

import pytest

from auth.service import AuthService
from auth.store import Database
from core.config import Settings

ACCESS_SECRET = "access-secret-for-tests-0123456789abcdef"
REFRESH_SECRET = "refresh-secret-for-tests-0123456789abcdef"


class FrozenClock:
    """Callable clock that only moves when told to.

    Starts on a whole second so epoch round-trips through the store are exact.
    """

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def make_settings(**overrides) -> Settings:
    values = {
        "access_token_secret": ACCESS_SECRET,
        "refresh_token_secret": REFRESH_SECRET,
        "bcrypt_rounds": 4,
        "database_url": "sqlite:///:memory:",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def db() -> Generator[Database, None, None]:
    database = Database("sqlite:///:memory:")
    yield database
    database.close()


@pytest.fixture
def service(settings: Settings, db: Database, clock: FrozenClock) -> AuthService:
    return AuthService.from_settings(settings, db, clock=clock)


@pytest.fixture
def make_service(db: Database, clock: FrozenClock):
    """Factory for an AuthService with Settings overrides on the shared db and clock."""

    def _make(**overrides) -> AuthService:
        return AuthService.from_settings(make_settings(**overrides), db, clock=clock)

    return _make


@pytest.fixture
def registered(service: AuthService):
    """A registered user: (public user, password)."""
    user = service.register("a@x.com", "Password123", "A")
    return user, "Password123"
