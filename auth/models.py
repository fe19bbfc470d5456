"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data containers, almost no logic). Stores, the
session manager and the token issuer do the work; these types only carry
shape between them and the host.

Request/response side:
  AuthRequest is the structured view of an inbound request the host builds.
  ResponseActions is what the service hands back instead of mutating a
  response object -- the host applies the set-cookie / clear-cookie
  directives itself.

Layer rule: no imports from core/ -- models are shared by every layer.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

ACCESS = "access"
REFRESH = "refresh"

SESSION_COOKIE = "sessionId"
ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"


def utcnow() -> datetime:
    """Default clock. Components accept a `clock` callable so tests can freeze time."""
    return datetime.now(timezone.utc)


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PublicUser:
    """The projection of a user that may leave the module."""

    id: str
    email: str
    display_name: str
    created_at: datetime


@dataclass
class UserRecord:
    """A registered local account.

    email is stored normalized (stripped, lowercase); the store enforces its
    uniqueness. password_hash only ever holds PasswordHasher.hash() output and
    is kept out of repr() so a logged record cannot leak it.
    """

    id: str
    email: str
    display_name: str
    password_hash: str = field(repr=False)
    created_at: datetime = field(default_factory=utcnow)

    def public(self) -> PublicUser:
        return PublicUser(
            id=self.id,
            email=self.email,
            display_name=self.display_name,
            created_at=self.created_at,
        )


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@dataclass
class Session:
    """Server-held state keyed by an opaque identifier carried in a cookie.

    data is application-defined (view counters, pending-login flags, ...) and
    must be JSON-serialisable. A session is live while now < expires_at.
    """

    session_id: str
    user_id: str
    created_at: datetime
    expires_at: datetime
    data: dict[str, Any] = field(default_factory=dict)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class IssuedToken:
    """An encoded, signed token plus the claims it carries."""

    value: str = field(repr=False)
    token_class: str  # ACCESS or REFRESH
    subject: str
    jti: str
    issued_at: datetime
    expires_at: datetime

    @property
    def expires_in(self) -> int:
        return int((self.expires_at - self.issued_at).total_seconds())

    def seconds_remaining(self, now: datetime) -> int:
        """Whole seconds until exp, never negative. Equals expires_in at issue time."""
        return max(0, int(self.expires_at.timestamp()) - int(now.timestamp()))


@dataclass(frozen=True)
class TokenClaims:
    """The verified contents of a token."""

    subject: str
    token_class: str
    jti: str
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class TokenPair:
    access: IssuedToken
    refresh: IssuedToken


@dataclass
class RefreshTokenRecord:
    """Registry row for an issued refresh token.

    revoked_at is None while the token may still be redeemed. Rotated and
    logged-out tokens keep their row (revoked) until they expire, which is
    what lets a second redemption be recognised as reuse.
    """

    jti: str
    user_id: str
    issued_at: datetime
    expires_at: datetime
    revoked_at: datetime | None = None


# ---------------------------------------------------------------------------
# Request / response actions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AuthRequest:
    """Structured view of an inbound request.

    bearer is the raw credential from an `Authorization: Bearer` header.
    cookies holds at least sessionId / access_token / refresh_token when the
    client sent them. body is the JSON-shaped request body, if any.
    """

    bearer: str | None = field(default=None, repr=False)
    cookies: Mapping[str, str] = field(default_factory=dict, repr=False)
    body: Mapping[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_headers(
        cls,
        authorization: str | None = None,
        cookies: Mapping[str, str] | None = None,
        body: Mapping[str, Any] | None = None,
    ) -> AuthRequest:
        """Build a request view from a raw Authorization header value."""
        bearer = None
        if authorization:
            scheme, _, credential = authorization.partition(" ")
            if scheme.lower() == "bearer" and credential.strip():
                bearer = credential.strip()
        return cls(bearer=bearer, cookies=dict(cookies or {}), body=dict(body or {}))

    def cookie(self, name: str) -> str | None:
        value = self.cookies.get(name)
        return value or None


@dataclass(frozen=True)
class SetCookie:
    name: str
    value: str = field(repr=False)
    max_age: int
    http_only: bool = True
    secure: bool = False
    same_site: str = "lax"
    domain: str | None = None
    path: str = "/"


@dataclass(frozen=True)
class ClearCookie:
    name: str
    domain: str | None = None
    path: str = "/"


@dataclass
class ResponseActions:
    """Cookie directives for the host to apply to its response."""

    set_cookies: list[SetCookie] = field(default_factory=list)
    clear_cookies: list[ClearCookie] = field(default_factory=list)

    def extend(self, other: ResponseActions) -> ResponseActions:
        self.set_cookies.extend(other.set_cookies)
        self.clear_cookies.extend(other.clear_cookies)
        return self


@dataclass
class LoginResult:
    """Outcome of a successful login or refresh."""

    user: PublicUser
    tokens: TokenPair
    session: Session | None = None
    actions: ResponseActions = field(default_factory=ResponseActions)
