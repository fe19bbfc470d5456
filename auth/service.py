"""
auth/service.py -- AuthService: register, login, authenticate, logout, refresh.

AuthService composes PasswordHasher, SessionManager and TokenIssuer over a
Database handle. It never touches an HTTP object: callers hand it an
AuthRequest and apply the ResponseActions it returns.

Error policy:
  ValidationFailed (DuplicateEmail, WeakPassword, InvalidEmail) propagates
  unchanged -- the caller shows it to the user.

  login() raises one InvalidCredentials for an unknown email, a wrong
  password, and a corrupt stored digest alike, and runs bcrypt in every case
  so response time does not reveal which emails exist.

  authenticate() and refresh() raise Unauthenticated (or its subclass
  TokenReuseDetected) whatever check failed. Which one failed is only
  visible in DEBUG logs.

  StoreUnavailable propagates unchanged so the host can apply its own
  retry/backoff.

Primary system of record: sessions and tokens are independent. Either may be
switched off in Settings; with both on, login issues a session and a token
pair, and authenticate() accepts any of them.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterator
from datetime import datetime
from typing import Any

from auth.errors import (
    DuplicateEmail,
    InvalidCredentials,
    InvalidDigestFormat,
    InvalidEmail,
    StoreUnavailable,
    TokenError,
    Unauthenticated,
)
from auth.models import (
    ACCESS,
    ACCESS_COOKIE,
    REFRESH_COOKIE,
    SESSION_COOKIE,
    AuthRequest,
    ClearCookie,
    LoginResult,
    PublicUser,
    ResponseActions,
    Session,
    SetCookie,
    TokenPair,
    UserRecord,
    normalize_email,
    utcnow,
)
from auth.passwords import PasswordHasher, PasswordPolicy
from auth.sessions import SessionManager
from auth.store import Database
from auth.tokens import TokenIssuer
from core.config import Settings

logger = logging.getLogger("gatekeeper.auth")

# Credential kinds, in the order authenticate() tries them.
_BEARER = "bearer"
_ACCESS_COOKIE = "access_cookie"
_SESSION = "session"


class AuthService:
    """Orchestrates the auth module for one host process.

    Usage:
        db = Database(settings.database_url)
        service = AuthService.from_settings(settings, db)
        user = service.register("a@x.com", "Password123", "A")
        result = service.login("a@x.com", "Password123")
        service.authenticate(AuthRequest(bearer=result.tokens.access.value))
        db.close()
    """

    def __init__(
        self,
        database: Database,
        hasher: PasswordHasher,
        policy: PasswordPolicy,
        sessions: SessionManager,
        tokens: TokenIssuer,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._db = database
        self.hasher = hasher
        self.policy = policy
        self.sessions = sessions
        self.tokens = tokens
        self.settings = settings
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        database: Database,
        clock: Callable[[], datetime] = utcnow,
    ) -> AuthService:
        tokens = TokenIssuer(
            access_secret=settings.access_token_secret,
            refresh_secret=settings.refresh_token_secret,
            access_ttl_seconds=settings.access_token_ttl_seconds,
            refresh_ttl_seconds=settings.refresh_token_ttl_seconds,
            registry=database.refresh_tokens if settings.refresh_revocation_enabled else None,
            rotate=settings.rotate_refresh_tokens,
            clock=clock,
        )
        sessions = SessionManager(
            database.sessions,
            ttl_seconds=settings.session_ttl_seconds,
            sliding=settings.sliding_sessions,
            clock=clock,
        )
        return cls(
            database=database,
            hasher=PasswordHasher(rounds=settings.bcrypt_rounds),
            policy=PasswordPolicy(min_length=settings.password_min_length),
            sessions=sessions,
            tokens=tokens,
            settings=settings,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Registration / login
    # ------------------------------------------------------------------

    def register(self, email: str, password: str, display_name: str | None = "") -> PublicUser:
        """Create a local account and return its public projection.

        Raises InvalidEmail, DuplicateEmail or WeakPassword.
        """
        email = normalize_email(email)
        local, _, domain = email.partition("@")
        if not local or "." not in domain or " " in email:
            raise InvalidEmail()
        if self._db.users.find_by_email(email) is not None:
            raise DuplicateEmail()
        self.policy.check(password)

        user = UserRecord(
            id=uuid.uuid4().hex,
            email=email,
            display_name=(display_name or "").strip() or local,
            password_hash=self.hasher.hash(password),
            created_at=self._clock(),
        )
        self._db.users.save(user)
        logger.info("Registered user %s", user.id)
        return user.public()

    def login(self, email: str, password: str) -> LoginResult:
        """Verify credentials and issue tokens (and a session, if enabled)."""
        user = self._db.users.find_by_email(email)
        if user is None:
            # Equalize timing -- do NOT return before running bcrypt.
            self.hasher.verify_dummy(password)
            logger.warning("Failed login (unknown account)")
            raise InvalidCredentials()
        try:
            matched = self.hasher.verify(password, user.password_hash)
        except InvalidDigestFormat:
            logger.error("Stored password digest for user %s is malformed", user.id)
            matched = False
        if not matched:
            logger.warning("Failed login for user %s", user.id)
            raise InvalidCredentials()

        session = None
        actions = ResponseActions()
        if self.settings.session_auth_enabled:
            session, actions = self.start_session(user.id)
        try:
            tokens = TokenPair(access=self.tokens.issue_access(user.id), refresh=self.tokens.issue_refresh(user.id))
        except StoreUnavailable:
            # The session id never reached the client; do not leave it behind.
            if session is not None:
                self.sessions.destroy(session.session_id)
            raise
        actions.extend(self._token_cookies(tokens))
        logger.info("User %s logged in", user.id)
        return LoginResult(user=user.public(), tokens=tokens, session=session, actions=actions)

    # ------------------------------------------------------------------
    # Request authentication
    # ------------------------------------------------------------------

    def authenticate(self, request: AuthRequest) -> PublicUser:
        """Resolve the user behind a request.

        Pipeline: extract candidate credentials -> verify -> resolve user. The
        bearer token is tried first, then the access_token cookie, then the
        sessionId cookie; the first that verifies and names an existing user
        wins. Raises Unauthenticated when none does.
        """
        for kind, credential in self._extract_credentials(request):
            user_id = self._verify_credential(kind, credential)
            if user_id is None:
                continue
            user = self._db.users.find_by_id(user_id)
            if user is not None:
                return user.public()
            logger.debug("%s credential names a missing user", kind)
        raise Unauthenticated()

    def _extract_credentials(self, request: AuthRequest) -> Iterator[tuple[str, str]]:
        if request.bearer:
            yield _BEARER, request.bearer
        access_cookie = request.cookie(ACCESS_COOKIE)
        if access_cookie:
            yield _ACCESS_COOKIE, access_cookie
        session_id = request.cookie(SESSION_COOKIE)
        if session_id and self.settings.session_auth_enabled:
            yield _SESSION, session_id

    def _verify_credential(self, kind: str, credential: str) -> str | None:
        if kind == _SESSION:
            session = self.sessions.touch(credential)
            return session.user_id if session is not None else None
        try:
            return self.tokens.verify(credential, ACCESS).subject
        except TokenError as exc:
            logger.debug("%s credential rejected (%s)", kind, exc.code)
            return None

    # ------------------------------------------------------------------
    # Logout / refresh
    # ------------------------------------------------------------------

    def logout(self, request: AuthRequest) -> ResponseActions:
        """Destroy the request's session and revoke its refresh token.

        Idempotent: missing, expired or invalid credentials are skipped, and
        the clear-cookie directives are always returned.
        """
        session_id = request.cookie(SESSION_COOKIE)
        if session_id:
            self.sessions.destroy(session_id)
        refresh_token = request.cookie(REFRESH_COOKIE) or request.body.get("refresh_token")
        if isinstance(refresh_token, str) and self.tokens.revoke(refresh_token):
            logger.info("Refresh token revoked on logout")
        return self._clear_cookies()

    def logout_everywhere(self, user_id: str) -> ResponseActions:
        """Destroy every session and refresh token of user_id."""
        sessions = self.sessions.destroy_all(user_id)
        tokens = self.tokens.revoke_all(user_id)
        logger.info("User %s signed out everywhere (%d sessions, %d refresh tokens)", user_id, sessions, tokens)
        return self._clear_cookies()

    def refresh(self, refresh_token: str) -> LoginResult:
        """Exchange a refresh token for a new token pair.

        Raises Unauthenticated for any invalid token and TokenReuseDetected
        (also an Unauthenticated) when a rotated-away token is replayed.
        """
        try:
            tokens = self.tokens.refresh(refresh_token)
        except TokenError as exc:
            logger.debug("Refresh rejected (%s)", exc.code)
            raise Unauthenticated() from exc
        user = self._db.users.find_by_id(tokens.access.subject)
        if user is None:
            self.tokens.revoke_all(tokens.access.subject)
            raise Unauthenticated()
        return LoginResult(user=user.public(), tokens=tokens, actions=self._token_cookies(tokens))

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def start_session(self, user_id: str, data: dict[str, Any] | None = None) -> tuple[Session, ResponseActions]:
        session = self.sessions.create(user_id, data)
        cookie = self._cookie(SESSION_COOKIE, session.session_id, self.settings.session_ttl_seconds)
        return session, ResponseActions(set_cookies=[cookie])

    def current_session(self, request: AuthRequest) -> Session | None:
        """Return the live session named by the sessionId cookie, touching it."""
        session_id = request.cookie(SESSION_COOKIE)
        if not session_id:
            return None
        return self.sessions.touch(session_id)

    def save_session(self, session: Session) -> Session | None:
        return self.sessions.save(session)

    # ------------------------------------------------------------------
    # Cookie helpers
    # ------------------------------------------------------------------

    def _cookie(self, name: str, value: str, max_age: int) -> SetCookie:
        """httpOnly cookie with the configured secure / sameSite / domain flags."""
        return SetCookie(
            name=name,
            value=value,
            max_age=max_age,
            http_only=True,
            secure=self.settings.secure_cookies,
            same_site=self.settings.cookie_same_site,
            domain=self.settings.cookie_domain,
        )

    def _token_cookies(self, tokens: TokenPair) -> ResponseActions:
        """Cookies live exactly as long as the tokens they carry.

        A refresh token handed back unrotated keeps its original exp, so its
        cookie gets only the time that is left.
        """
        now = self._clock()
        return ResponseActions(
            set_cookies=[
                self._cookie(ACCESS_COOKIE, tokens.access.value, tokens.access.seconds_remaining(now)),
                self._cookie(REFRESH_COOKIE, tokens.refresh.value, tokens.refresh.seconds_remaining(now)),
            ]
        )

    def _clear_cookies(self) -> ResponseActions:
        domain = self.settings.cookie_domain
        return ResponseActions(
            clear_cookies=[ClearCookie(name, domain=domain) for name in (SESSION_COOKIE, ACCESS_COOKIE, REFRESH_COOKIE)]
        )
