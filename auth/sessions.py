"""
auth/sessions.py -- Server-side session lifecycle.

A session is Active until it either expires (now >= expires_at) or is
destroyed by logout. Both end states are terminal: an expired session is
never revived by touch(), and a destroyed id is never reissued.

Expiry is enforced lazily. load() treats an expired row as absent and deletes
it on the spot, so correctness never depends on a background sweep.
purge_expired() exists for storage hygiene and can be scheduled by the host.

Session ids come from secrets.token_urlsafe(32) -- 256 bits, delivered to the
client only as an httpOnly cookie value.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from auth.models import Session, utcnow
from auth.store import SessionStore

logger = logging.getLogger("gatekeeper.auth.sessions")


class SessionManager:
    """Create, load, extend and destroy sessions.

    Args:
        store:       SessionStore backing the sessions.
        ttl_seconds: Lifetime of a new session, and the extension applied by
                     touch() when sliding expiration is on.
        sliding:     When True, touch() pushes expires_at to now + ttl.
        clock:       Returns the current aware UTC datetime.
    """

    def __init__(
        self,
        store: SessionStore,
        ttl_seconds: int = 3600,
        sliding: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self.ttl = timedelta(seconds=ttl_seconds)
        self.sliding = sliding
        self._clock = clock

    def create(self, user_id: str, data: dict[str, Any] | None = None) -> Session:
        now = self._clock()
        session = Session(
            session_id=secrets.token_urlsafe(32),
            user_id=user_id,
            data=dict(data or {}),
            created_at=now,
            expires_at=now + self.ttl,
        )
        self._store.insert(session)
        logger.debug("Session created for user %s", user_id)
        return session

    def load(self, session_id: str) -> Session | None:
        """Return the live session, or None if it is unknown or expired."""
        if not session_id:
            return None
        session = self._store.get(session_id)
        if session is None:
            return None
        if session.is_expired(self._clock()):
            self._store.delete(session_id)
            return None
        return session

    def touch(self, session_id: str) -> Session | None:
        """Record activity on a session; extends its expiry when sliding."""
        session = self.load(session_id)
        if session is None or not self.sliding:
            return session
        session.expires_at = self._clock() + self.ttl
        if not self._store.extend(session_id, session.expires_at):
            # Destroyed by a concurrent logout between load and extend.
            return None
        return session

    def save(self, session: Session) -> Session | None:
        """Persist session.data. Concurrent saves: last write wins.

        Returns None without writing if the session has expired or been
        destroyed in the meantime.
        """
        if session.is_expired(self._clock()):
            self._store.delete(session.session_id)
            return None
        if not self._store.update(session):
            return None
        return session

    def destroy(self, session_id: str) -> None:
        """Remove the session. Destroying an unknown id is a no-op."""
        if session_id and self._store.delete(session_id):
            logger.debug("Session destroyed")

    def destroy_all(self, user_id: str) -> int:
        """Remove every session belonging to user_id. Returns the number removed."""
        removed = self._store.delete_for_user(user_id)
        if removed:
            logger.info("Destroyed %d session(s) for user %s", removed, user_id)
        return removed

    def purge_expired(self) -> int:
        return self._store.purge_expired(self._clock())
