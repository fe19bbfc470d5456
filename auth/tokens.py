"""
auth/tokens.py -- Access / refresh token issuing, verification and rotation.

Security design decisions:
  JWT: python-jose with HS256. Every token carries sub, typ, jti, iat and exp
       as integer claims. typ ("access" or "refresh") is inside the signed
       payload, and each class is signed with its own secret, so a refresh
       token can never pass as an access token or the other way round --
       and a leaked access secret cannot mint refresh tokens.

  Verification order: structure -> class -> signature -> expiry. Each step
       raises its own TokenError subclass; the service collapses them into a
       single generic denial. Expiry is checked against the injected clock
       (now >= exp is expired) instead of python-jose's wall clock so tests
       can move time.

  Rotation-on-use: with the registry enabled, redeeming a refresh token
       revokes it and registers its replacement in one transaction. Presenting
       a token the registry does not consider live means it was already
       redeemed (or revoked): every outstanding refresh token of that subject
       is revoked and TokenReuseDetected is raised. A stolen token that the
       legitimate client has already rotated becomes useless, and vice versa.

  Access tokens are stateless and cannot be revoked; keep their TTL short.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timezone

from jose import JWTError, jwt

from auth.errors import Expired, MalformedToken, SignatureInvalid, TokenClassMismatch, TokenError, TokenReuseDetected
from auth.models import ACCESS, REFRESH, IssuedToken, RefreshTokenRecord, TokenClaims, TokenPair, utcnow
from auth.store import RefreshTokenStore

logger = logging.getLogger("gatekeeper.auth.tokens")

_ALGORITHM = "HS256"
_TOKEN_CLASSES = (ACCESS, REFRESH)


def _epoch(value: int) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class TokenIssuer:
    """Signs and verifies access and refresh tokens.

    Args:
        access_secret:          HS256 key for access tokens.
        refresh_secret:         HS256 key for refresh tokens (must differ).
        access_ttl_seconds:     Access token lifetime (default 15 minutes).
        refresh_ttl_seconds:    Refresh token lifetime (default 7 days).
        registry:               Optional RefreshTokenStore. None disables
                                revocation and reuse detection.
        rotate:                 Issue a new refresh token on every redemption.
        clock:                  Returns the current aware UTC datetime.
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        access_ttl_seconds: int = 15 * 60,
        refresh_ttl_seconds: int = 7 * 24 * 3600,
        registry: RefreshTokenStore | None = None,
        rotate: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if access_secret == refresh_secret:
            raise ValueError("Access and refresh tokens must use different secrets.")
        self._secrets = {ACCESS: access_secret, REFRESH: refresh_secret}
        self._ttls = {ACCESS: access_ttl_seconds, REFRESH: refresh_ttl_seconds}
        self._registry = registry
        self.rotate = rotate
        self._clock = clock

    @property
    def revocation_enabled(self) -> bool:
        return self._registry is not None

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue_access(self, subject: str) -> IssuedToken:
        return self._encode(ACCESS, subject)

    def issue_refresh(self, subject: str) -> IssuedToken:
        token = self._encode(REFRESH, subject)
        if self._registry is not None:
            self._registry.add(_registry_record(token))
        return token

    def _encode(self, token_class: str, subject: str) -> IssuedToken:
        iat = int(self._clock().timestamp())
        exp = iat + self._ttls[token_class]
        jti = secrets.token_hex(16)
        claims = {"sub": subject, "typ": token_class, "jti": jti, "iat": iat, "exp": exp}
        value = jwt.encode(claims, self._secrets[token_class], algorithm=_ALGORITHM)
        return IssuedToken(
            value=value,
            token_class=token_class,
            subject=subject,
            jti=jti,
            issued_at=_epoch(iat),
            expires_at=_epoch(exp),
        )

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify(self, token: str, expected_class: str) -> TokenClaims:
        """Verify token as expected_class and return its claims.

        Raises:
            MalformedToken:      not a JWT, or required claims missing/ill-typed.
            TokenClassMismatch:  a valid-looking token of the other class.
            SignatureInvalid:    signature does not match the class secret.
            Expired:             now >= exp.
        """
        if expected_class not in _TOKEN_CLASSES:
            raise ValueError(f"Unknown token class: {expected_class!r}")
        if not isinstance(token, str) or not token:
            raise MalformedToken()
        try:
            header = jwt.get_unverified_header(token)
            unverified = jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise MalformedToken() from exc
        if header.get("alg") != _ALGORITHM or not _has_required_claims(unverified):
            raise MalformedToken()
        if unverified["typ"] != expected_class:
            raise TokenClassMismatch()

        try:
            claims = jwt.decode(
                token,
                self._secrets[expected_class],
                algorithms=[_ALGORITHM],
                options={"verify_exp": False},
            )
        except JWTError as exc:
            raise SignatureInvalid() from exc

        if int(self._clock().timestamp()) >= claims["exp"]:
            raise Expired()
        return TokenClaims(
            subject=claims["sub"],
            token_class=claims["typ"],
            jti=claims["jti"],
            issued_at=_epoch(claims["iat"]),
            expires_at=_epoch(claims["exp"]),
        )

    # ------------------------------------------------------------------
    # Rotation / revocation
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str) -> TokenPair:
        """Redeem a refresh token for a new access token (and refresh token).

        Raises TokenReuseDetected if the registry no longer considers the
        token live; all of the subject's refresh tokens are revoked first.
        """
        claims = self.verify(refresh_token, REFRESH)

        if self._registry is None:
            # Nothing to invalidate; the presented token stays valid until exp.
            return TokenPair(access=self.issue_access(claims.subject), refresh=self._encode(REFRESH, claims.subject))

        if not self.rotate:
            record = self._registry.get(claims.jti)
            if record is None or record.revoked_at is not None:
                self._reuse_detected(claims)
            presented = IssuedToken(
                value=refresh_token,
                token_class=REFRESH,
                subject=claims.subject,
                jti=claims.jti,
                issued_at=claims.issued_at,
                expires_at=claims.expires_at,
            )
            return TokenPair(access=self.issue_access(claims.subject), refresh=presented)

        replacement = self._encode(REFRESH, claims.subject)
        if not self._registry.rotate(claims.jti, _registry_record(replacement), self._clock()):
            self._reuse_detected(claims)
        return TokenPair(access=self.issue_access(claims.subject), refresh=replacement)

    def revoke(self, refresh_token: str) -> bool:
        """Revoke a refresh token. Invalid, expired or unknown tokens are ignored."""
        if self._registry is None or not refresh_token:
            return False
        try:
            claims = self.verify(refresh_token, REFRESH)
        except TokenError:
            return False
        return self._registry.revoke(claims.jti, self._clock())

    def revoke_all(self, subject: str) -> int:
        if self._registry is None:
            return 0
        return self._registry.revoke_all(subject, self._clock())

    def purge_expired(self) -> int:
        if self._registry is None:
            return 0
        return self._registry.purge_expired(self._clock())

    def _reuse_detected(self, claims: TokenClaims) -> None:
        revoked = self.revoke_all(claims.subject)
        logger.error(
            "Refresh token reuse detected for user %s; revoked %d outstanding refresh token(s)",
            claims.subject,
            revoked,
        )
        raise TokenReuseDetected()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _has_required_claims(claims) -> bool:
    if not isinstance(claims, dict):
        return False
    return (
        isinstance(claims.get("sub"), str)
        and bool(claims["sub"])
        and claims.get("typ") in _TOKEN_CLASSES
        and isinstance(claims.get("jti"), str)
        and _is_int(claims.get("iat"))
        and _is_int(claims.get("exp"))
    )


def _registry_record(token: IssuedToken) -> RefreshTokenRecord:
    return RefreshTokenRecord(
        jti=token.jti,
        user_id=token.subject,
        issued_at=token.issued_at,
        expires_at=token.expires_at,
    )
