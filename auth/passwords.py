"""
auth/passwords.py -- Password hashing and password policy.

Passwords: bcrypt used directly (no passlib wrapper). Each hash() call draws
a fresh salt from bcrypt.gensalt(), so hashing the same password twice gives
two different digests that both verify. The cost factor (rounds) is embedded
in the digest; verify() reads salt and cost back out of it, and
bcrypt.checkpw compares in constant time.

bcrypt only considers the first 72 bytes of input, and current releases
raise ValueError for anything longer. hash() and PasswordPolicy reject such
passwords with WeakPassword, and verify() treats them as a mismatch.

Hashing is deliberately slow. Async hosts should call into the service from a
worker thread (see auth/dependencies.py) so a login does not stall the event
loop.
"""

from __future__ import annotations

import re

import bcrypt

from auth.errors import InvalidDigestFormat, WeakPassword

BCRYPT_MAX_BYTES = 72

# Modular crypt format: $2b$12$ + 22 chars salt + 31 chars checksum
_BCRYPT_DIGEST = re.compile(r"^\$2[abxy]?\$(0[4-9]|[12]\d|3[01])\$[./A-Za-z0-9]{53}$")


class PasswordHasher:
    """bcrypt hash / verify with a tunable cost factor.

    Usage:
        hasher = PasswordHasher(rounds=12)
        digest = hasher.hash("correct horse")
        hasher.verify("correct horse", digest)  # True
    """

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        # Timing equalization digest. Computed once so verify_dummy() costs
        # the same as a real check at this instance's cost factor.
        self._dummy_digest = self.hash("gatekeeper_timing_dummy")

    def hash(self, plaintext: str) -> str:
        """Return a salted bcrypt digest of plaintext.

        Raises WeakPassword if plaintext is over 72 bytes.
        """
        candidate = plaintext.encode("utf-8")
        if len(candidate) > BCRYPT_MAX_BYTES:
            raise WeakPassword(f"Password must be at most {BCRYPT_MAX_BYTES} bytes.")
        return bcrypt.hashpw(candidate, bcrypt.gensalt(rounds=self.rounds)).decode("ascii")

    def verify(self, plaintext: str, digest: str) -> bool:
        """Return True if plaintext matches digest.

        Raises InvalidDigestFormat if digest is not a bcrypt digest. The error
        message is fixed; neither value is echoed back.
        """
        if not isinstance(digest, str) or not _BCRYPT_DIGEST.match(digest):
            raise InvalidDigestFormat()
        candidate = plaintext.encode("utf-8")
        if len(candidate) > BCRYPT_MAX_BYTES:
            # Still spend the bcrypt work so long inputs are not a timing oracle.
            bcrypt.checkpw(b"x", self._dummy_digest.encode("ascii"))
            return False
        try:
            return bcrypt.checkpw(candidate, digest.encode("ascii"))
        except ValueError as exc:
            raise InvalidDigestFormat() from exc

    def verify_dummy(self, plaintext: str) -> None:
        """Burn one verify against the dummy digest.

        Called when the account does not exist so the response time matches a
        wrong-password attempt and does not reveal which emails are registered.
        """
        self.verify(plaintext, self._dummy_digest)


class PasswordPolicy:
    """Minimum length and complexity rules applied at registration."""

    def __init__(self, min_length: int = 8) -> None:
        self.min_length = min_length

    def check(self, password: str) -> None:
        """Raise WeakPassword unless password satisfies the policy."""
        if len(password) < self.min_length:
            raise WeakPassword(f"Password must be at least {self.min_length} characters.")
        if len(password.encode("utf-8")) > BCRYPT_MAX_BYTES:
            raise WeakPassword(f"Password must be at most {BCRYPT_MAX_BYTES} bytes.")
        if not any(c.isalpha() for c in password) or not any(c.isdigit() for c in password):
            raise WeakPassword("Password must contain at least one letter and one digit.")
