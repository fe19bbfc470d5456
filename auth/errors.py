"""
auth/errors.py -- Exception taxonomy for the auth module.

Every error carries a stable machine-readable `code` and a fixed, generic
`message`. Messages never include user input, password material, digests,
tokens or secrets, so any error may be logged or rendered as-is.

Hierarchy:
  AuthError
    ValidationFailed      -- recoverable, shown to the user (400/409)
      DuplicateEmail, WeakPassword, InvalidEmail
    AuthenticationFailed  -- collapsed into one generic denial at the boundary
      InvalidCredentials
      Unauthenticated
        TokenReuseDetected
      TokenError
        SignatureInvalid
          TokenClassMismatch
        Expired
        MalformedToken
    InvalidDigestFormat
    StoreUnavailable      -- surfaced to the host, never retried here (503)

TokenReuseDetected subclasses Unauthenticated so callers that only know the
generic denial still handle it; the service logs it at ERROR before raising.
"""

from __future__ import annotations


class AuthError(Exception):
    code: str = "auth_error"
    message: str = "Authentication error."

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ValidationFailed(AuthError):
    code = "validation_failed"
    message = "The request could not be validated."


class DuplicateEmail(ValidationFailed):
    code = "duplicate_email"
    message = "An account with that email already exists."


class WeakPassword(ValidationFailed):
    code = "weak_password"
    message = "Password does not meet the minimum requirements."


class InvalidEmail(ValidationFailed):
    code = "invalid_email"
    message = "Email address is not valid."


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


class AuthenticationFailed(AuthError):
    code = "unauthenticated"
    message = "Authentication required."


class InvalidCredentials(AuthenticationFailed):
    code = "invalid_credentials"
    message = "Invalid email or password."


class Unauthenticated(AuthenticationFailed):
    code = "unauthenticated"
    message = "Authentication required."


class TokenReuseDetected(Unauthenticated):
    code = "token_reuse_detected"


class TokenError(AuthenticationFailed):
    code = "invalid_token"
    message = "Token is not valid."


class SignatureInvalid(TokenError):
    code = "signature_invalid"


class TokenClassMismatch(SignatureInvalid):
    code = "token_class_mismatch"


class Expired(TokenError):
    code = "token_expired"
    message = "Token has expired."


class MalformedToken(TokenError):
    code = "malformed_token"


# ---------------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------------


class InvalidDigestFormat(AuthError):
    code = "invalid_digest_format"
    message = "Stored password digest is malformed."


class StoreUnavailable(AuthError):
    code = "store_unavailable"
    message = "Authentication store is unavailable."
