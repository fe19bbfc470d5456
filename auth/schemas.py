"""
JSON request and response bodies for hosts exposing the auth module over HTTP.

These Pydantic v2 models define the transport contract. They are separate
from the dataclasses in auth/models.py, which own the internal shape; the
from_* factory methods do the mapping so it lives next to the output model
rather than in every caller.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.errors import AuthError
from auth.models import LoginResult, PublicUser

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Body for a registration call.

    max_length on password keeps input well below anything that could be
    used to make bcrypt burn CPU on megabyte payloads; the 72-byte bcrypt cap
    itself is enforced by PasswordPolicy.
    """

    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=255)
    display_name: str = Field(default="", max_length=100, alias="displayName")

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, value: str) -> str:
        return value.lower()


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class RefreshRequest(BaseModel):
    refresh_token: Optional[str] = Field(default=None, max_length=4096)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public user payload. There is no password field to leak."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    display_name: str
    created_at: datetime

    @classmethod
    def from_user(cls, user: PublicUser) -> UserResponse:
        return cls(id=user.id, email=user.email, display_name=user.display_name, created_at=user.created_at)


class TokenResponse(BaseModel):
    """Body returned by login and refresh."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse

    @classmethod
    def from_result(cls, result: LoginResult) -> TokenResponse:
        return cls(
            access_token=result.tokens.access.value,
            refresh_token=result.tokens.refresh.value,
            expires_in=result.tokens.access.expires_in,
            user=UserResponse.from_user(result.user),
        )


class MessageResponse(BaseModel):
    message: str


class ErrorDetail(BaseModel):
    code: str
    message: str


class ErrorResponse(BaseModel):
    error: ErrorDetail

    @classmethod
    def from_error(cls, exc: AuthError) -> ErrorResponse:
        return cls(error=ErrorDetail(code=exc.code, message=exc.message))
