"""
auth/dependencies.py -- FastAPI/Starlette glue for hosts embedding AuthService.

The auth module itself never sees an HTTP object. This adapter is the one
place that translates in both directions:

  auth_request()      Starlette Request  -> AuthRequest view
  apply_actions()     ResponseActions    -> Set-Cookie headers on a Response
  error_response()    AuthError          -> JSON error response
  get_current_user()  Depends() helper that resolves the caller or raises 401

Error boundary: every AuthenticationFailed except InvalidCredentials is
rendered as the same 401 "unauthenticated" body, so clients cannot tell a bad
signature from an expired or reused token. Validation errors keep their own
codes. StoreUnavailable becomes 503 for the host's retry policy.

Service calls run through run_in_threadpool (anyio's bounded worker pool):
bcrypt and the store are blocking and must not stall the event loop.

The service instance lives on app.state.auth_service, set by the host's
lifespan together with the Database it owns.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from fastapi import HTTPException, Request, Response
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from auth.errors import (
    AuthenticationFailed,
    AuthError,
    DuplicateEmail,
    InvalidCredentials,
    StoreUnavailable,
    Unauthenticated,
    ValidationFailed,
)
from auth.models import AuthRequest, PublicUser, ResponseActions
from auth.schemas import ErrorResponse
from auth.service import AuthService


def auth_request(request: Request, body: Mapping[str, Any] | None = None) -> AuthRequest:
    """Build the structured request view from headers, cookies and a parsed body."""
    return AuthRequest.from_headers(
        authorization=request.headers.get("Authorization"),
        cookies=request.cookies,
        body=body,
    )


def apply_actions(response: Response, actions: ResponseActions) -> Response:
    """Write the service's cookie directives onto a Starlette response."""
    for cookie in actions.clear_cookies:
        response.delete_cookie(cookie.name, path=cookie.path, domain=cookie.domain)
    for cookie in actions.set_cookies:
        response.set_cookie(
            cookie.name,
            value=cookie.value,
            max_age=cookie.max_age,
            path=cookie.path,
            domain=cookie.domain,
            secure=cookie.secure,
            httponly=cookie.http_only,
            samesite=cookie.same_site,
        )
    return response


def error_status(exc: AuthError) -> tuple[int, AuthError]:
    """Map an error to (status code, error to render)."""
    if isinstance(exc, DuplicateEmail):
        return 409, exc
    if isinstance(exc, ValidationFailed):
        return 400, exc
    if isinstance(exc, InvalidCredentials):
        return 401, exc
    if isinstance(exc, AuthenticationFailed):
        return 401, Unauthenticated()
    if isinstance(exc, StoreUnavailable):
        return 503, exc
    return 500, AuthError()


def error_response(exc: AuthError) -> JSONResponse:
    status_code, rendered = error_status(exc)
    resp = JSONResponse(status_code=status_code, content=ErrorResponse.from_error(rendered).model_dump())
    resp.headers["Cache-Control"] = "no-store"
    return resp


async def try_get_current_user(request: Request) -> PublicUser | None:
    """Soft variant: the authenticated user, or None. Store failures still raise."""
    service: AuthService = request.app.state.auth_service
    try:
        return await run_in_threadpool(service.authenticate, auth_request(request))
    except AuthenticationFailed:
        return None


async def get_current_user(request: Request) -> PublicUser:
    """Require authentication. Raises HTTP 401 (or 503 if the store is down).

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: PublicUser = Depends(get_current_user)): ...
    """
    try:
        user = await try_get_current_user(request)
    except StoreUnavailable as exc:
        raise HTTPException(
            status_code=503,
            detail={"code": exc.code, "message": exc.message},
        ) from exc
    if user is None:
        denial = Unauthenticated()
        raise HTTPException(
            status_code=401,
            detail={"code": denial.code, "message": denial.message},
        )
    return user
