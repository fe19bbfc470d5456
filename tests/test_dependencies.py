"""
tests/test_dependencies.py -- Integration tests for the FastAPI adapter.

A minimal host app is assembled here the way a real host would do it: the
service lives on app.state, handlers build AuthRequest views with
auth_request(), apply the returned ResponseActions with apply_actions(), and
render AuthError with error_response().

Design: the Database uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs handlers and run_in_threadpool work on
other threads. A per-test uuid in the name keeps tests isolated.

Coverage:
  - login sets httpOnly cookies; the cookie jar then authenticates /me
  - bearer header authenticates /me
  - wrong password -> 401 invalid_credentials with no-store
  - bad token -> 401 with the generic unauthenticated body
  - duplicate registration -> 409, weak password -> 400
  - logout clears cookies; replaying the old refresh token is denied
  - store failure -> 503
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncIterator, Generator
from contextlib import asynccontextmanager

import pytest
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.testclient import TestClient
from starlette.concurrency import run_in_threadpool

from auth.dependencies import apply_actions, auth_request, error_response, get_current_user
from auth.errors import AuthError, StoreUnavailable
from auth.models import PublicUser
from auth.schemas import (
    LoginRequest,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    TokenResponse,
    UserResponse,
)
from auth.service import AuthService
from auth.store import Database
from core.logging_config import configure_logging


def _build_app(service: AuthService) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging(logging.DEBUG)
        app.state.auth_service = service
        yield
        logging.getLogger("gatekeeper").setLevel(logging.NOTSET)

    app = FastAPI(lifespan=lifespan)

    @app.post("/register", status_code=201)
    async def register(body: RegisterRequest):
        try:
            user = await run_in_threadpool(service.register, body.email, body.password, body.display_name)
        except AuthError as exc:
            return error_response(exc)
        return JSONResponse(status_code=201, content=UserResponse.from_user(user).model_dump(mode="json"))

    @app.post("/login")
    async def login(body: LoginRequest):
        try:
            result = await run_in_threadpool(service.login, body.email, body.password)
        except AuthError as exc:
            return error_response(exc)
        resp = JSONResponse(content=TokenResponse.from_result(result).model_dump(mode="json"))
        resp.headers["Cache-Control"] = "no-store"
        return apply_actions(resp, result.actions)

    @app.post("/refresh")
    async def refresh(request: Request, body: RefreshRequest):
        token = body.refresh_token or request.cookies.get("refresh_token", "")
        try:
            result = await run_in_threadpool(service.refresh, token)
        except AuthError as exc:
            return error_response(exc)
        resp = JSONResponse(content=TokenResponse.from_result(result).model_dump(mode="json"))
        return apply_actions(resp, result.actions)

    @app.post("/logout")
    async def logout(request: Request):
        actions = await run_in_threadpool(service.logout, auth_request(request))
        resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump())
        return apply_actions(resp, actions)

    @app.get("/me")
    async def me(user: PublicUser = Depends(get_current_user)):
        return UserResponse.from_user(user).model_dump(mode="json")

    return app


@pytest.fixture
def http_db() -> Generator[Database, None, None]:
    database = Database(f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")
    yield database
    database.close()


@pytest.fixture
def client(http_db: Database, settings) -> Generator[TestClient, None, None]:
    service = AuthService.from_settings(settings, http_db)
    service.register("a@x.com", "Password123", "A")
    with TestClient(_build_app(service)) as test_client:
        yield test_client


def _set_cookie_headers(resp) -> list[str]:
    return [v for k, v in resp.headers.multi_items() if k.lower() == "set-cookie"]


class TestLoginFlow:
    def test_login_sets_httponly_cookies(self, client: TestClient) -> None:
        resp = client.post("/login", json={"email": "a@x.com", "password": "Password123"})
        assert resp.status_code == 200
        headers = _set_cookie_headers(resp)
        for name in ("access_token", "refresh_token", "sessionId"):
            cookie = next(h for h in headers if h.startswith(f"{name}="))
            assert "HttpOnly" in cookie
            assert "samesite=lax" in cookie.lower()
        body = resp.json()
        assert body["token_type"] == "bearer"
        assert body["expires_in"] == 900
        assert "password" not in str(body).lower()

    def test_cookie_jar_authenticates(self, client: TestClient) -> None:
        client.post("/login", json={"email": "a@x.com", "password": "Password123"})
        resp = client.get("/me")
        assert resp.status_code == 200
        assert resp.json()["email"] == "a@x.com"

    def test_bearer_header_authenticates(self, client: TestClient) -> None:
        token = client.post("/login", json={"email": "A@X.com", "password": "Password123"}).json()["access_token"]
        client.cookies.clear()
        resp = client.get("/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 200
        assert resp.json()["display_name"] == "A"

    def test_refresh_rotates_and_rejects_replay(self, client: TestClient) -> None:
        login = client.post("/login", json={"email": "a@x.com", "password": "Password123"}).json()
        client.cookies.clear()
        first = client.post("/refresh", json={"refresh_token": login["refresh_token"]})
        assert first.status_code == 200
        assert first.json()["refresh_token"] != login["refresh_token"]
        replay = client.post("/refresh", json={"refresh_token": login["refresh_token"]})
        assert replay.status_code == 401
        assert replay.json() == {"error": {"code": "unauthenticated", "message": "Authentication required."}}


class TestErrorMapping:
    def test_wrong_password(self, client: TestClient) -> None:
        resp = client.post("/login", json={"email": "a@x.com", "password": "nope-nope-1"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_credentials"
        assert resp.headers["Cache-Control"] == "no-store"

    def test_unknown_email_matches_wrong_password(self, client: TestClient) -> None:
        wrong = client.post("/login", json={"email": "a@x.com", "password": "nope-nope-1"})
        unknown = client.post("/login", json={"email": "who@x.com", "password": "nope-nope-1"})
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()

    def test_bad_token_gets_generic_denial(self, client: TestClient) -> None:
        resp = client.get("/me", headers={"Authorization": "Bearer not.a.token"})
        assert resp.status_code == 401
        assert resp.json() == {"detail": {"code": "unauthenticated", "message": "Authentication required."}}

    def test_no_credentials(self, client: TestClient) -> None:
        assert client.get("/me").status_code == 401

    def test_duplicate_registration(self, client: TestClient) -> None:
        body = {"email": "a@x.com", "password": "Password123", "displayName": "A"}
        resp = client.post("/register", json=body)
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "duplicate_email"

    def test_register_then_weak_password(self, client: TestClient) -> None:
        created = client.post("/register", json={"email": "b@x.com", "password": "Password456", "displayName": "B"})
        assert created.status_code == 201
        assert "password_hash" not in created.json()
        weak = client.post("/register", json={"email": "c@x.com", "password": "short", "displayName": "C"})
        assert weak.status_code == 400
        assert weak.json()["error"]["code"] == "weak_password"

    def test_store_failure_is_503(
        self, client: TestClient, http_db: Database, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        token = client.post("/login", json={"email": "a@x.com", "password": "Password123"}).json()["access_token"]

        def _down(user_id: str):
            raise StoreUnavailable()

        monkeypatch.setattr(http_db.users, "find_by_id", _down)
        resp = client.get("/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 503
        assert resp.json()["detail"]["code"] == "store_unavailable"


class TestLogout:
    def test_logout_clears_cookies_and_revokes(self, client: TestClient) -> None:
        login = client.post("/login", json={"email": "a@x.com", "password": "Password123"}).json()
        resp = client.post("/logout")
        assert resp.status_code == 200
        cleared = _set_cookie_headers(resp)
        for name in ("access_token", "refresh_token", "sessionId"):
            assert any(h.startswith(f"{name}=") and "max-age=0" in h.lower() for h in cleared)
        replay = client.post("/refresh", json={"refresh_token": login["refresh_token"]})
        assert replay.status_code == 401

    def test_logout_twice_is_fine(self, client: TestClient) -> None:
        assert client.post("/logout").status_code == 200
        assert client.post("/logout").status_code == 200


def test_configure_logging_sets_gatekeeper_level(client: TestClient) -> None:
    logger = logging.getLogger("gatekeeper")
    assert logger.level == logging.DEBUG
    try:
        assert configure_logging("WARNING") is logger
        assert logger.level == logging.WARNING
    finally:
        logger.setLevel(logging.NOTSET)
