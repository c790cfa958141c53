"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import Callable, Generator
from datetime import UTC, datetime, timedelta
from typing import Any
from urllib.parse import parse_qs, parse_qsl, urlparse

import httpx
import jwt
import pytest
from flask import Flask
from flask.testing import FlaskClient

from authsession.core.config import ClientSettings
from authsession.core.logging import LoggingClient, ProtocolLogger
from authsession.core.session import AuthSession
from authsession.core.storage import MemoryStorage

ISSUER = "https://idp.example.com/realms/demo"
CLIENT_ID = "demo-app"
REDIRECT_URI = "http://localhost:4200/callback"
TOKEN_ENDPOINT = f"{ISSUER}/protocol/openid-connect/token"
AUTHORIZATION_ENDPOINT = f"{ISSUER}/protocol/openid-connect/auth"
END_SESSION_ENDPOINT = f"{ISSUER}/protocol/openid-connect/logout"

# HS256 test key; long enough that PyJWT does not warn
JWT_SECRET = "unit-test-signing-secret-0123456789abcdef"

START = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeTimer:
    def __init__(self, due: datetime, delay: float, callback: Callable[[], None]) -> None:
        self.due = due
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Scheduler driven by a ManualClock instead of real threads."""

    def __init__(self, clock: ManualClock) -> None:
        self.clock = clock
        self.timers: list[FakeTimer] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(self.clock() + timedelta(seconds=max(0.0, delay)), delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> list[FakeTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def run_due(self) -> None:
        """Fire every pending timer that is due, including ones scheduled while firing."""
        while True:
            due = [t for t in self.pending if t.due <= self.clock()]
            if not due:
                return
            timer = min(due, key=lambda t: t.due)
            timer.fired = True
            timer.callback()

    def advance(self, seconds: float) -> None:
        self.clock.advance(seconds)
        self.run_due()


def make_id_token(
    nonce: str | None = None,
    roles: list[str] | None = None,
    **claims: Any,
) -> str:
    """Create a signed ID token shaped like a Keycloak one."""
    payload: dict[str, Any] = {
        "iss": ISSUER,
        "aud": CLIENT_ID,
        "sub": "user-123",
        "preferred_username": "alice",
        "email": "alice@example.com",
        "name": "Alice Example",
        "given_name": "Alice",
        "family_name": "Example",
        "realm_access": {"roles": roles if roles is not None else ["USER"]},
        "iat": int(START.timestamp()),
        "exp": int(START.timestamp()) + 300,
    }
    if nonce is not None:
        payload["nonce"] = nonce
    payload.update(claims)
    return jwt.encode(payload, JWT_SECRET, algorithm="HS256")


def discovery_document(issuer: str = ISSUER) -> dict[str, Any]:
    return {
        "issuer": issuer,
        "authorization_endpoint": f"{issuer}/protocol/openid-connect/auth",
        "token_endpoint": f"{issuer}/protocol/openid-connect/token",
        "end_session_endpoint": f"{issuer}/protocol/openid-connect/logout",
        "jwks_uri": f"{issuer}/protocol/openid-connect/certs",
        "userinfo_endpoint": f"{issuer}/protocol/openid-connect/userinfo",
        "code_challenge_methods_supported": ["plain", "S256"],
        "grant_types_supported": ["authorization_code", "refresh_token"],
    }


class FakeProvider:
    """In-memory identity provider served through httpx.MockTransport."""

    def __init__(self, issuer: str = ISSUER) -> None:
        self.issuer = issuer
        self.document: Any = discovery_document(issuer)
        self.discovery_status = 200
        self.discovery_calls = 0
        self.token_requests: list[dict[str, str]] = []
        self.token_responses: list[httpx.Response] = []
        self.protocol_logger = ProtocolLogger()

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/.well-known/openid-configuration"):
            self.discovery_calls += 1
            if isinstance(self.document, (dict, list)):
                return httpx.Response(self.discovery_status, json=self.document)
            return httpx.Response(self.discovery_status, text=str(self.document))

        if str(request.url) == f"{self.issuer}/protocol/openid-connect/token":
            self.token_requests.append(dict(parse_qsl(request.content.decode("utf-8"))))
            if self.token_responses:
                return self.token_responses.pop(0)
            return httpx.Response(400, json={"error": "invalid_grant", "error_description": "No response queued"})

        return httpx.Response(404, json={"error": "not_found"})

    def queue_tokens(
        self,
        access_token: str = "access-1",
        refresh_token: str | None = "refresh-1",
        id_token: str | None = None,
        expires_in: int | None = 300,
        **extra: Any,
    ) -> None:
        body: dict[str, Any] = {"access_token": access_token, "token_type": "Bearer", **extra}
        if refresh_token is not None:
            body["refresh_token"] = refresh_token
        if id_token is not None:
            body["id_token"] = id_token
        if expires_in is not None:
            body["expires_in"] = expires_in
        self.token_responses.append(httpx.Response(200, json=body))

    def queue_token_error(self, error: str = "invalid_grant", description: str = "Token is not active") -> None:
        self.token_responses.append(
            httpx.Response(400, json={"error": error, "error_description": description})
        )

    def http_client(self) -> httpx.Client:
        return LoggingClient(protocol_logger=self.protocol_logger, transport=httpx.MockTransport(self.handler))


def query_params(url: str) -> dict[str, str]:
    """Single-valued query parameters of a URL."""
    return {name: values[0] for name, values in parse_qs(urlparse(url).query).items()}


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def scheduler(clock: ManualClock) -> FakeScheduler:
    return FakeScheduler(clock)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def navigations() -> list[str]:
    """URLs the session navigated to, in order."""
    return []


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def settings() -> ClientSettings:
    return ClientSettings(client_id=CLIENT_ID, issuer=ISSUER, redirect_uri=REDIRECT_URI)


@pytest.fixture
def make_session(
    settings: ClientSettings,
    storage: MemoryStorage,
    navigations: list[str],
    scheduler: FakeScheduler,
    clock: ManualClock,
    provider: FakeProvider,
) -> Generator[Callable[..., AuthSession], None, None]:
    """Factory for sessions wired to the fake provider, clock and scheduler."""
    created: list[AuthSession] = []

    def factory(**overrides: Any) -> AuthSession:
        kwargs: dict[str, Any] = {
            "settings": settings,
            "storage": storage,
            "navigator": navigations.append,
            "scheduler": scheduler,
            "clock": clock,
            "http_client": provider.http_client(),
            "protocol_logger": provider.protocol_logger,
        }
        kwargs.update(overrides)
        auth_session = AuthSession(**kwargs)
        created.append(auth_session)
        return auth_session

    yield factory

    for auth_session in created:
        auth_session.close()


@pytest.fixture
def auth_session(make_session: Callable[..., AuthSession]) -> AuthSession:
    """A started session with no tokens."""
    auth_session = make_session()
    auth_session.start()
    return auth_session


@pytest.fixture
def login(
    navigations: list[str],
    provider: FakeProvider,
) -> Callable[..., dict[str, str]]:
    """Run a full login round-trip against the fake provider.

    Returns the authorization request parameters of the attempt.
    """

    def do_login(
        auth_session: AuthSession,
        roles: list[str] | None = None,
        expires_in: int | None = 300,
        refresh_token: str | None = "refresh-1",
        access_token: str = "access-1",
    ) -> dict[str, str]:
        auth_session.login()
        params = query_params(navigations[-1])
        provider.queue_tokens(
            access_token=access_token,
            refresh_token=refresh_token,
            id_token=make_id_token(nonce=params["nonce"], roles=roles),
            expires_in=expires_in,
        )
        auth_session.handle_redirect_return(code="auth-code-1", state=params["state"])
        return params

    return do_login


@pytest.fixture
def web_session(make_session: Callable[..., AuthSession]) -> AuthSession:
    """A started session that navigates by redirecting the current request."""
    from authsession.web.routes.auth import flask_navigator

    auth_session = make_session(navigator=flask_navigator)
    auth_session.start()
    return auth_session


@pytest.fixture
def app(web_session: AuthSession) -> Flask:
    """Flask application serving the test session."""
    from authsession.app import create_app

    return create_app({"TESTING": True, "SECRET_KEY": "test-secret-key"}, auth_session=web_session)


@pytest.fixture
def client(app: Flask) -> FlaskClient:
    """Create test client."""
    return app.test_client()
