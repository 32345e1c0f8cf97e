"""Pytest configuration shared across the suite."""

try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover
    import _bootstrap  # type: ignore # noqa: F401

from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlencode, urlsplit

import pytest

from oauth_bridge.clients.sqlite_store import SQLiteStore
from oauth_bridge.models.oauth import UpstreamCredentials
from oauth_bridge.services.client_store import OAuthClientStore
from oauth_bridge.services.code_store import AuthorizationCodeStore
from oauth_bridge.services.session_store import SessionStore
from oauth_bridge.services.token_bridge import TokenBridge, compute_code_challenge
from oauth_bridge.services.token_cipher import TokenCipherService

CODE_VERIFIER = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
CLIENT_REDIRECT_URI = "https://client.example.com/callback"


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO-powered tests to run against asyncio backend only."""
    return "asyncio"


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeGoogle:
    """Stands in for GoogleOAuthClient; records every upstream call."""

    def __init__(self, clock: FakeClock) -> None:
        self._clock = clock
        self.exchanged: list[str] = []
        self.refreshed: list[str] = []
        self.revoked: list[str] = []
        self.exchange_error: Exception | None = None
        self.refresh_error: Exception | None = None
        self.revoke_error: Exception | None = None
        self.subject_error: Exception | None = None
        self.rotated_refresh_token: str | None = None

    def build_authorization_url(self, state, scopes=None, access_type="offline") -> str:
        return "https://accounts.example.com/auth?" + urlencode({"state": state})

    async def exchange_authorization_code(self, code, redirect_uri=None) -> UpstreamCredentials:
        if self.exchange_error:
            raise self.exchange_error
        self.exchanged.append(code)
        return UpstreamCredentials(
            access_token=f"google-access-{code}",
            refresh_token=f"google-refresh-{code}",
            expires_at=self._clock() + timedelta(hours=1),
        )

    async def fetch_subject_identifier(self, access_token: str) -> str:
        if self.subject_error:
            raise self.subject_error
        return "person@example.com"

    async def refresh_token(self, refresh_token: str) -> UpstreamCredentials:
        if self.refresh_error:
            raise self.refresh_error
        self.refreshed.append(refresh_token)
        return UpstreamCredentials(
            access_token=f"google-access-refreshed-{len(self.refreshed)}",
            refresh_token=self.rotated_refresh_token,
            expires_at=self._clock() + timedelta(hours=1),
        )

    async def revoke_token(self, token: str) -> None:
        self.revoked.append(token)
        if self.revoke_error:
            raise self.revoke_error


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def record_store(tmp_path) -> SQLiteStore:
    return SQLiteStore(str(tmp_path / "records.sqlite3"))


@pytest.fixture
def cipher() -> TokenCipherService:
    return TokenCipherService(secret="test-secret")


@pytest.fixture
def code_store(record_store, cipher, clock) -> AuthorizationCodeStore:
    return AuthorizationCodeStore(record_store, cipher, clock=clock)


@pytest.fixture
def session_store(record_store, cipher, clock) -> SessionStore:
    return SessionStore(record_store, cipher, clock=clock)


@pytest.fixture
def client_store(record_store, clock) -> OAuthClientStore:
    return OAuthClientStore(record_store, issuer="https://bridge.example.com/", clock=clock)


@pytest.fixture
def google(clock) -> FakeGoogle:
    return FakeGoogle(clock)


@pytest.fixture
def bridge(code_store, session_store, google, clock) -> TokenBridge:
    return TokenBridge(
        codes=code_store,
        sessions=session_store,
        upstream=google,
        clock=clock,
    )


@pytest.fixture
def registered_client(client_store):
    return client_store.register_client(
        {"redirect_uris": [CLIENT_REDIRECT_URI], "client_name": "Test Assistant"}
    )


@pytest.fixture
def complete_authorization(bridge, registered_client):
    """Run authorize plus the Google callback; returns our authorization code."""

    async def _run(upstream_code: str = "google-code", verifier: str = CODE_VERIFIER) -> str:
        url = await bridge.authorize(
            registered_client,
            code_challenge=compute_code_challenge(verifier),
            redirect_uri=CLIENT_REDIRECT_URI,
            client_state="client-state",
        )
        code = parse_qs(urlsplit(url).query)["state"][0]
        await bridge.complete_upstream_callback(upstream_code, code)
        return code

    return _run
