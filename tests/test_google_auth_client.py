from __future__ import annotations

from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from oauth_bridge.clients.google_auth import (
    GoogleOAuthClient,
    OAuthTokenExchangeError,
    OAuthTokenRevokedError,
    OAuthUpstreamUnavailableError,
)
from oauth_bridge.core.config import GoogleSettings, OAuthSettings
from oauth_bridge.utils.http import RetryConfig

NOW = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def _fixed_clock() -> datetime:
    return NOW


def _client(handler) -> GoogleOAuthClient:
    settings = GoogleSettings(
        GOOGLE_CLIENT_ID="client",
        GOOGLE_CLIENT_SECRET="secret",
        GOOGLE_REDIRECT_URI="https://bridge.example.com/google/callback",
    )
    return GoogleOAuthClient(
        settings,
        OAuthSettings(),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        retry_config=RetryConfig(attempts=2, backoff_seconds=0),
        clock=_fixed_clock,
    )


def test_authorization_url_requests_offline_consent() -> None:
    client = _client(lambda request: httpx.Response(200))

    url = client.build_authorization_url(state="our-code")

    query = parse_qs(urlsplit(url).query)
    assert url.startswith(GoogleOAuthClient.AUTH_BASE_URL)
    assert query["state"] == ["our-code"]
    assert query["access_type"] == ["offline"]
    assert query["prompt"] == ["consent"]
    assert query["redirect_uri"] == ["https://bridge.example.com/google/callback"]
    assert "https://www.googleapis.com/auth/contacts.readonly" in query["scope"][0].split()


@pytest.mark.asyncio
async def test_exchange_authorization_code_parses_tokens() -> None:
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(parse_qs(request.content.decode()))
        return httpx.Response(
            200,
            json={"access_token": "ya29.a", "refresh_token": "1//r", "expires_in": 1800},
        )

    credentials = await _client(handler).exchange_authorization_code("google-code")

    assert credentials.access_token == "ya29.a"
    assert credentials.refresh_token == "1//r"
    assert credentials.expires_at == NOW + timedelta(seconds=1800)
    assert seen[0]["grant_type"] == ["authorization_code"]
    assert seen[0]["code"] == ["google-code"]


@pytest.mark.asyncio
async def test_refresh_without_rotation_returns_no_refresh_token() -> None:
    handler = lambda request: httpx.Response(200, json={"access_token": "ya29.b"})

    credentials = await _client(handler).refresh_token("1//r")

    assert credentials.access_token == "ya29.b"
    assert credentials.refresh_token is None


@pytest.mark.asyncio
async def test_invalid_grant_is_reported_as_revoked() -> None:
    handler = lambda request: httpx.Response(
        400, json={"error": "invalid_grant", "error_description": "Token has been revoked."}
    )

    with pytest.raises(OAuthTokenRevokedError) as excinfo:
        await _client(handler).refresh_token("1//r")

    assert "Token has been revoked" not in str(excinfo.value)


@pytest.mark.asyncio
async def test_other_client_errors_are_exchange_errors() -> None:
    handler = lambda request: httpx.Response(401, json={"error": "invalid_client"})

    with pytest.raises(OAuthTokenExchangeError) as excinfo:
        await _client(handler).refresh_token("1//r")

    assert not isinstance(excinfo.value, (OAuthTokenRevokedError, OAuthUpstreamUnavailableError))


@pytest.mark.asyncio
async def test_server_errors_are_retried_then_unavailable() -> None:
    calls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        return httpx.Response(503, text="backend error")

    with pytest.raises(OAuthUpstreamUnavailableError):
        await _client(handler).refresh_token("1//r")

    assert len(calls) == 2


@pytest.mark.asyncio
async def test_transport_errors_are_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(OAuthUpstreamUnavailableError):
        await _client(handler).exchange_authorization_code("google-code")


@pytest.mark.asyncio
async def test_transient_failure_recovers_on_retry() -> None:
    responses = [
        httpx.Response(502),
        httpx.Response(200, json={"access_token": "ya29.c", "expires_in": 3600}),
    ]

    credentials = await _client(lambda request: responses.pop(0)).refresh_token("1//r")

    assert credentials.access_token == "ya29.c"


@pytest.mark.asyncio
async def test_revoke_posts_token() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200)

    await _client(handler).revoke_token("ya29.a")

    assert str(seen[0].url) == GoogleOAuthClient.REVOKE_URL
    assert parse_qs(seen[0].content.decode()) == {"token": ["ya29.a"]}


@pytest.mark.asyncio
async def test_revoke_failure_raises() -> None:
    handler = lambda request: httpx.Response(400, json={"error": "invalid_token"})

    with pytest.raises(OAuthTokenExchangeError):
        await _client(handler).revoke_token("ya29.a")


@pytest.mark.asyncio
async def test_fetch_subject_identifier_reads_email() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer ya29.a"
        return httpx.Response(200, json={"email": "person@example.com", "id": "123"})

    assert await _client(handler).fetch_subject_identifier("ya29.a") == "person@example.com"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, text="<html>not json</html>"),
        httpx.Response(200, json=["person@example.com"]),
    ],
)
async def test_fetch_subject_identifier_rejects_unreadable_body(response) -> None:
    with pytest.raises(OAuthTokenExchangeError):
        await _client(lambda request: response).fetch_subject_identifier("ya29.a")
