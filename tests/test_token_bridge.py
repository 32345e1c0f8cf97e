from __future__ import annotations

import asyncio
from urllib.parse import parse_qs, urlsplit

import pytest

from oauth_bridge.clients.google_auth import (
    OAuthTokenExchangeError,
    OAuthTokenRevokedError,
    OAuthUpstreamUnavailableError,
)
from oauth_bridge.core.errors import (
    InvalidGrantError,
    InvalidRequestError,
    InvalidStateError,
    UnauthorizedError,
    UpstreamUnavailableError,
)
from oauth_bridge.models.oauth import AuthorizationState
from oauth_bridge.services.token_bridge import build_client_redirect, compute_code_challenge

CODE_VERIFIER = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
CLIENT_REDIRECT_URI = "https://client.example.com/callback"


def test_compute_code_challenge_matches_rfc7636_example() -> None:
    assert (
        compute_code_challenge(CODE_VERIFIER)
        == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"
    )


@pytest.mark.asyncio
async def test_authorize_stores_pending_code_and_redirects_to_google(
    bridge, code_store, registered_client
) -> None:
    url = await bridge.authorize(
        registered_client,
        code_challenge=compute_code_challenge(CODE_VERIFIER),
        redirect_uri=CLIENT_REDIRECT_URI,
        client_state="abc",
    )

    code = parse_qs(urlsplit(url).query)["state"][0]
    record = code_store.get(code)
    assert record.state is AuthorizationState.UPSTREAM_PENDING
    assert record.client_id == registered_client.client_id
    assert record.client_state == "abc"


@pytest.mark.asyncio
async def test_authorize_rejects_unregistered_redirect(bridge, registered_client) -> None:
    with pytest.raises(InvalidRequestError):
        await bridge.authorize(
            registered_client,
            code_challenge="challenge",
            redirect_uri="https://evil.example.com/cb",
        )


@pytest.mark.asyncio
async def test_callback_attaches_google_credentials(
    bridge, code_store, google, complete_authorization
) -> None:
    code = await complete_authorization("google-code")

    record = code_store.get(code)
    assert google.exchanged == ["google-code"]
    assert record.state is AuthorizationState.UPSTREAM_COMPLETE
    assert record.upstream_credentials.access_token == "google-access-google-code"
    assert record.upstream_credentials.subject == "person@example.com"

    redirect = urlsplit(build_client_redirect(record))
    assert redirect.netloc == "client.example.com"
    assert parse_qs(redirect.query) == {"code": [code], "state": ["client-state"]}


@pytest.mark.asyncio
async def test_callback_continues_without_subject(
    code_store, google, complete_authorization
) -> None:
    google.subject_error = OAuthTokenExchangeError("unreadable userinfo body")

    code = await complete_authorization("google-code")

    record = code_store.get(code)
    assert record.state is AuthorizationState.UPSTREAM_COMPLETE
    assert record.upstream_credentials.subject is None


@pytest.mark.asyncio
async def test_callback_with_unknown_state_fails(bridge) -> None:
    with pytest.raises(InvalidStateError):
        await bridge.complete_upstream_callback("google-code", "unknown")


@pytest.mark.asyncio
async def test_callback_twice_fails(bridge, complete_authorization) -> None:
    code = await complete_authorization()

    with pytest.raises(InvalidStateError):
        await bridge.complete_upstream_callback("google-code-2", code)


@pytest.mark.asyncio
async def test_callback_maps_google_outage_to_unavailable(
    bridge, google, code_store, registered_client
) -> None:
    url = await bridge.authorize(
        registered_client,
        code_challenge="challenge",
        redirect_uri=CLIENT_REDIRECT_URI,
    )
    code = parse_qs(urlsplit(url).query)["state"][0]
    google.exchange_error = OAuthUpstreamUnavailableError("timeout")

    with pytest.raises(UpstreamUnavailableError):
        await bridge.complete_upstream_callback("google-code", code)

    # The attempt is still pending and can be completed once Google recovers.
    assert code_store.get(code).state is AuthorizationState.UPSTREAM_PENDING


@pytest.mark.asyncio
async def test_callback_rejected_google_code_is_invalid_state(
    bridge, google, registered_client
) -> None:
    url = await bridge.authorize(
        registered_client, code_challenge="challenge", redirect_uri=CLIENT_REDIRECT_URI
    )
    code = parse_qs(urlsplit(url).query)["state"][0]
    google.exchange_error = OAuthTokenRevokedError("bad code")

    with pytest.raises(InvalidStateError):
        await bridge.complete_upstream_callback("google-code", code)


@pytest.mark.asyncio
async def test_exchange_is_single_use(bridge, registered_client, complete_authorization) -> None:
    code = await complete_authorization()

    grant = await bridge.exchange_code(registered_client, code, CODE_VERIFIER)
    assert grant.access_token != grant.refresh_token
    assert grant.expires_in == 30 * 24 * 3600

    with pytest.raises(InvalidGrantError):
        await bridge.exchange_code(registered_client, code, CODE_VERIFIER)


@pytest.mark.asyncio
async def test_concurrent_exchanges_yield_one_session(
    bridge, registered_client, complete_authorization
) -> None:
    code = await complete_authorization()

    results = await asyncio.gather(
        bridge.exchange_code(registered_client, code, CODE_VERIFIER),
        bridge.exchange_code(registered_client, code, CODE_VERIFIER),
        return_exceptions=True,
    )

    grants = [result for result in results if not isinstance(result, Exception)]
    errors = [result for result in results if isinstance(result, Exception)]
    assert len(grants) == 1
    assert len(errors) == 1
    assert isinstance(errors[0], InvalidGrantError)
    await bridge.verify(grants[0].access_token)


@pytest.mark.asyncio
async def test_exchange_rejects_wrong_verifier(
    bridge, code_store, registered_client, complete_authorization
) -> None:
    code = await complete_authorization()

    with pytest.raises(InvalidGrantError):
        await bridge.exchange_code(registered_client, code, "x" * 43)
    # A failed verifier check must not burn the code.
    assert code_store.get(code) is not None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "verifier",
    ["vérifier-" + "a" * 40, "short", "a" * 129, "has spaces " + "a" * 40],
)
async def test_exchange_rejects_malformed_verifier(
    bridge, code_store, registered_client, complete_authorization, verifier
) -> None:
    code = await complete_authorization()

    with pytest.raises(InvalidGrantError):
        await bridge.exchange_code(registered_client, code, verifier)
    assert code_store.get(code) is not None


@pytest.mark.asyncio
async def test_exchange_rejects_other_client(
    bridge, client_store, complete_authorization
) -> None:
    code = await complete_authorization()
    other = client_store.register_client({"redirect_uris": [CLIENT_REDIRECT_URI]})

    with pytest.raises(InvalidGrantError):
        await bridge.exchange_code(other, code, CODE_VERIFIER)


@pytest.mark.asyncio
async def test_exchange_rejects_mismatched_redirect_uri(
    bridge, registered_client, complete_authorization
) -> None:
    code = await complete_authorization()

    with pytest.raises(InvalidGrantError):
        await bridge.exchange_code(
            registered_client, code, CODE_VERIFIER, redirect_uri="https://other.example.com/cb"
        )


@pytest.mark.asyncio
async def test_exchange_before_google_completes_fails(bridge, registered_client) -> None:
    url = await bridge.authorize(
        registered_client,
        code_challenge=compute_code_challenge(CODE_VERIFIER),
        redirect_uri=CLIENT_REDIRECT_URI,
    )
    code = parse_qs(urlsplit(url).query)["state"][0]

    with pytest.raises(InvalidGrantError):
        await bridge.exchange_code(registered_client, code, CODE_VERIFIER)


@pytest.mark.asyncio
async def test_code_expires_after_ten_minutes(
    bridge, registered_client, clock, complete_authorization
) -> None:
    code = await complete_authorization()
    clock.advance(minutes=10, seconds=1)

    with pytest.raises(InvalidGrantError):
        await bridge.exchange_code(registered_client, code, CODE_VERIFIER)


@pytest.mark.asyncio
async def test_challenge_for_code(bridge, registered_client, complete_authorization) -> None:
    code = await complete_authorization()

    assert await bridge.challenge_for_code(
        registered_client.client_id, code
    ) == compute_code_challenge(CODE_VERIFIER)
    with pytest.raises(InvalidGrantError):
        await bridge.challenge_for_code("other-client", code)


@pytest.mark.asyncio
async def test_full_lifecycle(
    bridge, registered_client, google, session_store, complete_authorization
) -> None:
    code = await complete_authorization("U1")
    first = await bridge.exchange_code(registered_client, code, CODE_VERIFIER)

    second = await bridge.refresh(first.refresh_token, registered_client)
    assert second.access_token != first.access_token
    assert second.refresh_token == first.refresh_token
    assert google.refreshed == ["google-refresh-U1"]

    # The previous access token keeps working until its own expiry.
    info = await bridge.verify(first.access_token)
    assert info.subject == "person@example.com"
    assert session_store.get_by_refresh_token(first.refresh_token).session_id == second.access_token

    newest = await bridge.verify(second.access_token)
    assert newest.upstream_access_token == "google-access-refreshed-1"

    await bridge.revoke(second.access_token)
    assert google.revoked == ["google-access-refreshed-1"]
    with pytest.raises(UnauthorizedError):
        await bridge.verify(second.access_token)


@pytest.mark.asyncio
async def test_refresh_carries_forward_unrotated_google_token(
    bridge, registered_client, google, session_store, complete_authorization
) -> None:
    code = await complete_authorization("U1")
    first = await bridge.exchange_code(registered_client, code, CODE_VERIFIER)

    second = await bridge.refresh(first.refresh_token)
    third = await bridge.refresh(second.refresh_token)

    assert google.refreshed == ["google-refresh-U1", "google-refresh-U1"]
    assert session_store.get_by_access_token(third.access_token).upstream_refresh_token == (
        "google-refresh-U1"
    )


@pytest.mark.asyncio
async def test_refresh_adopts_rotated_google_token(
    bridge, registered_client, google, session_store, complete_authorization
) -> None:
    code = await complete_authorization()
    first = await bridge.exchange_code(registered_client, code, CODE_VERIFIER)
    google.rotated_refresh_token = "google-refresh-rotated"

    second = await bridge.refresh(first.refresh_token)

    session = session_store.get_by_access_token(second.access_token)
    assert session.upstream_refresh_token == "google-refresh-rotated"


@pytest.mark.asyncio
async def test_refresh_with_unknown_token_fails(bridge) -> None:
    with pytest.raises(InvalidGrantError):
        await bridge.refresh("unknown")


@pytest.mark.asyncio
async def test_refresh_rejects_other_client(
    bridge, registered_client, client_store, complete_authorization
) -> None:
    code = await complete_authorization()
    grant = await bridge.exchange_code(registered_client, code, CODE_VERIFIER)
    other = client_store.register_client({"redirect_uris": [CLIENT_REDIRECT_URI]})

    with pytest.raises(InvalidGrantError):
        await bridge.refresh(grant.refresh_token, other)


@pytest.mark.asyncio
async def test_refresh_after_google_revocation_deletes_session(
    bridge, registered_client, google, complete_authorization
) -> None:
    code = await complete_authorization()
    grant = await bridge.exchange_code(registered_client, code, CODE_VERIFIER)
    google.refresh_error = OAuthTokenRevokedError("invalid_grant")

    with pytest.raises(InvalidGrantError) as excinfo:
        await bridge.refresh(grant.refresh_token)

    assert not isinstance(excinfo.value, UpstreamUnavailableError)
    with pytest.raises(UnauthorizedError):
        await bridge.verify(grant.access_token)


@pytest.mark.asyncio
async def test_refresh_during_google_outage_keeps_session(
    bridge, registered_client, google, complete_authorization
) -> None:
    code = await complete_authorization()
    grant = await bridge.exchange_code(registered_client, code, CODE_VERIFIER)
    google.refresh_error = OAuthUpstreamUnavailableError("503")

    with pytest.raises(UpstreamUnavailableError) as excinfo:
        await bridge.refresh(grant.refresh_token)

    assert excinfo.value.retryable
    assert isinstance(excinfo.value, InvalidGrantError)
    google.refresh_error = None
    retried = await bridge.refresh(grant.refresh_token)
    assert retried.refresh_token == grant.refresh_token


@pytest.mark.asyncio
async def test_verify_slides_expiry_and_lapses_after_thirty_days(
    bridge, registered_client, clock, complete_authorization
) -> None:
    code = await complete_authorization()
    grant = await bridge.exchange_code(registered_client, code, CODE_VERIFIER)

    for _ in range(3):
        clock.advance(days=29)
        await bridge.verify(grant.access_token)

    clock.advance(days=31)
    with pytest.raises(UnauthorizedError):
        await bridge.verify(grant.access_token)


@pytest.mark.asyncio
async def test_verify_refreshes_google_token_near_expiry(
    bridge, registered_client, google, clock, complete_authorization
) -> None:
    code = await complete_authorization()
    grant = await bridge.exchange_code(registered_client, code, CODE_VERIFIER)

    info = await bridge.verify(grant.access_token)
    assert google.refreshed == []
    assert info.upstream_access_token == "google-access-google-code"

    clock.advance(minutes=56)
    info = await bridge.verify(grant.access_token)
    assert google.refreshed == ["google-refresh-google-code"]
    assert info.upstream_access_token == "google-access-refreshed-1"


@pytest.mark.asyncio
async def test_verify_survives_failed_google_refresh(
    bridge, registered_client, google, clock, complete_authorization
) -> None:
    code = await complete_authorization()
    grant = await bridge.exchange_code(registered_client, code, CODE_VERIFIER)
    google.refresh_error = OAuthUpstreamUnavailableError("timeout")

    clock.advance(hours=2)
    info = await bridge.verify(grant.access_token)

    assert info.upstream_access_token == "google-access-google-code"


@pytest.mark.asyncio
async def test_verify_unknown_token_fails(bridge) -> None:
    with pytest.raises(UnauthorizedError):
        await bridge.verify("unknown")


@pytest.mark.asyncio
async def test_revoke_by_refresh_token_ignores_google_failure(
    bridge, registered_client, google, complete_authorization
) -> None:
    code = await complete_authorization()
    grant = await bridge.exchange_code(registered_client, code, CODE_VERIFIER)
    google.revoke_error = OAuthTokenExchangeError("400")

    await bridge.revoke(grant.refresh_token)

    with pytest.raises(UnauthorizedError):
        await bridge.verify(grant.access_token)
    with pytest.raises(InvalidGrantError):
        await bridge.refresh(grant.refresh_token)


@pytest.mark.asyncio
async def test_revoke_unknown_token_is_a_no_op(bridge, google) -> None:
    await bridge.revoke("unknown")

    assert google.revoked == []
