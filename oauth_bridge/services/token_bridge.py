"""
Token bridge between the downstream OAuth server and Google.

Each authorization attempt moves through
``INITIATED -> UPSTREAM_PENDING -> UPSTREAM_COMPLETE -> EXCHANGED`` and expires
after ten minutes from any non-terminal state. Once exchanged, the resulting
session is kept alive by ``verify`` (sliding expiry) and rotated by
``refresh`` (new access token, same refresh token).
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import hmac
import logging
import re
import secrets
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Iterable, List, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from oauth_bridge.clients.google_auth import (
    GoogleOAuthClient,
    OAuthTokenExchangeError,
    OAuthTokenRevokedError,
    OAuthUpstreamUnavailableError,
)
from oauth_bridge.core.errors import (
    InvalidGrantError,
    InvalidRequestError,
    InvalidStateError,
    InvalidTransitionError,
    RecordNotFoundError,
    UnauthorizedError,
    UpstreamUnavailableError,
)
from oauth_bridge.core.logging import redact
from oauth_bridge.models.oauth import (
    AuthorizationCodeRecord,
    AuthorizationState,
    ClientRegistration,
    SessionRecord,
    can_transition,
)
from oauth_bridge.services.code_store import AuthorizationCodeStore
from oauth_bridge.services.session_store import SessionStore
from oauth_bridge.utils.clock import Clock, utcnow

logger = logging.getLogger(__name__)

SESSION_TTL_DAYS = 30
UPSTREAM_REFRESH_WINDOW = timedelta(minutes=5)
_CODE_VERIFIER_PATTERN = re.compile(r"[A-Za-z0-9._~-]{43,128}")


def compute_code_challenge(code_verifier: str) -> str:
    """S256 PKCE challenge: unpadded base64url of the verifier's SHA-256."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def _mint_token() -> str:
    return secrets.token_urlsafe(32)


def build_client_redirect(record: AuthorizationCodeRecord) -> str:
    """Client redirect URI carrying our code and the client's original state."""
    parts = urlsplit(record.redirect_uri)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.append(("code", record.code))
    if record.client_state is not None:
        query.append(("state", record.client_state))
    return urlunsplit(parts._replace(query=urlencode(query)))


@dataclass(frozen=True)
class TokenGrant:
    """Downstream credentials handed back by the token endpoint."""

    access_token: str
    refresh_token: Optional[str]
    expires_in: int
    scopes: List[str]
    token_type: str = "Bearer"


@dataclass(frozen=True)
class AccessInfo:
    """Outcome of a successful access-token verification."""

    token: str
    client_id: str
    subject: Optional[str]
    scopes: List[str]
    upstream_access_token: str = field(repr=False)


class TokenBridge:
    """Orchestrates the authorization-code, refresh, verify and revoke flows."""

    def __init__(
        self,
        *,
        codes: AuthorizationCodeStore,
        sessions: SessionStore,
        upstream: GoogleOAuthClient,
        upstream_scopes: Iterable[str] | None = None,
        session_ttl_days: int = SESSION_TTL_DAYS,
        refresh_window: timedelta = UPSTREAM_REFRESH_WINDOW,
        clock: Clock = utcnow,
    ) -> None:
        self._codes = codes
        self._sessions = sessions
        self._upstream = upstream
        self._upstream_scopes = tuple(upstream_scopes) if upstream_scopes else None
        self._session_ttl_days = session_ttl_days
        self._refresh_window = refresh_window
        self._clock = clock

    @property
    def session_ttl_seconds(self) -> int:
        return int(timedelta(days=self._session_ttl_days).total_seconds())

    async def authorize(
        self,
        client: ClientRegistration,
        *,
        code_challenge: str,
        redirect_uri: str,
        client_state: Optional[str] = None,
        scopes: Optional[Iterable[str]] = None,
    ) -> str:
        """Start an authorization attempt and return the Google consent URL."""
        if not client.allows_redirect_uri(redirect_uri):
            raise InvalidRequestError("redirect_uri is not registered for this client.")

        code = await asyncio.to_thread(
            self._codes.create,
            client_id=client.client_id,
            code_challenge=code_challenge,
            redirect_uri=redirect_uri,
            client_state=client_state,
            scopes=scopes,
        )
        authorization_url = self._upstream.build_authorization_url(
            state=code, scopes=self._upstream_scopes
        )
        await asyncio.to_thread(self._codes.mark_pending, code)

        logger.info(
            "Started authorization %s for client %s; redirecting to Google",
            redact(code),
            client.client_id,
        )
        return authorization_url

    async def challenge_for_code(self, client_id: str, code: str) -> str:
        record = await asyncio.to_thread(self._codes.get, code)
        if record is None or record.client_id != client_id:
            raise InvalidGrantError("Invalid authorization code.")
        return record.code_challenge

    async def complete_upstream_callback(
        self, upstream_code: str, correlation_code: str
    ) -> AuthorizationCodeRecord:
        """Attach Google's credentials to the pending authorization."""
        record = await asyncio.to_thread(self._codes.get, correlation_code)
        if record is None:
            raise InvalidStateError("Authorization request not found or expired.")
        if not can_transition(record.state, AuthorizationState.UPSTREAM_COMPLETE):
            raise InvalidStateError("Authorization request was already completed.")

        try:
            credentials = await self._upstream.exchange_authorization_code(upstream_code)
        except OAuthUpstreamUnavailableError as exc:
            raise UpstreamUnavailableError("Google is temporarily unavailable.") from exc
        except OAuthTokenExchangeError as exc:
            raise InvalidStateError("Google did not accept the authorization code.") from exc

        try:
            subject = await self._upstream.fetch_subject_identifier(credentials.access_token)
        except OAuthTokenExchangeError as exc:
            logger.warning("Could not resolve Google account for %s: %s", redact(correlation_code), exc)
            subject = None
        credentials = credentials.model_copy(update={"subject": subject})

        try:
            completed = await asyncio.to_thread(
                self._codes.complete, correlation_code, upstream_code, credentials
            )
        except (RecordNotFoundError, InvalidTransitionError) as exc:
            raise InvalidStateError("Authorization request is no longer pending.") from exc

        logger.info("Google authentication completed for %s", redact(correlation_code))
        return completed

    async def exchange_code(
        self,
        client: ClientRegistration,
        code: str,
        code_verifier: Optional[str] = None,
        *,
        redirect_uri: Optional[str] = None,
    ) -> TokenGrant:
        """Trade a completed authorization code for downstream tokens, once."""
        record = await asyncio.to_thread(self._codes.get, code)
        if record is None or record.client_id != client.client_id:
            raise InvalidGrantError("Invalid authorization code.")
        if (
            record.state is not AuthorizationState.UPSTREAM_COMPLETE
            or record.upstream_credentials is None
        ):
            raise InvalidGrantError("Google authentication not completed.")
        if redirect_uri is not None and redirect_uri != record.redirect_uri:
            raise InvalidGrantError("redirect_uri does not match the authorization request.")
        if code_verifier is not None and (
            not _CODE_VERIFIER_PATTERN.fullmatch(code_verifier)
            or not hmac.compare_digest(
                compute_code_challenge(code_verifier), record.code_challenge
            )
        ):
            raise InvalidGrantError("Invalid code verifier.")

        upstream = record.upstream_credentials
        now = self._clock()
        session = SessionRecord(
            session_id=_mint_token(),
            client_id=client.client_id,
            subject=upstream.subject,
            upstream_access_token=upstream.access_token,
            upstream_refresh_token=upstream.refresh_token,
            upstream_expires_at=upstream.expires_at,
            downstream_refresh_token=_mint_token(),
            downstream_expires_at=now + timedelta(days=self._session_ttl_days),
            scope=" ".join(record.scopes),
            created_at=now,
            updated_at=now,
        )
        await asyncio.to_thread(self._sessions.save, session)

        # Deleting the code is the commit point; it happens only after the
        # session is durable, and only one concurrent exchange can win it.
        if not await asyncio.to_thread(self._codes.consume, code):
            await asyncio.to_thread(self._sessions.delete, session.session_id)
            raise InvalidGrantError("Authorization code has already been used.")

        logger.info(
            "Exchanged authorization %s for session %s",
            redact(code),
            redact(session.session_id),
        )
        return TokenGrant(
            access_token=session.session_id,
            refresh_token=session.downstream_refresh_token,
            expires_in=self.session_ttl_seconds,
            scopes=record.scopes,
        )

    async def refresh(
        self, refresh_token: str, client: Optional[ClientRegistration] = None
    ) -> TokenGrant:
        """Issue a new access token for the lineage; the refresh token is kept."""
        session = await asyncio.to_thread(self._sessions.get_by_refresh_token, refresh_token)
        if session is None:
            raise InvalidGrantError("Invalid refresh token.")
        if client is not None and session.client_id != client.client_id:
            raise InvalidGrantError("Refresh token was issued to another client.")
        if not session.upstream_refresh_token:
            raise InvalidGrantError("No Google refresh token is available; re-authenticate.")

        try:
            upstream = await self._upstream.refresh_token(session.upstream_refresh_token)
        except OAuthTokenRevokedError as exc:
            logger.info(
                "Google revoked the grant behind session %s; deleting it",
                redact(session.session_id),
            )
            await asyncio.to_thread(self._sessions.delete, session.session_id)
            raise InvalidGrantError("Google access was revoked; re-authenticate.") from exc
        except OAuthUpstreamUnavailableError as exc:
            raise UpstreamUnavailableError(
                "Google is temporarily unavailable; retry the refresh."
            ) from exc
        except OAuthTokenExchangeError as exc:
            raise InvalidGrantError("Google refused to refresh the session.") from exc

        now = self._clock()
        rotated = SessionRecord(
            session_id=_mint_token(),
            client_id=session.client_id,
            subject=session.subject,
            upstream_access_token=upstream.access_token,
            upstream_refresh_token=upstream.refresh_token or session.upstream_refresh_token,
            upstream_expires_at=upstream.expires_at,
            downstream_refresh_token=session.downstream_refresh_token,
            downstream_expires_at=now + timedelta(days=self._session_ttl_days),
            scope=session.scope,
            token_type=session.token_type,
            created_at=now,
            updated_at=now,
        )
        await asyncio.to_thread(self._sessions.save, rotated)

        logger.info(
            "Rotated session %s -> %s",
            redact(session.session_id),
            redact(rotated.session_id),
        )
        return TokenGrant(
            access_token=rotated.session_id,
            refresh_token=rotated.downstream_refresh_token,
            expires_in=self.session_ttl_seconds,
            scopes=rotated.scopes,
        )

    async def _refresh_upstream_quietly(self, session: SessionRecord) -> str:
        """Best-effort Google refresh; returns the access token to use."""
        try:
            upstream = await self._upstream.refresh_token(session.upstream_refresh_token or "")
            await asyncio.to_thread(
                self._sessions.update_upstream_credentials,
                session.session_id,
                upstream.access_token,
                upstream.expires_at,
                refresh_token=upstream.refresh_token,
            )
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning(
                "Failed to auto-refresh Google token for session %s: %s",
                redact(session.session_id),
                exc,
            )
            return session.upstream_access_token
        return upstream.access_token

    async def verify(self, access_token: str) -> AccessInfo:
        """Authenticate a downstream access token and slide its expiry."""
        session = await asyncio.to_thread(self._sessions.get_by_access_token, access_token)
        if session is None:
            raise UnauthorizedError("Invalid or expired access token.")

        upstream_access_token = session.upstream_access_token
        needs_refresh = session.upstream_expires_at - self._clock() < self._refresh_window
        if needs_refresh and session.upstream_refresh_token:
            upstream_access_token = await self._refresh_upstream_quietly(session)

        try:
            await asyncio.to_thread(
                self._sessions.touch, session.session_id, self._session_ttl_days
            )
        except RecordNotFoundError as exc:
            raise UnauthorizedError("Invalid or expired access token.") from exc

        return AccessInfo(
            token=access_token,
            client_id=session.client_id,
            subject=session.subject,
            scopes=session.scopes,
            upstream_access_token=upstream_access_token,
        )

    async def revoke(self, token: str) -> None:
        """Revoke by access or refresh token; never fails on Google errors."""
        session = await asyncio.to_thread(self._sessions.get_by_access_token, token)
        if session is None:
            session = await asyncio.to_thread(self._sessions.get_by_refresh_token, token)
        if session is None:
            logger.debug("Revocation requested for unknown token %s", redact(token))
            return

        try:
            await self._upstream.revoke_token(session.upstream_access_token)
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning(
                "Failed to revoke Google token for session %s: %s",
                redact(session.session_id),
                exc,
            )

        await asyncio.to_thread(self._sessions.delete, session.session_id)
        logger.info("Revoked session %s", redact(session.session_id))


__all__ = [
    "AccessInfo",
    "SESSION_TTL_DAYS",
    "TokenBridge",
    "TokenGrant",
    "UPSTREAM_REFRESH_WINDOW",
    "build_client_redirect",
    "compute_code_challenge",
]
