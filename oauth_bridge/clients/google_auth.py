"""
Google OAuth utilities.

These helpers drive the upstream half of the bridge: the consent redirect,
authorization-code exchange, token refresh, revocation and identity lookup.
One client is built per process and shares a single ``httpx.AsyncClient``.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict, Iterable, Optional
from urllib.parse import urlencode

import httpx

from oauth_bridge.core.config import GoogleSettings, OAuthSettings
from oauth_bridge.models.oauth import UpstreamCredentials
from oauth_bridge.utils.clock import Clock, utcnow
from oauth_bridge.utils.http import RetryConfig, request_with_retry

logger = logging.getLogger(__name__)

_DEFAULT_EXPIRES_IN = 3600


class OAuthTokenExchangeError(Exception):
    """Raised when a Google OAuth endpoint rejects a request."""


class OAuthTokenRevokedError(OAuthTokenExchangeError):
    """Google reported the grant as invalid, expired or revoked."""


class OAuthUpstreamUnavailableError(OAuthTokenExchangeError):
    """Google timed out, was unreachable, or answered with a 5xx."""


def _oauth_error_code(response: httpx.Response) -> Optional[str]:
    try:
        payload = response.json()
    except ValueError:
        return None
    if isinstance(payload, dict):
        return payload.get("error")
    return None


class GoogleOAuthClient:
    """Build Google authorization URLs and manage Google-issued tokens."""

    AUTH_BASE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
    TOKEN_URL = "https://oauth2.googleapis.com/token"
    REVOKE_URL = "https://oauth2.googleapis.com/revoke"
    USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

    def __init__(
        self,
        google_settings: GoogleSettings,
        oauth_settings: OAuthSettings,
        *,
        http_client: httpx.AsyncClient | None = None,
        retry_config: RetryConfig | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._google = google_settings
        self._oauth = oauth_settings
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=oauth_settings.http_timeout_seconds
        )
        self._retry = retry_config or RetryConfig()
        self._clock = clock

    @property
    def redirect_uri(self) -> str:
        return str(self._google.redirect_uri)

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http.aclose()

    def build_authorization_url(
        self,
        state: str,
        scopes: Iterable[str] | None = None,
        access_type: str = "offline",
    ) -> str:
        """Construct the Google OAuth consent URL."""
        params = {
            "client_id": self._google.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(scopes or self._oauth.upstream_scopes),
            "access_type": access_type,
            "include_granted_scopes": "true",
            "prompt": "consent",
            "state": state,
        }
        return f"{self.AUTH_BASE_URL}?{urlencode(params)}"

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await request_with_retry(
                self._http.request, method, url, retry_config=self._retry, **kwargs
            )
        except httpx.TransportError as exc:
            raise OAuthUpstreamUnavailableError(
                f"Google endpoint {url} could not be reached."
            ) from exc

        if response.status_code >= 500:
            raise OAuthUpstreamUnavailableError(
                f"Google endpoint {url} returned {response.status_code}."
            )
        return response

    async def _post_token(self, payload: Dict[str, str]) -> Dict[str, Any]:
        response = await self._send("POST", self.TOKEN_URL, data=payload)
        if response.status_code != httpx.codes.OK:
            error_code = _oauth_error_code(response)
            logger.warning(
                "Google token endpoint rejected %s grant (%s): %s",
                payload.get("grant_type"),
                response.status_code,
                response.text,
            )
            if error_code == "invalid_grant":
                raise OAuthTokenRevokedError("Google rejected the grant as invalid.")
            raise OAuthTokenExchangeError(
                f"Google token endpoint returned {response.status_code}."
            )
        return response.json()

    def _credentials_from_payload(self, token_payload: Dict[str, Any]) -> UpstreamCredentials:
        access_token = token_payload.get("access_token")
        if not access_token:
            raise OAuthTokenExchangeError("Incomplete token payload returned from Google.")
        expires_in = int(token_payload.get("expires_in") or _DEFAULT_EXPIRES_IN)
        return UpstreamCredentials(
            access_token=access_token,
            refresh_token=token_payload.get("refresh_token"),
            expires_at=self._clock() + timedelta(seconds=expires_in),
        )

    async def exchange_authorization_code(
        self, code: str, redirect_uri: str | None = None
    ) -> UpstreamCredentials:
        """Exchange a Google authorization code for tokens."""
        payload = {
            "code": code,
            "client_id": self._google.client_id,
            "client_secret": self._google.client_secret,
            "redirect_uri": redirect_uri or self.redirect_uri,
            "grant_type": "authorization_code",
        }
        return self._credentials_from_payload(await self._post_token(payload))

    async def refresh_token(self, refresh_token: str) -> UpstreamCredentials:
        """Refresh the access token using a stored refresh token.

        ``refresh_token`` on the result is only set when Google rotated it.
        """
        payload = {
            "client_id": self._google.client_id,
            "client_secret": self._google.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
        return self._credentials_from_payload(await self._post_token(payload))

    async def revoke_token(self, token: str) -> None:
        response = await self._send("POST", self.REVOKE_URL, data={"token": token})
        if response.status_code != httpx.codes.OK:
            logger.warning(
                "Google revocation failed (%s): %s", response.status_code, response.text
            )
            raise OAuthTokenExchangeError(
                f"Google revocation endpoint returned {response.status_code}."
            )

    async def fetch_subject_identifier(self, access_token: str) -> Optional[str]:
        """Return the Google account email bound to ``access_token``."""
        response = await self._send(
            "GET",
            self.USERINFO_URL,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        if response.status_code != httpx.codes.OK:
            raise OAuthTokenExchangeError(
                f"Google userinfo endpoint returned {response.status_code}."
            )
        try:
            return response.json().get("email")
        except (ValueError, AttributeError) as exc:
            raise OAuthTokenExchangeError(
                "Google userinfo endpoint returned an unreadable body."
            ) from exc


__all__ = [
    "GoogleOAuthClient",
    "OAuthTokenExchangeError",
    "OAuthTokenRevokedError",
    "OAuthUpstreamUnavailableError",
]
