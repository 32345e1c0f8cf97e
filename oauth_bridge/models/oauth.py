"""
Domain models for the records persisted by the OAuth bridge.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from oauth_bridge.core.errors import InvalidTransitionError


class AuthorizationState(str, Enum):
    """Lifecycle of a single downstream authorization attempt."""

    INITIATED = "initiated"
    UPSTREAM_PENDING = "upstream_pending"
    UPSTREAM_COMPLETE = "upstream_complete"
    EXCHANGED = "exchanged"
    EXPIRED = "expired"


_ALLOWED_TRANSITIONS: dict[AuthorizationState, frozenset[AuthorizationState]] = {
    AuthorizationState.INITIATED: frozenset(
        {
            AuthorizationState.UPSTREAM_PENDING,
            AuthorizationState.UPSTREAM_COMPLETE,
            AuthorizationState.EXPIRED,
        }
    ),
    AuthorizationState.UPSTREAM_PENDING: frozenset(
        {AuthorizationState.UPSTREAM_COMPLETE, AuthorizationState.EXPIRED}
    ),
    AuthorizationState.UPSTREAM_COMPLETE: frozenset(
        {AuthorizationState.EXCHANGED, AuthorizationState.EXPIRED}
    ),
    AuthorizationState.EXCHANGED: frozenset(),
    AuthorizationState.EXPIRED: frozenset(),
}


def can_transition(current: AuthorizationState, target: AuthorizationState) -> bool:
    return target in _ALLOWED_TRANSITIONS[current]


class UpstreamCredentials(BaseModel):
    """Credentials issued by Google for one user."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_at: datetime
    subject: Optional[str] = Field(
        None, description="Google account email, when the userinfo lookup succeeded."
    )


class AuthorizationCodeRecord(BaseModel):
    """Short-lived record correlating a downstream authorize with Google."""

    code: str
    client_id: str
    code_challenge: str
    redirect_uri: str
    client_state: Optional[str] = None
    upstream_code: Optional[str] = None
    upstream_credentials: Optional[UpstreamCredentials] = None
    scopes: List[str] = Field(default_factory=list)
    state: AuthorizationState = AuthorizationState.INITIATED
    created_at: datetime
    expires_at: datetime

    @field_validator("scopes", mode="before")
    @classmethod
    def _normalize_scopes(cls, value: Optional[List[str]]) -> List[str]:
        # Scopes behave as a set; keep a stable order for storage and comparison.
        return sorted(set(value or []))

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def transition(self, target: AuthorizationState) -> "AuthorizationCodeRecord":
        """Return a copy moved to ``target`` or raise on an illegal move."""
        if not can_transition(self.state, target):
            raise InvalidTransitionError(
                f"Cannot move authorization code from {self.state.value} to {target.value}."
            )
        return self.model_copy(update={"state": target})


class SessionRecord(BaseModel):
    """Binds a downstream credential pair to an upstream credential pair."""

    session_id: str = Field(..., description="Equal to the downstream access token.")
    client_id: str
    subject: Optional[str] = None
    upstream_access_token: str
    upstream_refresh_token: Optional[str] = None
    upstream_expires_at: datetime
    downstream_refresh_token: Optional[str] = None
    downstream_expires_at: datetime
    scope: str = ""
    token_type: str = "Bearer"
    created_at: datetime
    updated_at: datetime

    @property
    def scopes(self) -> List[str]:
        return self.scope.split()

    def is_expired(self, now: datetime) -> bool:
        return now > self.downstream_expires_at


class RefreshIndexRecord(BaseModel):
    """Points a downstream refresh token at the newest session in its lineage."""

    refresh_token: str
    session_id: str
    updated_at: datetime


class ClientRegistration(BaseModel):
    """A dynamically registered downstream OAuth client."""

    client_id: str
    client_secret: Optional[str] = None
    client_id_issued_at: int
    client_secret_expires_at: Optional[int] = None
    redirect_uris: List[str] = Field(default_factory=list)
    client_name: Optional[str] = None
    grant_types: List[str] = Field(
        default_factory=lambda: ["authorization_code", "refresh_token"]
    )
    response_types: List[str] = Field(default_factory=lambda: ["code"])
    token_endpoint_auth_method: str = "client_secret_post"
    scope: Optional[str] = None
    logo_uri: Optional[str] = None

    def allows_redirect_uri(self, redirect_uri: str) -> bool:
        return redirect_uri in self.redirect_uris


__all__ = [
    "AuthorizationCodeRecord",
    "AuthorizationState",
    "ClientRegistration",
    "RefreshIndexRecord",
    "SessionRecord",
    "UpstreamCredentials",
    "can_transition",
]
