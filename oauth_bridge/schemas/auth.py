"""Schemas for the downstream OAuth endpoints."""

from __future__ import annotations

from typing import List, Optional

from pydantic import AnyHttpUrl, BaseModel, Field


class TokenResponse(BaseModel):
    """Successful token endpoint response (RFC 6749 section 5.1)."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int = Field(..., description="Seconds until the access token lapses if unused.")
    refresh_token: Optional[str] = None
    scope: Optional[str] = None


class OAuthErrorResponse(BaseModel):
    """Error body shared by the token and registration endpoints."""

    error: str
    error_description: Optional[str] = None


class ClientRegistrationRequest(BaseModel):
    """Client metadata accepted by dynamic registration (RFC 7591)."""

    redirect_uris: List[AnyHttpUrl] = Field(..., min_length=1)
    client_name: Optional[str] = None
    grant_types: List[str] = Field(
        default_factory=lambda: ["authorization_code", "refresh_token"]
    )
    response_types: List[str] = Field(default_factory=lambda: ["code"])
    token_endpoint_auth_method: str = "client_secret_post"
    scope: Optional[str] = None
    logo_uri: Optional[AnyHttpUrl] = None


class ClientRegistrationResponse(BaseModel):
    client_id: str
    client_secret: Optional[str] = None
    client_id_issued_at: int
    client_secret_expires_at: Optional[int] = None
    redirect_uris: List[str]
    client_name: Optional[str] = None
    grant_types: List[str]
    response_types: List[str]
    token_endpoint_auth_method: str
    scope: Optional[str] = None
    logo_uri: Optional[str] = None


class AuthorizationServerMetadata(BaseModel):
    """RFC 8414 authorization server metadata."""

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    registration_endpoint: str
    revocation_endpoint: str
    response_types_supported: List[str] = Field(default_factory=lambda: ["code"])
    grant_types_supported: List[str] = Field(
        default_factory=lambda: ["authorization_code", "refresh_token"]
    )
    code_challenge_methods_supported: List[str] = Field(default_factory=lambda: ["S256"])
    token_endpoint_auth_methods_supported: List[str] = Field(
        default_factory=lambda: ["client_secret_post", "none"]
    )
    revocation_endpoint_auth_methods_supported: List[str] = Field(
        default_factory=lambda: ["client_secret_post", "none"]
    )
    scopes_supported: List[str] = Field(default_factory=list)
    service_documentation: Optional[str] = None


class ProtectedResourceMetadata(BaseModel):
    """RFC 9728 protected resource metadata."""

    resource: str
    authorization_servers: List[str]
    scopes_supported: List[str] = Field(default_factory=list)
    bearer_methods_supported: List[str] = Field(default_factory=lambda: ["header"])
    resource_name: Optional[str] = None
    resource_documentation: Optional[str] = None


__all__ = [
    "AuthorizationServerMetadata",
    "ClientRegistrationRequest",
    "ClientRegistrationResponse",
    "OAuthErrorResponse",
    "ProtectedResourceMetadata",
    "TokenResponse",
]
