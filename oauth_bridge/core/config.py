"""
Application configuration models and helpers.

Centralizes settings management so the FastAPI app, the token bridge and the
maintenance scripts share a consistent configuration surface.
"""

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Literal, Optional

import os

from pydantic import AnyHttpUrl, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _load_env_file(path: str = ".env") -> None:
    """Best-effort load key=value pairs from a .env file without extra deps."""
    env_path = Path(path)
    if not env_path.exists():
        return
    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        if not key or key in os.environ:
            continue
        cleaned = value.strip().strip('"').strip("'")
        os.environ[key] = cleaned


_load_env_file()

_SETTINGS_CONFIG = SettingsConfigDict(extra="ignore", populate_by_name=True)


def _split_csv(value: str | tuple[str, ...] | list[str]) -> tuple[str, ...]:
    if isinstance(value, tuple):
        return value
    if isinstance(value, list):
        return tuple(value)
    return tuple(item.strip() for item in value.split(",") if item.strip())


class GoogleSettings(BaseSettings):
    """Credentials for the upstream Google OAuth client."""

    model_config = _SETTINGS_CONFIG

    client_id: str = Field(..., alias="GOOGLE_CLIENT_ID")
    client_secret: str = Field(..., alias="GOOGLE_CLIENT_SECRET")
    redirect_uri: Optional[AnyHttpUrl] = Field(
        None,
        alias="GOOGLE_REDIRECT_URI",
        description="Defaults to {API_ENDPOINT}/google/callback when omitted.",
    )


class OAuthSettings(BaseSettings):
    """Lifetimes and scopes for both sides of the OAuth bridge."""

    model_config = _SETTINGS_CONFIG

    upstream_scopes: Annotated[tuple[str, ...], NoDecode] = Field(
        (
            "https://www.googleapis.com/auth/contacts.readonly",
            "https://www.googleapis.com/auth/directory.readonly",
            "https://www.googleapis.com/auth/userinfo.email",
        ),
        alias="OAUTH_UPSTREAM_SCOPES",
    )
    scopes_supported: Annotated[tuple[str, ...], NoDecode] = Field(
        ("contacts.readonly",),
        alias="OAUTH_SCOPES_SUPPORTED",
    )
    code_ttl_seconds: int = Field(600, alias="OAUTH_CODE_TTL_SECONDS")
    session_ttl_days: int = Field(30, alias="OAUTH_SESSION_TTL_DAYS")
    refresh_window_seconds: int = Field(300, alias="OAUTH_REFRESH_WINDOW_SECONDS")
    http_timeout_seconds: float = Field(10.0, alias="OAUTH_HTTP_TIMEOUT_SECONDS")

    @field_validator("upstream_scopes", "scopes_supported", mode="before")
    @classmethod
    def _split_scopes(
        cls, value: str | tuple[str, ...] | list[str]
    ) -> tuple[str, ...]:
        """Support providing scopes as a comma-separated string."""
        return _split_csv(value)


class StorageSettings(BaseSettings):
    """Where authorization codes, sessions and client registrations live."""

    model_config = _SETTINGS_CONFIG

    backend: Literal["sqlite", "dynamodb"] = Field("sqlite", alias="STORAGE_BACKEND")
    sqlite_db_path: str = Field("var/oauth_bridge.sqlite3", alias="SQLITE_DB_PATH")
    region_name: str = Field("us-east-1", alias="AWS_REGION")
    dynamodb_table_name: str = Field(
        "google-contacts-mcp-records", alias="DYNAMODB_TABLE_NAME"
    )


class SecuritySettings(BaseSettings):
    """Security-related configuration."""

    model_config = _SETTINGS_CONFIG

    token_encryption_secret: Optional[str] = Field(
        None,
        alias="TOKEN_ENCRYPTION_SECRET",
        description=(
            "Secret used to derive the symmetric key for encrypting stored tokens."
        ),
    )


class AppSettings(BaseSettings):
    """Root settings object for the FastAPI application."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    environment: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="APP_LOG_LEVEL")
    api_endpoint: AnyHttpUrl = Field(
        "http://localhost:8000",
        alias="API_ENDPOINT",
        description="Public base URL; used as the downstream issuer.",
    )
    service_documentation_url: Optional[AnyHttpUrl] = Field(
        None, alias="SERVICE_DOCUMENTATION_URL"
    )
    resource_name: str = Field("Google Contacts MCP", alias="RESOURCE_NAME")
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    google: GoogleSettings = Field(default_factory=GoogleSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)

    @property
    def issuer(self) -> str:
        return str(self.api_endpoint).rstrip("/")

    @model_validator(mode="after")
    def _default_google_redirect(self) -> "AppSettings":
        if self.google.redirect_uri is None:
            self.google.redirect_uri = f"{self.issuer}/google/callback"
        return self


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()  # type: ignore[call-arg]


__all__ = [
    "AppSettings",
    "GoogleSettings",
    "OAuthSettings",
    "SecuritySettings",
    "StorageSettings",
    "get_settings",
]
