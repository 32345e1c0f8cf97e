"""
Factory functions to provide shared clients and services as FastAPI dependencies.
"""

from datetime import timedelta
from functools import lru_cache

from oauth_bridge.clients import (
    DynamoDBClient,
    GoogleOAuthClient,
    GooglePeopleClient,
    RecordStore,
    SQLiteStore,
)
from oauth_bridge.core.config import get_settings
from oauth_bridge.services import (
    AuthorizationCodeStore,
    OAuthClientStore,
    SessionStore,
    TokenBridge,
    TokenCipherService,
)


@lru_cache()
def _settings():
    """Internal helper to cache settings for client factories."""
    return get_settings()


@lru_cache()
def get_record_store() -> RecordStore:
    """Provide the configured record backend (SQLite locally, DynamoDB in AWS)."""
    settings = _settings()
    if settings.storage.backend == "dynamodb":
        return DynamoDBClient(settings.storage)
    return SQLiteStore(settings.storage.sqlite_db_path)


@lru_cache()
def get_token_cipher_service() -> TokenCipherService:
    """Provide symmetric encryption helper for token storage."""
    settings = _settings()
    secret = settings.security.token_encryption_secret or settings.google.client_secret
    return TokenCipherService(secret=secret)


@lru_cache()
def get_google_oauth_client() -> GoogleOAuthClient:
    """Create a singleton Google OAuth client."""
    settings = _settings()
    return GoogleOAuthClient(settings.google, settings.oauth)


@lru_cache()
def get_people_client() -> GooglePeopleClient:
    """Provide the People API passthrough client."""
    return GooglePeopleClient()


@lru_cache()
def get_code_store() -> AuthorizationCodeStore:
    settings = _settings()
    return AuthorizationCodeStore(
        get_record_store(),
        get_token_cipher_service(),
        ttl=timedelta(seconds=settings.oauth.code_ttl_seconds),
    )


@lru_cache()
def get_session_store() -> SessionStore:
    return SessionStore(get_record_store(), get_token_cipher_service())


@lru_cache()
def get_client_store() -> OAuthClientStore:
    """Provide the dynamic client registration store."""
    return OAuthClientStore(get_record_store(), issuer=_settings().issuer)


@lru_cache()
def get_token_bridge() -> TokenBridge:
    """Wire the token bridge to the shared stores and Google client."""
    settings = _settings()
    return TokenBridge(
        codes=get_code_store(),
        sessions=get_session_store(),
        upstream=get_google_oauth_client(),
        upstream_scopes=settings.oauth.upstream_scopes,
        session_ttl_days=settings.oauth.session_ttl_days,
        refresh_window=timedelta(seconds=settings.oauth.refresh_window_seconds),
    )


__all__ = [
    "get_client_store",
    "get_code_store",
    "get_google_oauth_client",
    "get_people_client",
    "get_record_store",
    "get_session_store",
    "get_token_bridge",
    "get_token_cipher_service",
]
