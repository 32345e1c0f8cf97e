"""Expose dependency helpers for FastAPI routers."""

from .clients import (
    get_client_store,
    get_code_store,
    get_google_oauth_client,
    get_people_client,
    get_record_store,
    get_session_store,
    get_token_bridge,
    get_token_cipher_service,
)
from .config import get_app_settings, get_issuer

__all__ = [
    "get_app_settings",
    "get_issuer",
    "get_client_store",
    "get_code_store",
    "get_google_oauth_client",
    "get_people_client",
    "get_record_store",
    "get_session_store",
    "get_token_bridge",
    "get_token_cipher_service",
]
