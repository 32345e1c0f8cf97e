"""Service layer exports."""

from .client_store import OAuthClientStore
from .code_store import AuthorizationCodeStore
from .session_store import SessionStore
from .token_bridge import AccessInfo, TokenBridge, TokenGrant
from .token_cipher import TokenCipherService

__all__ = [
    "AccessInfo",
    "AuthorizationCodeStore",
    "OAuthClientStore",
    "SessionStore",
    "TokenBridge",
    "TokenCipherService",
    "TokenGrant",
]
