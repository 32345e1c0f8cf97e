"""Dynamic client registration records for downstream OAuth clients."""

from __future__ import annotations

import hmac
import logging
import secrets
import uuid
from datetime import timedelta
from typing import Any, Dict, Optional

from oauth_bridge.clients.records import RecordStore
from oauth_bridge.core.errors import InvalidClientError
from oauth_bridge.models.oauth import ClientRegistration
from oauth_bridge.utils.clock import Clock, to_epoch_seconds, utcnow

logger = logging.getLogger(__name__)

CLIENT_SECRET_LIFETIME = timedelta(days=365)

_SORT_KEY = "registration"


def _partition_key(client_id: str) -> str:
    return f"client#{client_id}"


class OAuthClientStore:
    """Register and look up downstream clients (RFC 7591)."""

    def __init__(self, store: RecordStore, *, issuer: str, clock: Clock = utcnow) -> None:
        self._store = store
        self._issuer = issuer.rstrip("/")
        self._clock = clock

    def get_client(self, client_id: str) -> Optional[ClientRegistration]:
        item = self._store.get_item(partition_key=_partition_key(client_id), sort_key=_SORT_KEY)
        if not item:
            return None
        data = {k: v for k, v in item.items() if k not in ("pk", "sk", "ttl")}
        return ClientRegistration.model_validate(data)

    def register_client(self, metadata: Dict[str, Any]) -> ClientRegistration:
        """Persist client metadata with a freshly issued id and secret."""
        now = self._clock()
        auth_method = metadata.get("token_endpoint_auth_method") or "client_secret_post"
        client_secret = None
        client_secret_expires_at = None
        if auth_method != "none":
            client_secret = secrets.token_urlsafe(32)
            client_secret_expires_at = to_epoch_seconds(now + CLIENT_SECRET_LIFETIME)

        registration = ClientRegistration(
            **{
                **metadata,
                "client_id": str(uuid.uuid4()),
                "client_secret": client_secret,
                "client_id_issued_at": to_epoch_seconds(now),
                "client_secret_expires_at": client_secret_expires_at,
                "token_endpoint_auth_method": auth_method,
                "logo_uri": metadata.get("logo_uri") or f"{self._issuer}/logo.png",
            }
        )
        item = registration.model_dump(mode="json")
        item.update(pk=_partition_key(registration.client_id), sk=_SORT_KEY)
        self._store.put_item(item)
        logger.info(
            "Registered client %s (%s)", registration.client_id, registration.client_name or "unnamed"
        )
        return registration

    def authenticate(
        self, client_id: Optional[str], client_secret: Optional[str]
    ) -> ClientRegistration:
        """Resolve a token-endpoint caller, enforcing client_secret_post."""
        if not client_id:
            raise InvalidClientError("client_id is required.")
        client = self.get_client(client_id)
        if client is None:
            raise InvalidClientError("Unknown client.")
        if client.client_secret:
            if not client_secret or not hmac.compare_digest(
                client.client_secret, client_secret
            ):
                raise InvalidClientError("Invalid client credentials.")
            expires_at = client.client_secret_expires_at
            if expires_at and expires_at < to_epoch_seconds(self._clock()):
                raise InvalidClientError("Client secret has expired.")
        return client


__all__ = ["CLIENT_SECRET_LIFETIME", "OAuthClientStore"]
