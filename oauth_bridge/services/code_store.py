"""
Ephemeral storage for downstream authorization codes.

A code lives for a fixed window from creation. Completing the upstream leg
never extends it, and an expired code reads exactly like one that never
existed.
"""

from __future__ import annotations

import logging
import secrets
from datetime import timedelta
from typing import Any, Dict, Iterable, Optional

from oauth_bridge.clients.records import RecordStore
from oauth_bridge.core.errors import InvalidTransitionError, RecordNotFoundError
from oauth_bridge.core.logging import redact
from oauth_bridge.models.oauth import (
    AuthorizationCodeRecord,
    AuthorizationState,
    UpstreamCredentials,
)
from oauth_bridge.services.token_cipher import TokenCipherService
from oauth_bridge.utils.clock import Clock, to_epoch_seconds, utcnow

logger = logging.getLogger(__name__)

CODE_TTL = timedelta(minutes=10)

_SORT_KEY = "authcode"


def _partition_key(code: str) -> str:
    return f"code#{code}"


class AuthorizationCodeStore:
    """Create, complete and consume AuthorizationCodeRecords."""

    def __init__(
        self,
        store: RecordStore,
        cipher: TokenCipherService,
        *,
        ttl: timedelta = CODE_TTL,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._cipher = cipher
        self._ttl = ttl
        self._clock = clock

    def _encrypt_credentials(self, credentials: UpstreamCredentials) -> Dict[str, Any]:
        return {
            "access_token_encrypted": self._cipher.encrypt(credentials.access_token),
            "refresh_token_encrypted": self._cipher.encrypt_optional(
                credentials.refresh_token
            ),
            "expires_at": credentials.expires_at.isoformat(),
            "subject": credentials.subject,
        }

    def _decrypt_credentials(self, data: Dict[str, Any]) -> UpstreamCredentials:
        return UpstreamCredentials(
            access_token=self._cipher.decrypt(data["access_token_encrypted"]),
            refresh_token=self._cipher.decrypt_optional(data.get("refresh_token_encrypted")),
            expires_at=data["expires_at"],
            subject=data.get("subject"),
        )

    def _to_item(self, record: AuthorizationCodeRecord) -> Dict[str, Any]:
        item = record.model_dump(mode="json", exclude={"upstream_credentials"})
        if record.upstream_credentials is not None:
            item["upstream_credentials"] = self._encrypt_credentials(
                record.upstream_credentials
            )
        item.update(
            pk=_partition_key(record.code),
            sk=_SORT_KEY,
            ttl=to_epoch_seconds(record.expires_at),
        )
        return item

    def _from_item(self, item: Dict[str, Any]) -> AuthorizationCodeRecord:
        data = {k: v for k, v in item.items() if k not in ("pk", "sk", "ttl")}
        encrypted = data.pop("upstream_credentials", None)
        if encrypted:
            data["upstream_credentials"] = self._decrypt_credentials(encrypted)
        return AuthorizationCodeRecord.model_validate(data)

    def create(
        self,
        *,
        client_id: str,
        code_challenge: str,
        redirect_uri: str,
        client_state: Optional[str] = None,
        scopes: Optional[Iterable[str]] = None,
    ) -> str:
        """Store a new INITIATED record and return its unguessable code."""
        now = self._clock()
        record = AuthorizationCodeRecord(
            code=secrets.token_urlsafe(32),
            client_id=client_id,
            code_challenge=code_challenge,
            redirect_uri=redirect_uri,
            client_state=client_state,
            scopes=list(scopes or []),
            created_at=now,
            expires_at=now + self._ttl,
        )
        self._store.put_item(self._to_item(record))
        logger.debug("Created authorization code %s for client %s", redact(record.code), client_id)
        return record.code

    def get(self, code: str) -> Optional[AuthorizationCodeRecord]:
        item = self._store.get_item(partition_key=_partition_key(code), sort_key=_SORT_KEY)
        if not item:
            return None
        record = self._from_item(item)
        if record.is_expired(self._clock()):
            logger.debug("Authorization code %s expired; deleting", redact(code))
            self.delete(code)
            return None
        return record

    def _advance(
        self,
        code: str,
        target: AuthorizationState,
        extra_updates: Optional[Dict[str, Any]] = None,
    ) -> AuthorizationCodeRecord:
        record = self.get(code)
        if record is None:
            raise RecordNotFoundError("Authorization code not found or expired.")
        advanced = record.transition(target)

        updates: Dict[str, Any] = {"state": target.value}
        updates.update(extra_updates or {})
        applied = self._store.update_item(
            partition_key=_partition_key(code),
            sort_key=_SORT_KEY,
            updates=updates,
            expected={"state": record.state.value},
        )
        if not applied:
            if self.get(code) is None:
                raise RecordNotFoundError("Authorization code not found or expired.")
            raise InvalidTransitionError(
                f"Authorization code changed state concurrently; cannot move to {target.value}."
            )
        return advanced

    def mark_pending(self, code: str) -> None:
        """Record that the user has been sent to Google."""
        self._advance(code, AuthorizationState.UPSTREAM_PENDING)

    def complete(
        self,
        code: str,
        upstream_code: str,
        upstream_credentials: UpstreamCredentials,
    ) -> AuthorizationCodeRecord:
        """Attach Google's code and credentials; ``expires_at`` is left alone."""
        record = self._advance(
            code,
            AuthorizationState.UPSTREAM_COMPLETE,
            {
                "upstream_code": upstream_code,
                "upstream_credentials": self._encrypt_credentials(upstream_credentials),
            },
        )
        return record.model_copy(
            update={
                "upstream_code": upstream_code,
                "upstream_credentials": upstream_credentials,
            }
        )

    def consume(self, code: str) -> bool:
        """Delete a completed code; only one concurrent caller gets True."""
        return self._store.delete_item(
            partition_key=_partition_key(code),
            sort_key=_SORT_KEY,
            expected={"state": AuthorizationState.UPSTREAM_COMPLETE.value},
        )

    def delete(self, code: str) -> None:
        self._store.delete_item(partition_key=_partition_key(code), sort_key=_SORT_KEY)


__all__ = ["CODE_TTL", "AuthorizationCodeStore"]
