"""
Durable storage for bridged sessions.

A session is addressed by its downstream access token. A secondary refresh
index maps each downstream refresh token to the newest session issued from
it; older sessions in the same lineage stay readable by access token until
their own sliding expiry lapses.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from oauth_bridge.clients.records import RecordStore
from oauth_bridge.core.errors import RecordNotFoundError
from oauth_bridge.core.logging import redact
from oauth_bridge.models.oauth import RefreshIndexRecord, SessionRecord
from oauth_bridge.services.token_cipher import TokenCipherService
from oauth_bridge.utils.clock import Clock, to_epoch_seconds, utcnow

logger = logging.getLogger(__name__)

_SESSION_SORT_KEY = "session"
_INDEX_SORT_KEY = "refresh_index"


def _session_key(session_id: str) -> Dict[str, str]:
    return {"partition_key": f"session#{session_id}", "sort_key": _SESSION_SORT_KEY}


def _index_key(refresh_token: str) -> Dict[str, str]:
    return {"partition_key": f"refresh#{refresh_token}", "sort_key": _INDEX_SORT_KEY}


class SessionStore:
    """Persist SessionRecords and their refresh-token index."""

    def __init__(
        self,
        store: RecordStore,
        cipher: TokenCipherService,
        *,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._cipher = cipher
        self._clock = clock

    def _to_item(self, session: SessionRecord) -> Dict[str, Any]:
        item = session.model_dump(
            mode="json", exclude={"upstream_access_token", "upstream_refresh_token"}
        )
        item.update(
            pk=_session_key(session.session_id)["partition_key"],
            sk=_SESSION_SORT_KEY,
            ttl=to_epoch_seconds(session.downstream_expires_at),
            upstream_access_token_encrypted=self._cipher.encrypt(
                session.upstream_access_token
            ),
            upstream_refresh_token_encrypted=self._cipher.encrypt_optional(
                session.upstream_refresh_token
            ),
        )
        return item

    def _from_item(self, item: Dict[str, Any]) -> SessionRecord:
        data = {
            k: v
            for k, v in item.items()
            if k not in ("pk", "sk", "ttl")
            and not k.endswith("_encrypted")
        }
        data["upstream_access_token"] = self._cipher.decrypt(
            item["upstream_access_token_encrypted"]
        )
        data["upstream_refresh_token"] = self._cipher.decrypt_optional(
            item.get("upstream_refresh_token_encrypted")
        )
        return SessionRecord.model_validate(data)

    def save(self, session: SessionRecord) -> None:
        """Upsert the session, then repoint its refresh index entry at it.

        The index is written second so a failure can only orphan the old
        session, never leave the index pointing at a session that was not saved.
        """
        self._store.put_item(self._to_item(session))
        if session.downstream_refresh_token:
            index = RefreshIndexRecord(
                refresh_token=session.downstream_refresh_token,
                session_id=session.session_id,
                updated_at=self._clock(),
            )
            key = _index_key(session.downstream_refresh_token)
            self._store.put_item(
                {
                    "pk": key["partition_key"],
                    "sk": key["sort_key"],
                    "session_id": index.session_id,
                    "updated_at": index.updated_at.isoformat(),
                    "ttl": to_epoch_seconds(session.downstream_expires_at),
                }
            )
        logger.debug("Saved session %s for client %s", redact(session.session_id), session.client_id)

    def get_by_access_token(self, session_id: str) -> Optional[SessionRecord]:
        item = self._store.get_item(**_session_key(session_id))
        if not item:
            return None
        session = self._from_item(item)
        if session.is_expired(self._clock()):
            logger.debug("Session %s expired; deleting", redact(session_id))
            self.delete(session_id)
            return None
        return session

    def get_by_refresh_token(self, refresh_token: str) -> Optional[SessionRecord]:
        index = self._store.get_item(**_index_key(refresh_token))
        if not index or not index.get("session_id"):
            return None
        return self.get_by_access_token(index["session_id"])

    def update_upstream_credentials(
        self,
        session_id: str,
        access_token: str,
        expires_at: datetime,
        *,
        refresh_token: Optional[str] = None,
    ) -> None:
        """Swap in fresh Google credentials; the downstream expiry is untouched."""
        updates: Dict[str, Any] = {
            "upstream_access_token_encrypted": self._cipher.encrypt(access_token),
            "upstream_expires_at": expires_at.isoformat(),
            "updated_at": self._clock().isoformat(),
        }
        if refresh_token:
            updates["upstream_refresh_token_encrypted"] = self._cipher.encrypt(refresh_token)
        if not self._store.update_item(**_session_key(session_id), updates=updates):
            raise RecordNotFoundError("Session not found.")

    def touch(self, session_id: str, extension_days: int) -> None:
        """Slide the downstream expiry to ``now + extension_days``."""
        item = self._store.get_item(**_session_key(session_id))
        if not item:
            raise RecordNotFoundError("Session not found.")

        expires_at = self._clock() + timedelta(days=extension_days)
        ttl = to_epoch_seconds(expires_at)
        applied = self._store.update_item(
            **_session_key(session_id),
            updates={"downstream_expires_at": expires_at.isoformat(), "ttl": ttl},
        )
        if not applied:
            raise RecordNotFoundError("Session not found.")

        refresh_token = item.get("downstream_refresh_token")
        if refresh_token:
            # Keep the index alive for as long as the session it points at.
            self._store.update_item(
                **_index_key(refresh_token),
                updates={"ttl": ttl},
                expected={"session_id": session_id},
            )

    def delete(self, session_id: str) -> None:
        """Remove a session and its index entry if that entry still points here."""
        item = self._store.get_item(**_session_key(session_id))
        self._store.delete_item(**_session_key(session_id))
        refresh_token = item.get("downstream_refresh_token") if item else None
        if refresh_token:
            self._store.delete_item(
                **_index_key(refresh_token), expected={"session_id": session_id}
            )

    def purge_expired(self) -> int:
        """Sweep every expired item from the backing table."""
        removed = self._store.purge_expired(now_epoch=to_epoch_seconds(self._clock()))
        logger.info("Purged %s expired records", removed)
        return removed


__all__ = ["SessionStore"]
