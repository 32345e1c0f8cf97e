"""Structural type shared by the SQLite and DynamoDB record backends."""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Protocol


class RecordStore(Protocol):
    def put_item(self, item: Dict[str, Any]) -> None: ...

    def get_item(
        self, *, partition_key: str, sort_key: str
    ) -> Optional[Dict[str, Any]]: ...

    def update_item(
        self,
        *,
        partition_key: str,
        sort_key: str,
        updates: Dict[str, Any],
        expected: Optional[Mapping[str, Any]] = None,
    ) -> bool: ...

    def delete_item(
        self,
        *,
        partition_key: str,
        sort_key: str,
        expected: Optional[Mapping[str, Any]] = None,
    ) -> bool: ...

    def purge_expired(self, *, now_epoch: int) -> int: ...


__all__ = ["RecordStore"]
