"""SQLite-backed substitute for DynamoDB-style record storage."""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any, Dict, Mapping, Optional


class SQLiteStore:
    """Key-value store using a normalized table keyed by (pk, sk).

    Items are JSON documents. ``ttl`` (epoch seconds) is mirrored into its own
    column so expired rows can be swept without decoding every document.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = Path(db_path)
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False, timeout=10.0)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv_records (
                    pk TEXT NOT NULL,
                    sk TEXT NOT NULL,
                    data TEXT NOT NULL,
                    ttl INTEGER,
                    PRIMARY KEY (pk, sk)
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS kv_records_ttl ON kv_records (ttl)"
            )

    @staticmethod
    def _expected_clause(expected: Optional[Mapping[str, Any]]) -> tuple[str, list[Any]]:
        if not expected:
            return "", []
        clauses = []
        params: list[Any] = []
        for field_name, value in expected.items():
            clauses.append(f"json_extract(data, '$.{field_name}') = ?")
            params.append(value)
        return " AND " + " AND ".join(clauses), params

    def put_item(self, item: Dict[str, Any]) -> None:
        pk = item.get("pk")
        sk = item.get("sk")
        if not pk or not sk:
            raise ValueError("Item must include 'pk' and 'sk' keys")

        data_json = json.dumps(item)
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO kv_records (pk, sk, data, ttl)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(pk, sk) DO UPDATE SET data = excluded.data, ttl = excluded.ttl
                """,
                (pk, sk, data_json, item.get("ttl")),
            )

    def get_item(
        self, *, partition_key: str, sort_key: str
    ) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT data FROM kv_records WHERE pk = ? AND sk = ?",
                (partition_key, sort_key),
            ).fetchone()
        if not row:
            return None
        return json.loads(row["data"])

    def update_item(
        self,
        *,
        partition_key: str,
        sort_key: str,
        updates: Dict[str, Any],
        expected: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        """Merge ``updates`` into an existing item in a single statement.

        Returns False when the item is missing or ``expected`` does not match.
        ``None`` values remove the attribute, as with a DynamoDB REMOVE.
        """
        condition, condition_params = self._expected_clause(expected)
        with self._connect() as conn:
            cursor = conn.execute(
                f"""
                UPDATE kv_records
                SET data = json_patch(data, ?), ttl = COALESCE(?, ttl)
                WHERE pk = ? AND sk = ?{condition}
                """,
                (
                    json.dumps(updates),
                    updates.get("ttl"),
                    partition_key,
                    sort_key,
                    *condition_params,
                ),
            )
            return cursor.rowcount > 0

    def delete_item(
        self,
        *,
        partition_key: str,
        sort_key: str,
        expected: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        """Delete an item; returns True only if this call removed it."""
        condition, condition_params = self._expected_clause(expected)
        with self._connect() as conn:
            cursor = conn.execute(
                f"DELETE FROM kv_records WHERE pk = ? AND sk = ?{condition}",
                (partition_key, sort_key, *condition_params),
            )
            return cursor.rowcount > 0

    def purge_expired(self, *, now_epoch: int) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM kv_records WHERE ttl IS NOT NULL AND ttl < ?",
                (now_epoch,),
            )
            return cursor.rowcount


__all__ = ["SQLiteStore"]
