"""SQLite-backed record storage shared by the token store and the relay slot."""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional


class SQLiteStore:
    """Whole-record key-value store keyed by (pk, sk).

    Writes always replace the complete JSON document for a key, so readers
    never observe a partially updated record.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = Path(db_path)
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False, timeout=5.0)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS auth_records (
                    pk TEXT NOT NULL,
                    sk TEXT NOT NULL,
                    data TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (pk, sk)
                )
                """
            )

    def put_item(self, item: Dict[str, Any]) -> None:
        pk = item.get("pk")
        sk = item.get("sk")
        if not pk or not sk:
            raise ValueError("Item must include 'pk' and 'sk' keys")

        data_json = json.dumps(item)
        updated_at = datetime.now(timezone.utc).isoformat()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO auth_records (pk, sk, data, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(pk, sk) DO UPDATE SET
                    data = excluded.data,
                    updated_at = excluded.updated_at
                """,
                (pk, sk, data_json, updated_at),
            )

    def get_item(
        self, *, partition_key: str, sort_key: str
    ) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT data FROM auth_records WHERE pk = ? AND sk = ?",
                (partition_key, sort_key),
            ).fetchone()
        if not row:
            return None
        return json.loads(row["data"])

    def delete_item(self, *, partition_key: str, sort_key: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM auth_records WHERE pk = ? AND sk = ?",
                (partition_key, sort_key),
            )
        return cursor.rowcount > 0

    def list_items(self, *, sort_key: str) -> list[Dict[str, Any]]:
        """Return every record stored under ``sort_key``."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT data FROM auth_records WHERE sk = ? ORDER BY updated_at",
                (sort_key,),
            ).fetchall()
        return [json.loads(row["data"]) for row in rows]


__all__ = ["SQLiteStore"]
