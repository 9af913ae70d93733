"""Downloaded local model history repository."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from .database import Database


class ModelHistoryRepository:
    """Append-only record of local model ids whose artifacts finished downloading.

    There is no removal operation: a failed initialization
    never erases the fact that the artifacts were fetched once.
    """

    def __init__(self, database: Database):
        self._db = database

    def add(self, model_id: str, downloaded_at: Optional[datetime] = None) -> bool:
        """Record a model id. Returns False if it was already present."""
        conn = self._db.get_connection()
        cursor = conn.execute(
            """
            INSERT OR IGNORE INTO downloaded_models (model_id, downloaded_at)
            VALUES (?, ?)
            """,
            (model_id, (downloaded_at or datetime.now()).isoformat()),
        )
        conn.commit()
        return cursor.rowcount > 0

    def contains(self, model_id: str) -> bool:
        conn = self._db.get_connection()
        cursor = conn.execute(
            "SELECT 1 FROM downloaded_models WHERE model_id = ?",
            (model_id,),
        )
        return cursor.fetchone() is not None

    def list_ids(self) -> List[str]:
        conn = self._db.get_connection()
        cursor = conn.execute(
            "SELECT model_id FROM downloaded_models ORDER BY downloaded_at ASC, model_id ASC"
        )
        return [row["model_id"] for row in cursor.fetchall()]

    def get_downloaded_at(self, model_id: str) -> Optional[datetime]:
        conn = self._db.get_connection()
        cursor = conn.execute(
            "SELECT downloaded_at FROM downloaded_models WHERE model_id = ?",
            (model_id,),
        )
        row = cursor.fetchone()
        if row is None:
            return None
        return datetime.fromisoformat(row["downloaded_at"])
