"""SQLite database manager for persisted settings state."""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path
from typing import Optional

from core.config import get_database_path


class Database:
    """Unified database manager for the application."""

    SCHEMA = """
    -- Settings
    CREATE TABLE IF NOT EXISTS settings (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        category TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS idx_settings_category ON settings(category);

    -- Downloaded local model history (append-only)
    CREATE TABLE IF NOT EXISTS downloaded_models (
        model_id TEXT PRIMARY KEY,
        downloaded_at TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS idx_downloaded_models_downloaded_at
        ON downloaded_models(downloaded_at);
    """

    def __init__(self, db_path: Optional[Path] = None):
        if db_path is None:
            db_path = get_database_path()
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._local = threading.local()
        self._init_schema()

    def _init_schema(self) -> None:
        conn = self.get_connection()
        conn.executescript(self.SCHEMA)
        conn.commit()

    def get_connection(self) -> sqlite3.Connection:
        """Get or create a database connection for the current thread."""
        if not hasattr(self._local, "connection") or self._local.connection is None:
            self._local.connection = sqlite3.connect(str(self.db_path))
            self._local.connection.row_factory = sqlite3.Row
            self._local.connection.execute("PRAGMA journal_mode=WAL")
        return self._local.connection

    def close(self) -> None:
        """Close the database connection for the current thread."""
        if hasattr(self._local, "connection") and self._local.connection is not None:
            self._local.connection.close()
            self._local.connection = None
