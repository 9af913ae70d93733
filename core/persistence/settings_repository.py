"""Settings repository implementation."""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime
from typing import Any, Callable, Optional

from core.models import Setting
from .database import Database

logger = logging.getLogger(__name__)

SettingsListener = Callable[[str, Optional[str]], None]


class SettingsRepository:
    """Key-value settings store with change subscription.

    ``set`` is a no-op for unchanged values so subscribers only hear about
    real changes. Listeners receive ``(key, value)``; ``value`` is None
    when the key was deleted.
    """

    _COLUMNS = "key, value, category, updated_at"

    def __init__(self, database: Database):
        self._db = database
        self._listeners: list[SettingsListener] = []
        self._listeners_lock = threading.Lock()

    @staticmethod
    def _to_setting(row) -> Setting:
        return Setting(
            key=row["key"],
            value=row["value"],
            category=row["category"],
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def _query(self, where: str = "", params: tuple = ()) -> list[Setting]:
        conn = self._db.get_connection()
        cursor = conn.execute(
            f"SELECT {self._COLUMNS} FROM settings {where} ORDER BY category, key",
            params,
        )
        return [self._to_setting(row) for row in cursor.fetchall()]

    def get(self, key: str) -> Optional[Setting]:
        rows = self._query("WHERE key = ?", (key,))
        return rows[0] if rows else None

    def get_all(self) -> list[Setting]:
        return self._query()

    def get_by_category(self, category: str) -> list[Setting]:
        return self._query("WHERE category = ?", (category,))

    def set(self, key: str, value: str, category: str) -> bool:
        """Upsert a setting. Returns False when the stored value is unchanged."""
        existing = self.get(key)
        if existing is not None and existing.value == value and existing.category == category:
            return False
        conn = self._db.get_connection()
        conn.execute(
            """
            INSERT INTO settings (key, value, category, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                category = excluded.category,
                updated_at = excluded.updated_at
            """,
            (key, value, category, datetime.now().isoformat()),
        )
        conn.commit()
        self._notify(key, value)
        return True

    def delete(self, key: str) -> bool:
        conn = self._db.get_connection()
        cursor = conn.execute("DELETE FROM settings WHERE key = ?", (key,))
        conn.commit()
        deleted = cursor.rowcount > 0
        if deleted:
            self._notify(key, None)
        return deleted

    def get_value(self, key: str, default: str = "") -> str:
        setting = self.get(key)
        return setting.value if setting else default

    def get_int(self, key: str, default: int = 0) -> int:
        value = self.get_value(key, str(default))
        try:
            return int(value)
        except (TypeError, ValueError):
            return default

    def get_float(self, key: str, default: float = 0.0) -> float:
        value = self.get_value(key, str(default))
        try:
            return float(value)
        except (TypeError, ValueError):
            return default

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.get_value(key, str(default).lower())
        return value.strip().lower() in ("1", "true", "yes", "on")

    def get_json(self, key: str, default: Any = None) -> Any:
        setting = self.get(key)
        if setting is None:
            return default
        try:
            return json.loads(setting.value)
        except (TypeError, ValueError):
            logger.warning("Ignoring malformed JSON setting %s", key)
            return default

    def set_json(self, key: str, value: Any, category: str) -> bool:
        return self.set(key, json.dumps(value, sort_keys=True), category)

    def subscribe(self, listener: SettingsListener) -> Callable[[], None]:
        """Register a change listener; returns a callable that unsubscribes it."""
        with self._listeners_lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._listeners_lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, key: str, value: Optional[str]) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(key, value)
            except Exception:
                logger.exception("Settings listener failed for %s", key)
