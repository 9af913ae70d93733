"""Persistence package exports."""

from .database import Database
from .model_history_repository import ModelHistoryRepository
from .settings_repository import SettingsRepository

__all__ = [
    "Database",
    "ModelHistoryRepository",
    "SettingsRepository",
]
