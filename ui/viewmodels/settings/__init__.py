"""Settings subsystem - provider connections and generation settings."""

from .coordinator import SettingsCoordinator
from .generation_settings import GenerationSettings

__all__ = [
    "GenerationSettings",
    "SettingsCoordinator",
]
