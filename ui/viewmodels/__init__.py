"""ViewModels package for Nota's settings UI."""

from ui.viewmodels.settings.coordinator import SettingsCoordinator
from ui.viewmodels.settings.generation_settings import GenerationSettings

__all__ = [
    "GenerationSettings",
    "SettingsCoordinator",
]
