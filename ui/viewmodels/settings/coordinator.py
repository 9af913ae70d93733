"""SettingsCoordinator - Facade over provider connections and generation settings.

Builds one ConnectionManager per registered provider that has a driver,
owns the shared LocalModelLifecycle and GenerationSettings, and forwards
their signals tagged with the provider id.
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional

from PySide6.QtCore import QObject, Signal

from core.errors import ConfigurationError
from core.infrastructure.keyring_service import KeyringService, get_keyring_service
from core.models import OperationResult
from core.persistence import Database, ModelHistoryRepository, SettingsRepository
from core.providers.base import ProviderDriver
from core.providers.registry import DEFAULT_REGISTRY, ProviderRegistry
from core.services.connection_manager import ConnectionManager
from core.services.local_model_lifecycle import LocalModelLifecycle

from .generation_settings import GenerationSettings

logger = logging.getLogger(__name__)


class SettingsCoordinator(QObject):
    """
    Facade coordinating provider connections, local models and generation settings.
    """

    # Forwarded signals, tagged with the provider id where relevant
    connection_state_changed = Signal(str, str)
    models_changed = Signal(str)
    selected_model_changed = Signal(str, str)
    load_state_changed = Signal(str, str)
    load_progress = Signal(str, float)
    active_model_changed = Signal(str)
    preferred_provider_changed = Signal(str)
    settings_changed = Signal()
    settings_saved = Signal()
    error_occurred = Signal(str)

    def __init__(
        self,
        drivers: Mapping[str, ProviderDriver],
        database: Optional[Database] = None,
        keyring_service: Optional[KeyringService] = None,
        registry: Optional[ProviderRegistry] = None,
        parent: Optional[QObject] = None,
    ):
        super().__init__(parent)

        # Shared dependencies
        self._db = database or Database()
        self._keyring = keyring_service or get_keyring_service()
        self._registry = registry or DEFAULT_REGISTRY
        self._repo = SettingsRepository(self._db)
        self._history = ModelHistoryRepository(self._db)

        self.generation = GenerationSettings(self._db, self._registry, parent=self)
        self.lifecycle: Optional[LocalModelLifecycle] = None
        self.managers: dict[str, ConnectionManager] = {}

        for descriptor in self._registry:
            driver = drivers.get(descriptor.id)
            if driver is None:
                logger.debug("No driver for provider %s", descriptor.id)
                continue
            lifecycle = None
            if descriptor.is_local_runtime:
                if self.lifecycle is None:
                    self.lifecycle = LocalModelLifecycle(
                        driver, self._history, provider_id=descriptor.id, parent=self
                    )
                lifecycle = self.lifecycle
            self.managers[descriptor.id] = ConnectionManager(
                descriptor,
                driver,
                self._repo,
                self._keyring,
                lifecycle=lifecycle,
                parent=self,
            )

        # Track saved state for revert
        self._saved_state: dict[str, object] = {}

        self._connect_signals()

    def _connect_signals(self) -> None:
        """Forward signals from subsystems to coordinator."""
        for provider_id, manager in self.managers.items():
            manager.state_changed.connect(
                lambda state, pid=provider_id: self.connection_state_changed.emit(pid, state)
            )
            manager.models_changed.connect(
                lambda pid=provider_id: self.models_changed.emit(pid)
            )
            manager.selected_model_changed.connect(
                lambda model_id, pid=provider_id: self.selected_model_changed.emit(pid, model_id)
            )
            manager.settings_changed.connect(self.settings_changed)
            manager.error_occurred.connect(self.error_occurred)

        if self.lifecycle is not None:
            self.lifecycle.load_state_changed.connect(self.load_state_changed)
            self.lifecycle.load_progress.connect(self.load_progress)
            self.lifecycle.active_model_changed.connect(self.active_model_changed)
            self.lifecycle.error_occurred.connect(self.error_occurred)

        self.generation.settings_changed.connect(self.settings_changed)
        self.generation.preferred_provider_changed.connect(self.preferred_provider_changed)

    # ----- Providers -----

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    def manager(self, provider_id: str) -> ConnectionManager:
        manager = self.managers.get(provider_id)
        if manager is None:
            raise ConfigurationError(f"No driver configured for {provider_id}", provider_id)
        return manager

    @property
    def active_manager(self) -> Optional[ConnectionManager]:
        """Manager of the preferred provider."""
        return self.managers.get(self.generation.preferred_provider_id)

    def switch_provider(self, provider_id: str) -> None:
        """Make ``provider_id`` preferred, cancelling the old provider's work."""
        self._registry.require(provider_id)
        previous = self.active_manager
        if previous is not None and previous.provider_id != provider_id:
            previous.cancel_pending()
            if previous.lifecycle is not None and previous.lifecycle.is_loading:
                previous.lifecycle.cancel_load()
        self.generation.preferred_provider_id = provider_id

    async def initialize_local_runtime(self) -> Optional[OperationResult]:
        """
        Reconcile the downloaded history and auto-load a local model.

        Returns the auto-load result, or None when nothing was loaded.
        """
        if self.lifecycle is None:
            return None
        stale = self.lifecycle.reconcile_cache()
        if stale:
            logger.info("Runtime no longer holds: %s", ", ".join(stale))

        manager = next(
            (m for m in self.managers.values() if m.lifecycle is self.lifecycle), None
        )
        if manager is None or not self.generation.auto_load:
            return None
        if not manager.models:
            await manager.load_models()
        return await self.lifecycle.auto_load(manager.models, self.generation.auto_load_policy)

    # ----- Persistence -----

    def _apply_timeout(self) -> None:
        for manager in self.managers.values():
            manager.timeout = self.generation.request_timeout

    def load_settings(self) -> None:
        """Load all settings from database."""
        self.generation.load()
        for manager in self.managers.values():
            manager.reload()
        self._apply_timeout()
        self._saved_state = self.snapshot()

    def save_settings(self) -> None:
        """Save all settings to database."""
        try:
            self.generation.save()
            for manager in self.managers.values():
                manager.save_settings()
            self._apply_timeout()
            self._saved_state = self.snapshot()
            self.settings_saved.emit()
        except Exception as exc:
            logger.exception("Failed to save settings")
            self.error_occurred.emit(str(exc))

    @property
    def has_changes(self) -> bool:
        return any(m.has_changes for m in self.managers.values()) or (
            self.generation.snapshot() != self._saved_state.get("generation")
        )

    def snapshot(self) -> dict[str, object]:
        """Create snapshot of all settings for revert functionality."""
        return {
            "generation": self.generation.snapshot(),
            "providers": {
                provider_id: manager.snapshot()
                for provider_id, manager in self.managers.items()
            },
        }

    def restore_snapshot(self, snapshot: dict[str, object]) -> None:
        """Restore all settings from snapshot."""
        if "generation" in snapshot:
            self.generation.restore_snapshot(snapshot["generation"])
        providers = snapshot.get("providers") or {}
        for provider_id, provider_snapshot in providers.items():
            manager = self.managers.get(provider_id)
            if manager is not None:
                manager.restore_snapshot(provider_snapshot)

    def revert_to_saved(self) -> None:
        """Restore all settings to last saved state."""
        self.restore_snapshot(self._saved_state.copy())

    # Convenience properties

    @property
    def preferred_provider_id(self) -> str:
        """Get preferred provider id."""
        return self.generation.preferred_provider_id

    @property
    def temperature(self) -> float:
        """Get temperature."""
        return self.generation.temperature

    @temperature.setter
    def temperature(self, value: float) -> None:
        """Set temperature."""
        self.generation.temperature = value

    @property
    def max_tokens(self) -> int:
        """Get max tokens."""
        return self.generation.max_tokens

    @max_tokens.setter
    def max_tokens(self, value: int) -> None:
        """Set max tokens."""
        self.generation.max_tokens = value

    @property
    def keyring_available(self) -> bool:
        """Check if keyring backend is available."""
        return self._keyring.is_available

    @property
    def downloaded_models(self) -> list[str]:
        """Get downloaded local model ids."""
        return self._history.list_ids()
