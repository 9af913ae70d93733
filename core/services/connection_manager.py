"""Per-provider API key, connection and model-list management."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from datetime import datetime
from typing import Any, Awaitable, Optional

from PySide6.QtCore import QObject, Signal

from core.config import get_request_timeout
from core.constants import PROVIDER_SETTINGS_KEY_PREFIX, SETTINGS_CATEGORY_PROVIDERS
from core.errors import (
    ConfigurationError,
    ProviderConnectionError,
    ProviderError,
    ProviderTimeoutError,
    SupersededError,
    classify_exception,
)
from core.infrastructure.keyring_service import KeyringService
from core.logging_config import register_secret
from core.models import (
    ConnectionState,
    ModelCategory,
    ModelInfo,
    OperationResult,
    ProviderDescriptor,
    ProviderSettings,
)
from core.persistence.settings_repository import SettingsRepository
from core.providers.base import ProviderDriver
from core.services.local_model_lifecycle import LocalModelLifecycle
from core.services.model_catalog import ModelCatalog
from core.types import PersistedProviderSettings

logger = logging.getLogger(__name__)


class ConnectionManager(QObject):
    """Connection state, model list and persisted settings of one provider.

    Every driver call is bounded by the request timeout and tagged with a
    generation number. Results whose generation was superseded, or whose
    API key changed while in flight, are discarded.
    """

    state_changed = Signal(str)
    models_changed = Signal()
    selected_model_changed = Signal(str)
    settings_changed = Signal()
    is_loading_changed = Signal(bool)
    error_occurred = Signal(str)

    def __init__(
        self,
        descriptor: ProviderDescriptor,
        driver: ProviderDriver,
        settings_repository: SettingsRepository,
        keyring_service: Optional[KeyringService] = None,
        lifecycle: Optional[LocalModelLifecycle] = None,
        timeout: Optional[float] = None,
        parent: Optional[QObject] = None,
    ) -> None:
        super().__init__(parent)
        self._descriptor = descriptor
        self._driver = driver
        self._repo = settings_repository
        self._keyring = keyring_service
        self._lifecycle = lifecycle
        self._timeout = timeout if timeout is not None else get_request_timeout()

        self._settings: Optional[ProviderSettings] = None
        self._saved: PersistedProviderSettings = PersistedProviderSettings()
        self._state = ConnectionState.DISCONNECTED
        self._models: list[ModelInfo] = []
        self._generation = 0
        self._pending: set[asyncio.Future] = set()
        self._active_requests = 0
        self._has_changes = False

    # ----- Properties -----

    @property
    def descriptor(self) -> ProviderDescriptor:
        return self._descriptor

    @property
    def provider_id(self) -> str:
        return self._descriptor.id

    @property
    def lifecycle(self) -> Optional[LocalModelLifecycle]:
        return self._lifecycle

    @property
    def settings_key(self) -> str:
        return f"{PROVIDER_SETTINGS_KEY_PREFIX}{self.provider_id}"

    @property
    def settings(self) -> ProviderSettings:
        """Provider settings, read from the store on first access."""
        if self._settings is None:
            self._settings = self._load_settings()
        return self._settings

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def models(self) -> list[ModelInfo]:
        return list(self._models)

    @property
    def categorized_models(self) -> dict[ModelCategory, list[ModelInfo]]:
        return ModelCatalog.categorized_models(self._models)

    @property
    def selected_model_id(self) -> Optional[str]:
        return self.settings.selected_model_id

    @property
    def selected_model(self) -> Optional[ModelInfo]:
        selected = self.selected_model_id
        if not selected:
            return None
        return next((m for m in self._models if m.id == selected), None)

    @property
    def connection_error(self) -> Optional[str]:
        return self.settings.connection_error

    @property
    def has_api_key(self) -> bool:
        return bool(self.settings.api_key)

    @property
    def effective_url(self) -> Optional[str]:
        return self.settings.custom_url or self._descriptor.default_url

    @property
    def is_configured(self) -> bool:
        """Key present if the provider needs one, URL present if it takes one."""
        if self._descriptor.requires_api_key and not self.settings.api_key:
            return False
        if self._descriptor.supports_custom_url and not self.effective_url:
            return False
        return True

    @property
    def is_loading(self) -> bool:
        return self._active_requests > 0

    @property
    def has_changes(self) -> bool:
        return self._has_changes

    @property
    def timeout(self) -> float:
        return self._timeout

    @timeout.setter
    def timeout(self, value: float) -> None:
        if value > 0:
            self._timeout = float(value)

    # ----- Settings persistence -----

    def _load_settings(self) -> ProviderSettings:
        self._saved = PersistedProviderSettings.from_json(self._repo.get_value(self.settings_key))
        settings = self._saved.to_settings()
        if self._descriptor.requires_api_key and self._keyring is not None:
            stored = self._keyring.get_credential(self.provider_id)
            if stored:
                settings.api_key = stored
        register_secret(settings.api_key)
        return settings

    def reload(self) -> None:
        """Discard unsaved changes and re-read settings from the store."""
        previous_selection = self._settings.selected_model_id if self._settings else None
        self._settings = self._load_settings()
        self._has_changes = False
        if self._settings.selected_model_id != previous_selection:
            self.selected_model_changed.emit(self._settings.selected_model_id or "")

    def _write(self, document: PersistedProviderSettings) -> bool:
        changed = self._repo.set(
            self.settings_key, document.to_json(), SETTINGS_CATEGORY_PROVIDERS
        )
        self._saved = document
        return changed

    def _persist_api_key(self, key: str) -> None:
        """Store the key in the keyring, or in the settings document as fallback."""
        in_keyring = False
        if self._keyring is not None:
            if key:
                in_keyring = self._keyring.store_credential(self.provider_id, key)
            else:
                self._keyring.delete_credential(self.provider_id)
        stored_key = key if key and not in_keyring else None
        if stored_key != self._saved.api_key:
            self._write(self._saved.model_copy(update={"api_key": stored_key}))

    def save_settings(self) -> bool:
        """
        Persist the selected model, custom URL and validation time.

        Returns:
            True if the stored document changed.
        """
        settings = self.settings
        document = self._saved.model_copy(
            update={
                "selected_model_id": settings.selected_model_id or None,
                "custom_url": settings.custom_url or None,
                "last_validated": settings.last_validated,
            }
        )
        changed = self._write(document)
        self._has_changes = False
        if changed:
            logger.debug("Saved settings for %s", self.provider_id)
            self.settings_changed.emit()
        return changed

    def snapshot(self) -> dict[str, Any]:
        return {
            "selected_model_id": self.settings.selected_model_id,
            "custom_url": self.settings.custom_url,
        }

    def restore_snapshot(self, snapshot: dict[str, Any]) -> None:
        self.set_custom_url(snapshot.get("custom_url"))
        selected = snapshot.get("selected_model_id")
        if selected != self.settings.selected_model_id:
            self._apply_selection(selected)
        self._has_changes = (
            self.settings.selected_model_id != self._saved.selected_model_id
            or self.settings.custom_url != self._saved.custom_url
        )

    # ----- API key -----

    async def set_api_key(self, key: Optional[str]) -> OperationResult:
        """
        Persist a new API key.

        An empty key clears the model list and disconnects before any
        suspension point. A non-empty key triggers a model refresh.
        """
        key = (key or "").strip()
        settings = self.settings
        previous = settings.api_key or ""
        settings.api_key = key or None
        self._supersede()
        register_secret(key)

        self._persist_api_key(key)
        if key != previous:
            self.settings_changed.emit()

        if not key:
            self._set_models([])
            settings.connection_error = None
            settings.last_validated = None
            self._set_state(ConnectionState.DISCONNECTED)
            logger.info("API key cleared for %s", self.provider_id)
            return OperationResult.ok()

        logger.info("API key updated for %s", self.provider_id)
        return await self.load_models()

    async def clear_api_key(self) -> OperationResult:
        return await self.set_api_key("")

    # ----- URL and selection -----

    def set_custom_url(self, url: Optional[str]) -> bool:
        """Change the endpoint URL. Requests issued for the old URL are superseded."""
        if not self._descriptor.supports_custom_url:
            return False
        normalized = (url or "").strip().rstrip("/") or None
        if normalized == self.settings.custom_url:
            return False
        self.settings.custom_url = normalized
        self._has_changes = True
        self._supersede()
        if self._state == ConnectionState.CONNECTING:
            self._set_state(ConnectionState.DISCONNECTED)
        return True

    def select_model(self, model_id: Optional[str]) -> bool:
        """
        Select a model by id.

        Ids missing from a loaded model list are rejected. Selecting a
        different model cancels an in-flight local load of the old one.
        """
        model_id = model_id or None
        if model_id == self.settings.selected_model_id:
            return True
        if model_id and self._models and not any(m.id == model_id for m in self._models):
            logger.warning("Rejected unknown model %s for %s", model_id, self.provider_id)
            return False
        if self._lifecycle is not None:
            loading = self._lifecycle.loading_model_id
            if loading is not None and loading != model_id:
                self._lifecycle.cancel_load()
        self._apply_selection(model_id)
        return True

    def _apply_selection(self, model_id: Optional[str]) -> None:
        self.settings.selected_model_id = model_id
        self._has_changes = True
        self.selected_model_changed.emit(model_id or "")

    def _ensure_selection(self) -> None:
        models = self._models
        if not models:
            return
        current = self.settings.selected_model_id
        if current and any(m.id == current for m in models):
            return
        choice = ModelCatalog.first_of_category(models, ModelCategory.SMALL) or models[0]
        if current:
            logger.info("Selected model %s is no longer offered by %s", current, self.provider_id)
        self._apply_selection(choice.id)

    # ----- Connection -----

    async def test_connection(self) -> bool:
        """
        Check that the provider answers; on success refresh the model list.

        Returns True only when the provider answered and the model refresh
        succeeded. Returns False without calling the driver when the provider
        is not configured.
        """
        settings = self.settings
        if not self.is_configured:
            error = self._configuration_error()
            settings.connection_error = error.message
            logger.info("Skipped connection test for %s: %s", self.provider_id, error.message)
            return False

        generation = self._generation
        key = settings.api_key
        self._set_state(ConnectionState.CONNECTING)
        self._begin_request()
        try:
            reachable = await self._invoke(
                self._driver.test_connection(self._request_settings()),
                "Connection test",
            )
        except Exception as exc:
            if self._is_stale(generation, key):
                return False
            self._set_error(classify_exception(exc, self.provider_id, "Connection test"))
            return False
        finally:
            self._end_request()

        if self._is_stale(generation, key):
            return False
        if not reachable:
            self._set_error(
                ProviderConnectionError(
                    f"{self._descriptor.name} refused the connection", self.provider_id
                )
            )
            return False

        settings.connection_error = None
        settings.last_validated = datetime.now()
        self._set_state(ConnectionState.CONNECTED)
        logger.info("Connected to %s", self.provider_id)
        result = await self.load_models()
        return result.success

    async def load_models(self) -> OperationResult:
        """
        Refresh the model list.

        On failure the previous list is kept and the error stored. The result
        is dropped if the key changed or the request was superseded.
        """
        settings = self.settings
        if not self.is_configured:
            return OperationResult.failed(self._configuration_error())

        generation = self._generation
        key = settings.api_key
        if self._state != ConnectionState.CONNECTED:
            self._set_state(ConnectionState.CONNECTING)
        self._begin_request()
        try:
            raw_models = await self._invoke(
                self._driver.fetch_models(self._request_settings()),
                "Model fetch",
            )
        except Exception as exc:
            error = classify_exception(exc, self.provider_id, "Model fetch")
            if self._is_stale(generation, key):
                return OperationResult.stale(error)
            self._set_error(error)
            return OperationResult.failed(error)
        finally:
            self._end_request()

        if self._is_stale(generation, key):
            logger.debug("Discarding stale model list for %s", self.provider_id)
            return OperationResult.stale(
                SupersededError("Model fetch was superseded", self.provider_id)
            )

        self._set_models(ModelCatalog.normalize_all(raw_models))
        settings.connection_error = None
        settings.last_validated = datetime.now()
        self._set_state(ConnectionState.CONNECTED)
        self._ensure_selection()
        logger.info("Loaded %d models from %s", len(self._models), self.provider_id)
        return OperationResult.ok()

    async def load_selected_model(self) -> OperationResult:
        """
        Load the selected model in the local runtime.

        Raises:
            ConfigurationError: the provider has no local runtime.
            AlreadyLoadingError: another local load is in flight.
        """
        if self._lifecycle is None or not self._descriptor.is_local_runtime:
            raise ConfigurationError(
                f"{self._descriptor.name} does not load local models", self.provider_id
            )
        model_id = self.settings.selected_model_id
        if not model_id:
            return OperationResult.failed(
                ConfigurationError("No model selected", self.provider_id)
            )
        return await self._lifecycle.load_model(model_id)

    def cancel_pending(self) -> None:
        """Supersede every in-flight connection test and model fetch."""
        self._supersede()
        if self._state == ConnectionState.CONNECTING:
            self._set_state(ConnectionState.DISCONNECTED)

    # ----- Internals -----

    def _supersede(self) -> None:
        self._generation += 1
        for task in list(self._pending):
            task.cancel()
        self._pending.clear()

    def _is_stale(self, generation: int, key: Optional[str]) -> bool:
        return generation != self._generation or key != self.settings.api_key

    async def _invoke(self, call: Awaitable[Any], operation: str) -> Any:
        task = asyncio.ensure_future(call)
        self._pending.add(task)
        try:
            done, _ = await asyncio.wait({task}, timeout=self._timeout)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            self._pending.discard(task)
        if not done:
            task.cancel()
            raise ProviderTimeoutError(
                f"{operation} timed out after {self._timeout:g}s", self.provider_id
            )
        if task.cancelled():
            raise SupersededError(f"{operation} was cancelled", self.provider_id)
        return task.result()

    def _request_settings(self) -> ProviderSettings:
        return dataclasses.replace(self.settings, custom_url=self.effective_url)

    def _configuration_error(self) -> ConfigurationError:
        if self._descriptor.requires_api_key and not self.settings.api_key:
            return ConfigurationError(
                f"{self._descriptor.name} requires an API key", self.provider_id
            )
        return ConfigurationError(
            f"{self._descriptor.name} requires a server URL", self.provider_id
        )

    def _set_error(self, error: ProviderError) -> None:
        self.settings.connection_error = error.message
        self._set_state(ConnectionState.ERROR)
        logger.warning("%s error (%s): %s", self.provider_id, error.code.value, error.message)
        self.error_occurred.emit(error.message)

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        self._state = state
        self.state_changed.emit(state.value)

    def _set_models(self, models: list[ModelInfo]) -> None:
        if models == self._models:
            return
        self._models = models
        self.models_changed.emit()

    def _begin_request(self) -> None:
        self._active_requests += 1
        if self._active_requests == 1:
            self.is_loading_changed.emit(True)

    def _end_request(self) -> None:
        self._active_requests = max(0, self._active_requests - 1)
        if self._active_requests == 0:
            self.is_loading_changed.emit(False)
