"""GenerationSettings - global generation parameters and local auto-load settings."""

from __future__ import annotations

import logging
from typing import Optional

from pydantic import ValidationError
from PySide6.QtCore import QObject, Signal

from core.constants import (
    DEFAULT_AUTO_LOAD,
    DEFAULT_AUTO_LOAD_STRATEGY,
    DEFAULT_MAX_TOKENS,
    DEFAULT_PREFERRED_PROVIDER,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_TEMPERATURE,
)
from core.models import AutoLoadPolicy, AutoLoadStrategy, ProviderDescriptor
from core.persistence import Database, SettingsRepository
from core.providers.registry import DEFAULT_REGISTRY, ProviderRegistry
from core.types import GenerationParameters

logger = logging.getLogger(__name__)


class GenerationSettings(QObject):
    """Manages temperature, token limit, system prompt and preferred provider."""

    settings_changed = Signal()
    preferred_provider_changed = Signal(str)

    KEY_TEMPERATURE = "generation.temperature"
    KEY_MAX_TOKENS = "generation.max_tokens"
    KEY_CUSTOM_PROMPT = "generation.custom_prompt"
    KEY_PREFERRED_PROVIDER = "generation.preferred_provider"
    KEY_REQUEST_TIMEOUT = "generation.request_timeout"
    KEY_DEFAULT_MODEL = "local.default_model"
    KEY_AUTO_LOAD = "local.auto_load"
    KEY_AUTO_LOAD_STRATEGY = "local.auto_load_strategy"

    def __init__(
        self,
        database: Optional[Database] = None,
        registry: Optional[ProviderRegistry] = None,
        parent: Optional[QObject] = None,
    ):
        super().__init__(parent)
        self._db = database or Database()
        self._repo = SettingsRepository(self._db)
        self._registry = registry or DEFAULT_REGISTRY

        # Internal state
        self._temperature: float = DEFAULT_TEMPERATURE
        self._max_tokens: int = DEFAULT_MAX_TOKENS
        self._custom_prompt: str = ""
        self._preferred_provider_id: str = self._fallback_provider_id()
        self._request_timeout: float = DEFAULT_REQUEST_TIMEOUT
        self._default_model: str = ""
        self._auto_load: bool = DEFAULT_AUTO_LOAD
        self._auto_load_strategy = AutoLoadStrategy(DEFAULT_AUTO_LOAD_STRATEGY)

    def _fallback_provider_id(self) -> str:
        if DEFAULT_PREFERRED_PROVIDER in self._registry:
            return DEFAULT_PREFERRED_PROVIDER
        ids = self._registry.ids()
        return ids[0] if ids else DEFAULT_PREFERRED_PROVIDER

    @property
    def preferred_provider(self) -> Optional[ProviderDescriptor]:
        return self._registry.get(self._preferred_provider_id)

    @property
    def temperature_range(self) -> tuple[float, float]:
        provider = self.preferred_provider
        return provider.temperature_range if provider else (0.0, 2.0)

    def _clamp_temperature(self, value: float) -> float:
        provider = self.preferred_provider
        if provider is None:
            return max(0.0, min(2.0, float(value)))
        return provider.clamp_temperature(value)

    def _clamp_max_tokens(self, value: int) -> int:
        provider = self.preferred_provider
        ceiling = provider.max_tokens if provider else value
        return max(1, min(int(value), ceiling))

    @property
    def temperature(self) -> float:
        """Sampling temperature, bounded by the preferred provider's range."""
        return self._temperature

    @temperature.setter
    def temperature(self, value: float) -> None:
        value = self._clamp_temperature(value)
        if self._temperature != value:
            self._temperature = value
            self.settings_changed.emit()

    @property
    def max_tokens(self) -> int:
        return self._max_tokens

    @max_tokens.setter
    def max_tokens(self, value: int) -> None:
        value = self._clamp_max_tokens(value)
        if self._max_tokens != value:
            self._max_tokens = value
            self.settings_changed.emit()

    @property
    def custom_prompt(self) -> str:
        return self._custom_prompt

    @custom_prompt.setter
    def custom_prompt(self, value: str) -> None:
        value = value or ""
        if self._custom_prompt != value:
            self._custom_prompt = value
            self.settings_changed.emit()

    @property
    def preferred_provider_id(self) -> str:
        return self._preferred_provider_id

    @preferred_provider_id.setter
    def preferred_provider_id(self, value: str) -> None:
        """Switch provider; unknown ids are ignored and limits are re-clamped."""
        if value not in self._registry:
            logger.warning("Ignoring unknown preferred provider %s", value)
            return
        if self._preferred_provider_id == value:
            return
        self._preferred_provider_id = value
        self._temperature = self._clamp_temperature(self._temperature)
        self._max_tokens = self._clamp_max_tokens(self._max_tokens)
        self.preferred_provider_changed.emit(value)
        self.settings_changed.emit()

    @property
    def request_timeout(self) -> float:
        return self._request_timeout

    @request_timeout.setter
    def request_timeout(self, value: float) -> None:
        value = float(value)
        if value > 0 and self._request_timeout != value:
            self._request_timeout = value
            self.settings_changed.emit()

    @property
    def default_model(self) -> str:
        """Pinned local model used by auto-load."""
        return self._default_model

    @default_model.setter
    def default_model(self, value: str) -> None:
        value = (value or "").strip()
        if self._default_model != value:
            self._default_model = value
            self.settings_changed.emit()

    @property
    def auto_load(self) -> bool:
        return self._auto_load

    @auto_load.setter
    def auto_load(self, value: bool) -> None:
        value = bool(value)
        if self._auto_load != value:
            self._auto_load = value
            self.settings_changed.emit()

    @property
    def auto_load_strategy(self) -> AutoLoadStrategy:
        return self._auto_load_strategy

    @auto_load_strategy.setter
    def auto_load_strategy(self, value: AutoLoadStrategy | str) -> None:
        try:
            strategy = AutoLoadStrategy(value)
        except ValueError:
            logger.warning("Ignoring unknown auto-load strategy %s", value)
            return
        if self._auto_load_strategy != strategy:
            self._auto_load_strategy = strategy
            self.settings_changed.emit()

    @property
    def auto_load_policy(self) -> AutoLoadPolicy:
        """Effective policy; disabled auto-load resolves to ``none`` with no pin."""
        if not self._auto_load:
            return AutoLoadPolicy(strategy=AutoLoadStrategy.NONE)
        return AutoLoadPolicy(
            strategy=self._auto_load_strategy,
            default_model_id=self._default_model or None,
        )

    def parameters(self) -> GenerationParameters:
        return GenerationParameters(
            temperature=self._temperature,
            max_tokens=self._max_tokens,
            custom_prompt=self._custom_prompt,
            preferred_provider_id=self._preferred_provider_id,
            request_timeout=self._request_timeout,
        )

    def load(self) -> None:
        """Load generation and auto-load settings from database."""
        provider_id = self._repo.get_value(
            self.KEY_PREFERRED_PROVIDER, self._fallback_provider_id()
        )
        if provider_id not in self._registry:
            provider_id = self._fallback_provider_id()
        self._preferred_provider_id = provider_id

        try:
            params = GenerationParameters(
                temperature=self._clamp_temperature(
                    self._repo.get_float(self.KEY_TEMPERATURE, DEFAULT_TEMPERATURE)
                ),
                max_tokens=self._clamp_max_tokens(
                    self._repo.get_int(self.KEY_MAX_TOKENS, DEFAULT_MAX_TOKENS)
                ),
                custom_prompt=self._repo.get_value(self.KEY_CUSTOM_PROMPT, ""),
                preferred_provider_id=provider_id,
                request_timeout=self._repo.get_float(
                    self.KEY_REQUEST_TIMEOUT, DEFAULT_REQUEST_TIMEOUT
                ),
            )
        except ValidationError as exc:
            logger.warning("Invalid stored generation settings, using defaults: %s", exc)
            params = GenerationParameters(preferred_provider_id=provider_id)

        self._temperature = self._clamp_temperature(params.temperature)
        self._max_tokens = params.max_tokens
        self._custom_prompt = params.custom_prompt
        self._request_timeout = params.request_timeout

        self._default_model = self._repo.get_value(self.KEY_DEFAULT_MODEL, "")
        self._auto_load = self._repo.get_bool(self.KEY_AUTO_LOAD, DEFAULT_AUTO_LOAD)
        try:
            self._auto_load_strategy = AutoLoadStrategy(
                self._repo.get_value(self.KEY_AUTO_LOAD_STRATEGY, DEFAULT_AUTO_LOAD_STRATEGY)
            )
        except ValueError:
            self._auto_load_strategy = AutoLoadStrategy(DEFAULT_AUTO_LOAD_STRATEGY)

    def save(self) -> None:
        """Save generation and auto-load settings to database."""
        self._repo.set(self.KEY_TEMPERATURE, str(self._temperature), "generation")
        self._repo.set(self.KEY_MAX_TOKENS, str(self._max_tokens), "generation")
        self._repo.set(self.KEY_CUSTOM_PROMPT, self._custom_prompt, "generation")
        self._repo.set(self.KEY_PREFERRED_PROVIDER, self._preferred_provider_id, "generation")
        self._repo.set(self.KEY_REQUEST_TIMEOUT, str(self._request_timeout), "generation")
        self._repo.set(self.KEY_DEFAULT_MODEL, self._default_model, "local")
        self._repo.set(self.KEY_AUTO_LOAD, str(self._auto_load).lower(), "local")
        self._repo.set(
            self.KEY_AUTO_LOAD_STRATEGY, self._auto_load_strategy.value, "local"
        )

    def snapshot(self) -> dict[str, object]:
        """Create snapshot of current state for revert functionality."""
        return {
            "temperature": self._temperature,
            "max_tokens": self._max_tokens,
            "custom_prompt": self._custom_prompt,
            "preferred_provider_id": self._preferred_provider_id,
            "request_timeout": self._request_timeout,
            "default_model": self._default_model,
            "auto_load": self._auto_load,
            "auto_load_strategy": self._auto_load_strategy.value,
        }

    def restore_snapshot(self, snapshot: dict[str, object]) -> None:
        """Restore state from snapshot, emitting signals for changes."""
        provider_id = str(snapshot.get("preferred_provider_id", self._preferred_provider_id))
        if provider_id in self._registry:
            self._preferred_provider_id = provider_id
        self._temperature = self._clamp_temperature(
            float(snapshot.get("temperature", DEFAULT_TEMPERATURE))
        )
        self._max_tokens = self._clamp_max_tokens(
            int(snapshot.get("max_tokens", DEFAULT_MAX_TOKENS))
        )
        self._custom_prompt = str(snapshot.get("custom_prompt", "") or "")
        self._request_timeout = float(
            snapshot.get("request_timeout", DEFAULT_REQUEST_TIMEOUT)
        )
        self._default_model = str(snapshot.get("default_model", "") or "")
        self._auto_load = bool(snapshot.get("auto_load", DEFAULT_AUTO_LOAD))
        try:
            self._auto_load_strategy = AutoLoadStrategy(
                snapshot.get("auto_load_strategy", DEFAULT_AUTO_LOAD_STRATEGY)
            )
        except ValueError:
            self._auto_load_strategy = AutoLoadStrategy(DEFAULT_AUTO_LOAD_STRATEGY)
        self.settings_changed.emit()
