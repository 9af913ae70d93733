"""Domain models for provider configuration and local model state."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from core.errors import ProviderError


class ProviderKind(str, Enum):
    """How a provider is reached."""

    REMOTE_API = "remote_api"
    LOCAL_DAEMON = "local_daemon"
    LOCAL_RUNTIME = "local_runtime"


class ConnectionState(str, Enum):
    """Reachability of a provider."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class ModelCategory(str, Enum):
    """Size bucket of a model."""

    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


class LoadState(str, Enum):
    """Initialization state of a local model."""

    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


class AutoLoadStrategy(str, Enum):
    """Rule for picking a local model without explicit user action."""

    SMALLEST = "smallest"
    FASTEST = "fastest"
    BALANCED = "balanced"
    DEFAULT_MODEL = "default_model"
    NONE = "none"


@dataclass
class Setting:
    """A configuration setting."""

    key: str
    value: str
    category: str
    updated_at: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class ProviderDescriptor:
    """Static description of an AI provider and what it supports."""

    id: str
    name: str
    kind: ProviderKind
    requires_api_key: bool = False
    supports_model_selection: bool = True
    supports_custom_url: bool = False
    default_url: Optional[str] = None
    default_model: Optional[str] = None
    max_tokens: int = 4096
    temperature_range: tuple[float, float] = (0.0, 2.0)
    api_key_instructions: str = ""

    @property
    def is_local_runtime(self) -> bool:
        return self.kind == ProviderKind.LOCAL_RUNTIME

    @property
    def shows_api_key_field(self) -> bool:
        return self.requires_api_key

    @property
    def shows_url_field(self) -> bool:
        return self.supports_custom_url

    @property
    def shows_model_picker(self) -> bool:
        return self.supports_model_selection

    def clamp_temperature(self, value: float) -> float:
        low, high = self.temperature_range
        return max(low, min(high, float(value)))


@dataclass(frozen=True)
class ModelInfo:
    """A model offered by a provider, in normalized form."""

    id: str
    name: str
    description: str = ""
    category: ModelCategory = ModelCategory.MEDIUM
    max_tokens: Optional[int] = None
    supports_vision: Optional[bool] = None
    size: Optional[str] = None
    download_size: Optional[str] = None


@dataclass
class ProviderSettings:
    """Mutable per-provider settings."""

    api_key: Optional[str] = None
    selected_model_id: Optional[str] = None
    custom_url: Optional[str] = None
    last_validated: Optional[datetime] = None
    connection_error: Optional[str] = None


@dataclass
class LocalModelRecord:
    """Download and initialization facts for one local model."""

    model_id: str
    downloaded: bool = False
    load_state: LoadState = LoadState.IDLE
    progress: float = 0.0
    last_loaded_at: Optional[datetime] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class AutoLoadPolicy:
    """Auto-load strategy plus an optional pinned default model."""

    strategy: AutoLoadStrategy = AutoLoadStrategy.SMALLEST
    default_model_id: Optional[str] = None


@dataclass(frozen=True)
class CompatibilityReport:
    """Result of probing the device for local inference capabilities.

    Missing GPU acceleration or a low memory hint only degrade the
    experience. A missing execution runtime makes loading impossible.
    """

    gpu_acceleration: bool
    execution_runtime: bool
    memory_gb: Optional[float] = None
    warnings: tuple[str, ...] = ()

    @property
    def compatible(self) -> bool:
        return self.gpu_acceleration and self.execution_runtime and not self.warnings

    @property
    def strictly_unavailable(self) -> bool:
        return not self.execution_runtime


@dataclass
class OperationResult:
    """Outcome of a connection, fetch or load operation."""

    success: bool
    error: Optional[ProviderError] = None
    superseded: bool = False

    @property
    def message(self) -> str:
        return self.error.message if self.error else ""

    @classmethod
    def ok(cls) -> "OperationResult":
        return cls(success=True)

    @classmethod
    def failed(cls, error: ProviderError) -> "OperationResult":
        return cls(success=False, error=error)

    @classmethod
    def stale(cls, error: Optional[ProviderError] = None) -> "OperationResult":
        return cls(success=False, error=error, superseded=True)
