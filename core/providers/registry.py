"""Static catalog of supported AI providers."""

from __future__ import annotations

from types import MappingProxyType
from typing import Iterable, Iterator, Optional

from core.constants import (
    DEFAULT_GEMINI_MODEL,
    DEFAULT_OLLAMA_MODEL,
    DEFAULT_OLLAMA_URL,
    DEFAULT_WEBLLM_MODEL,
    GEMINI_PROVIDER_ID,
    OLLAMA_PROVIDER_ID,
    WEBLLM_PROVIDER_ID,
)
from core.errors import ConfigurationError
from core.models import ProviderDescriptor, ProviderKind


class ProviderRegistry:
    """Read-only lookup table of provider descriptors, in registration order."""

    def __init__(self, descriptors: Iterable[ProviderDescriptor]):
        table: dict[str, ProviderDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.id in table:
                raise ValueError(f"Duplicate provider id: {descriptor.id}")
            table[descriptor.id] = descriptor
        self._descriptors = MappingProxyType(table)

    def get(self, provider_id: str) -> Optional[ProviderDescriptor]:
        return self._descriptors.get(provider_id)

    def require(self, provider_id: str) -> ProviderDescriptor:
        descriptor = self._descriptors.get(provider_id)
        if descriptor is None:
            raise ConfigurationError(f"Unknown provider: {provider_id}", provider_id)
        return descriptor

    def list(self) -> list[ProviderDescriptor]:
        return list(self._descriptors.values())

    def ids(self) -> list[str]:
        return list(self._descriptors.keys())

    def by_kind(self, kind: ProviderKind) -> list[ProviderDescriptor]:
        return [d for d in self._descriptors.values() if d.kind == kind]

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self._descriptors

    def __iter__(self) -> Iterator[ProviderDescriptor]:
        return iter(self._descriptors.values())

    def __len__(self) -> int:
        return len(self._descriptors)


GEMINI = ProviderDescriptor(
    id=GEMINI_PROVIDER_ID,
    name="Google Gemini",
    kind=ProviderKind.REMOTE_API,
    requires_api_key=True,
    supports_model_selection=True,
    default_model=DEFAULT_GEMINI_MODEL,
    max_tokens=8192,
    temperature_range=(0.0, 1.0),
    api_key_instructions="Create a key in Google AI Studio and paste it here.",
)

OLLAMA = ProviderDescriptor(
    id=OLLAMA_PROVIDER_ID,
    name="Ollama",
    kind=ProviderKind.LOCAL_DAEMON,
    supports_model_selection=True,
    supports_custom_url=True,
    default_url=DEFAULT_OLLAMA_URL,
    default_model=DEFAULT_OLLAMA_MODEL,
    max_tokens=4096,
    temperature_range=(0.0, 2.0),
)

WEBLLM = ProviderDescriptor(
    id=WEBLLM_PROVIDER_ID,
    name="Local (WebLLM)",
    kind=ProviderKind.LOCAL_RUNTIME,
    supports_model_selection=True,
    default_model=DEFAULT_WEBLLM_MODEL,
    max_tokens=4096,
    temperature_range=(0.0, 2.0),
)

DEFAULT_REGISTRY = ProviderRegistry([GEMINI, OLLAMA, WEBLLM])
