"""AI provider drivers and registry."""

from core.providers.base import CallableDriver, ProgressReporter, ProviderDriver
from core.providers.registry import DEFAULT_REGISTRY, ProviderRegistry

__all__ = [
    "CallableDriver",
    "DEFAULT_REGISTRY",
    "ProgressReporter",
    "ProviderDriver",
    "ProviderRegistry",
]
