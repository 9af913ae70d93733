# Nota - Core Package
"""
Core package for Nota's AI provider settings.
This package contains the provider registry, connection management,
local model lifecycle and persistence, and can be used independently
of the UI layer.
"""

from core.config import get_api_key, get_data_dir
from core.errors import ProviderError
from core.models import (
    ConnectionState,
    ModelCategory,
    ModelInfo,
    ProviderDescriptor,
)

__all__ = [
    "get_api_key",
    "get_data_dir",
    "ProviderError",
    "ConnectionState",
    "ModelCategory",
    "ModelInfo",
    "ProviderDescriptor",
]
