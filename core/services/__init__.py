"""Services package for provider connections and local model lifecycle."""

from .model_catalog import ModelCatalog, categorize
from .local_model_lifecycle import LocalModelLifecycle, probe_system, resolve_auto_load
from .connection_manager import ConnectionManager

__all__ = [
    "ModelCatalog",
    "categorize",
    "LocalModelLifecycle",
    "probe_system",
    "resolve_auto_load",
    "ConnectionManager",
]
