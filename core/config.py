"""
Configuration loader for Nota.

Resolves runtime configuration from the environment and API keys using a
priority chain:
1. OS keyring (secure storage)
2. Environment variables (<PROVIDER>_API_KEY, CI/CD support)
"""

import logging
import os
from pathlib import Path
from typing import Optional

from core.constants import (
    DEFAULT_LOAD_POLL_INTERVAL,
    DEFAULT_REQUEST_TIMEOUT,
)
from core.infrastructure.keyring_service import KeyringService, get_keyring_service

_keyring_service: Optional[KeyringService] = None
logger = logging.getLogger(__name__)


def _get_keyring() -> KeyringService:
    """Get the keyring service instance."""
    global _keyring_service
    if _keyring_service is None:
        _keyring_service = get_keyring_service()
    return _keyring_service


def _get_positive_float(env_var: str, default: float) -> float:
    raw = os.environ.get(env_var)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r", env_var, raw)
        return default
    if value <= 0:
        logger.warning("Ignoring non-positive %s=%r", env_var, raw)
        return default
    return value


def get_data_dir() -> Path:
    """Directory holding the database and logs (NOTA_HOME, default ~/.nota)."""
    override = os.environ.get("NOTA_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".nota"


def get_database_path() -> Path:
    return get_data_dir() / "database.db"


def get_log_dir() -> Path:
    return get_data_dir() / "logs"


def get_request_timeout() -> float:
    """Time budget in seconds for connection tests and model fetches."""
    return _get_positive_float("NOTA_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT)


def get_poll_interval() -> float:
    """Seconds between progress samples while a local model loads."""
    return _get_positive_float("NOTA_LOAD_POLL_INTERVAL", DEFAULT_LOAD_POLL_INTERVAL)


def get_api_key(provider_id: str) -> Optional[str]:
    """
    Get the API key for a provider.

    Priority: keyring → env var

    Args:
        provider_id: Provider id (e.g., "gemini")

    Returns:
        The API key value, or None if not found
    """
    keyring = _get_keyring()

    # Keyring lookup includes the env var fallback
    value = keyring.get_credential(provider_id)
    if value:
        return value

    env_value = os.environ.get(KeyringService.env_var_name(provider_id))
    if env_value:
        return env_value

    return None


def store_api_key(provider_id: str, value: str) -> bool:
    """
    Store a provider API key in the keyring.

    Returns:
        True if stored successfully, False otherwise
    """
    return _get_keyring().store_credential(provider_id, value)


def clear_config_cache() -> None:
    """Forget the cached keyring service. Useful for testing."""
    global _keyring_service
    _keyring_service = None
