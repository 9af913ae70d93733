"""
Secure API key storage using OS keyring.

Provides cross-platform secure storage for provider API keys using the
system's credential manager (GNOME Keyring, macOS Keychain, Windows
Credential Locker). Keys are addressed by provider id.
"""

import logging
import os
from typing import Iterable, Optional

logger = logging.getLogger(__name__)


class KeyringService:
    """
    Secure credential storage using OS keyring.

    Provides a unified interface for storing and retrieving provider API
    keys in the operating system's secure credential vault, falling back to
    ``<PROVIDER>_API_KEY`` environment variables for reads.
    """

    SERVICE_NAME = "nota"

    # Providers whose keys are listed by get_all_credentials()
    KNOWN_PROVIDERS = ("gemini",)

    def __init__(self, provider_ids: Optional[Iterable[str]] = None) -> None:
        """Initialize KeyringService; availability is checked lazily."""
        self._available: Optional[bool] = None
        self._keyring_module = None
        self._provider_ids = tuple(provider_ids or self.KNOWN_PROVIDERS)

    @property
    def is_available(self) -> bool:
        """
        Check if keyring backend is available.

        Returns:
            True if keyring can be used, False otherwise.
        """
        if self._available is not None:
            return self._available

        try:
            import keyring
            from keyring.backends.fail import Keyring as FailKeyring

            self._keyring_module = keyring

            backend = keyring.get_keyring()
            if isinstance(backend, FailKeyring):
                logger.warning(
                    "No secure keyring backend available. "
                    "API keys will be kept in the settings store."
                )
                self._available = False
            else:
                logger.debug("Using keyring backend: %s", type(backend).__name__)
                self._available = True
        except ImportError:
            logger.warning("keyring library not installed")
            self._available = False
        except Exception as e:
            logger.warning("Failed to initialize keyring: %s", e)
            self._available = False

        return self._available

    def _get_keyring(self):
        """Get the keyring module, importing if needed."""
        if self._keyring_module is not None:
            return self._keyring_module

        if self.is_available:
            return self._keyring_module
        return None

    @staticmethod
    def credential_name(provider_id: str) -> str:
        """Keyring entry name for a provider, e.g. ``gemini_api_key``."""
        name = provider_id.strip().lower()
        if name.endswith("_api_key"):
            return name
        return f"{name}_api_key"

    @staticmethod
    def env_var_name(provider_id: str) -> str:
        """Environment variable consulted for a provider, e.g. ``GEMINI_API_KEY``."""
        name = provider_id.strip().upper().replace("-", "_")
        if name.endswith("_API_KEY"):
            return name
        return f"{name}_API_KEY"

    def store_credential(self, provider_id: str, value: str) -> bool:
        """
        Store an API key in the keyring.

        Args:
            provider_id: Provider id (e.g., 'gemini')
            value: The key to store

        Returns:
            True if stored successfully, False otherwise
        """
        if not self.is_available:
            logger.warning("Keyring not available, cannot store credential")
            return False

        try:
            keyring = self._get_keyring()
            keyring.set_password(
                self.SERVICE_NAME, self.credential_name(provider_id), value
            )
            logger.debug("Stored credential for %s", provider_id)
            return True
        except Exception as e:
            logger.error("Failed to store credential for %s: %s", provider_id, e)
            return False

    def get_credential(self, provider_id: str) -> Optional[str]:
        """
        Retrieve an API key from the keyring.

        Falls back to the provider's environment variable when the keyring is
        unavailable or holds no entry.
        """
        if self.is_available:
            try:
                keyring = self._get_keyring()
                value = keyring.get_password(
                    self.SERVICE_NAME, self.credential_name(provider_id)
                )
                if value:
                    return value
            except Exception as e:
                logger.warning("Failed to get credential from keyring: %s", e)

        env_var = self.env_var_name(provider_id)
        value = os.environ.get(env_var)
        if value:
            logger.debug("Using %s from environment", env_var)
            return value

        return None

    def delete_credential(self, provider_id: str) -> bool:
        """
        Delete an API key from the keyring.

        Returns:
            True if deleted successfully, False otherwise
        """
        if not self.is_available:
            return False

        try:
            keyring = self._get_keyring()
            keyring.delete_password(
                self.SERVICE_NAME, self.credential_name(provider_id)
            )
            logger.debug("Deleted credential for %s", provider_id)
            return True
        except Exception as e:
            # keyring raises PasswordDeleteError if not found
            logger.debug("Could not delete credential for %s: %s", provider_id, e)
            return False

    def has_credential(self, provider_id: str) -> bool:
        return self.get_credential(provider_id) is not None

    def get_all_credentials(self) -> dict[str, Optional[str]]:
        """Map each known provider id to its key, or None if not set."""
        return {
            provider_id: self.get_credential(provider_id)
            for provider_id in self._provider_ids
        }

    def has_any_credentials(self) -> bool:
        """Check if any known provider has a key."""
        return any(self.has_credential(pid) for pid in self._provider_ids)


# Global singleton instance
_keyring_service: Optional[KeyringService] = None


def get_keyring_service() -> KeyringService:
    """
    Get the global KeyringService instance.

    Returns:
        The shared KeyringService instance
    """
    global _keyring_service
    if _keyring_service is None:
        _keyring_service = KeyringService()
    return _keyring_service
